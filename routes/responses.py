"""
JSON response helpers shared by the blueprints.

Turns an OperationResult into a (body, status) pair. HTTP status follows the
error class named in the result:

    ValidationError (state conflict)   409
    InvalidItemError, InvalidPaymentError  422
    NotFoundError                      404
    PersistenceError                   503
    DeliveryError                      502
"""

from typing import Any, Dict, Optional, Tuple

import bleach
from flask import current_app

import core.exceptions as exceptions
from models.result import OperationResult, ResultStatus
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

_UNPROCESSABLE = (exceptions.InvalidItemError, exceptions.InvalidPaymentError)


def sanitize_text(text: Any, max_length: Optional[int] = None) -> str:
    """Sanitize user input text (strip HTML, trim, truncate)."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def status_code_for(result: OperationResult) -> int:
    if result.status is ResultStatus.SUCCEEDED:
        return 200
    if result.status is ResultStatus.PENDING:
        return 202
    if result.status is ResultStatus.SUPERSEDED:
        return 409

    error_class = getattr(exceptions, result.error_code or "", None)
    if not isinstance(error_class, type):
        return 500
    if issubclass(error_class, exceptions.NotFoundError):
        return 404
    if issubclass(error_class, _UNPROCESSABLE):
        return 422
    if issubclass(error_class, exceptions.ValidationError):
        return 409
    if issubclass(error_class, exceptions.PersistenceError):
        return 503
    if issubclass(error_class, exceptions.DeliveryError):
        return 502
    return 500


def result_response(result: OperationResult) -> Tuple[Dict[str, Any], int]:
    return result.to_dict(), status_code_for(result)


def error_response(code: str, message: str, status: int = 422) -> Tuple[Dict[str, Any], int]:
    return {
        "ok": False,
        "status": "failed",
        "error": {"code": code, "message": message, "details": {}, "retryable": False},
    }, status


def get_lifecycle():
    """LifecycleService registered by create_app(), or None."""
    lifecycle = current_app.config.get("LIFECYCLE_SERVICE")
    if lifecycle is None:
        logger.error("Lifecycle service unavailable")
    return lifecycle
