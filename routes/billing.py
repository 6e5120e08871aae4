"""
Invoice and payment routes.

Handles:
- POST /api/<tenant_id>/jobs/<job_id>/invoice - Generate (or fetch) the invoice
- POST /api/<tenant_id>/jobs/<job_id>/invoice/deliver - Send via pdf/whatsapp
- POST /api/<tenant_id>/invoices/<invoice_id>/payments - Record a payment
- POST /api/<tenant_id>/invoices/<invoice_id>/reconcile - Re-derive from payments
- POST /api/<tenant_id>/jobs/<job_id>/settle - Pay the balance and complete
"""

from flask import Blueprint, current_app, request

from core.delivery import SUPPORTED_CHANNELS
from models.invoice import PaymentMethod
from logging_config import get_logger
from .responses import error_response, get_lifecycle, result_response, sanitize_text


# Module logger
logger = get_logger(__name__)

billing_bp = Blueprint("billing", __name__)


def _parse_method(value):
    """PaymentMethod from request input, or None if unknown."""
    try:
        return PaymentMethod((value or "cash").strip().lower())
    except (ValueError, AttributeError):
        return None


@billing_bp.route("/api/<tenant_id>/jobs/<job_id>/invoice", methods=["POST"])
def generate_invoice(tenant_id: str, job_id: str):
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    return result_response(lifecycle.generate_invoice(tenant_id, job_id))


@billing_bp.route("/api/<tenant_id>/jobs/<job_id>/invoice/deliver", methods=["POST"])
def deliver_invoice(tenant_id: str, job_id: str):
    """Body: {"channel": "pdf" | "whatsapp"}"""
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    channel = sanitize_text(data.get("channel"), 32)
    if channel.lower() not in SUPPORTED_CHANNELS:
        return error_response("InvalidChannel", f"channel must be one of: {', '.join(SUPPORTED_CHANNELS)}")

    return result_response(lifecycle.deliver_invoice(tenant_id, job_id, channel))


@billing_bp.route("/api/<tenant_id>/invoices/<invoice_id>/payments", methods=["POST"])
def apply_payment(tenant_id: str, invoice_id: str):
    """Body: {"amount": "150.00", "method": "upi", "reference": "..."?}"""
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    method = _parse_method(data.get("method"))
    if method is None:
        return error_response("InvalidPaymentMethod", f"Unknown payment method: {data.get('method')}")

    reference = sanitize_text(data.get("reference"), 128) or None
    result = lifecycle.apply_payment(tenant_id, invoice_id, data.get("amount"), method, reference)
    return result_response(result)


@billing_bp.route("/api/<tenant_id>/invoices/<invoice_id>/reconcile", methods=["POST"])
def reconcile_invoice(tenant_id: str, invoice_id: str):
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    return result_response(lifecycle.reconcile_invoice(tenant_id, invoice_id))


@billing_bp.route("/api/<tenant_id>/jobs/<job_id>/settle", methods=["POST"])
def settle_and_complete(tenant_id: str, job_id: str):
    """
    Mark the job paid and complete it.

    Body: {"method": "cash", "wait": false}
    """
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    method = _parse_method(data.get("method"))
    if method is None:
        return error_response("InvalidPaymentMethod", f"Unknown payment method: {data.get('method')}")

    wait_seconds = None
    if data.get("wait"):
        wait_seconds = current_app.config.get("GATEWAY_TIMEOUT_SECONDS", 10.0) + 1.0

    result = lifecycle.settle_and_complete(tenant_id, job_id, method, wait_seconds=wait_seconds)
    logger.info(f"Settle {job_id[:8]}: {result.status.value}")
    return result_response(result)
