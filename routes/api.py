"""
Board API routes.

Handles:
- /health - Health check endpoint
- /api/<tenant_id>/board - Board columns (hydrates the shadow board)
- /api/<tenant_id>/jobs/<job_id>/move - Drag-and-drop status move
"""

from flask import Blueprint, current_app, request

from logging_config import get_logger
from .responses import error_response, get_lifecycle, result_response


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/api/<tenant_id>/board", methods=["GET"])
def board(tenant_id: str):
    """Jobs of a tenant grouped into board columns."""
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    return result_response(lifecycle.load_board(tenant_id))


@api_bp.route("/api/<tenant_id>/jobs/<job_id>/move", methods=["POST"])
def move_job(tenant_id: str, job_id: str):
    """
    Move a job between columns.

    Body: {"from_status": "working", "to_status": "ready", "wait": false}

    Answers 202 with the optimistic job while the commit is in flight. With
    "wait": true the request blocks until the commit settles (bounded by the
    gateway timeout) and answers 200, or the error that rolled it back.
    """
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    from_status = data.get("from_status")
    to_status = data.get("to_status")
    if not from_status or not to_status:
        return error_response("InvalidRequest", "from_status and to_status are required")

    wait_seconds = None
    if data.get("wait"):
        wait_seconds = current_app.config.get("GATEWAY_TIMEOUT_SECONDS", 10.0) + 1.0

    result = lifecycle.move_job(tenant_id, job_id, from_status, to_status, wait_seconds=wait_seconds)
    logger.info(f"Move {job_id[:8]} {from_status} -> {to_status}: {result.status.value}")
    return result_response(result)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    gateway = current_app.config.get("PERSISTENCE_GATEWAY")
    health_status["checks"]["gateway"] = type(gateway).__name__ if gateway else "not_configured"

    board_service = current_app.config.get("BOARD_SERVICE")
    if board_service:
        health_status["checks"]["commits_in_flight"] = board_service.pending_commits
    else:
        health_status["checks"]["board"] = "not_initialized"
        health_status["status"] = "degraded"

    return health_status
