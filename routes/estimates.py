"""
Estimate routes.

Handles:
- GET    /api/<tenant_id>/jobs/<job_id>/estimate
- POST   /api/<tenant_id>/jobs/<job_id>/estimate/items
- PATCH  /api/<tenant_id>/jobs/<job_id>/estimate/items/<item_id>
- DELETE /api/<tenant_id>/jobs/<job_id>/estimate/items/<item_id>

Item names and part numbers are sanitized with bleach before they reach the
service. Numeric fields are passed through untouched; the estimator parses
them and rejects anything malformed.
"""

from flask import Blueprint, current_app, request

from logging_config import get_logger
from .responses import error_response, get_lifecycle, result_response, sanitize_text


# Module logger
logger = get_logger(__name__)

estimates_bp = Blueprint("estimates", __name__)

NUMERIC_FIELDS = ("quantity", "unit_price", "labor_cost")


def _text_fields(data: dict) -> dict:
    max_name = current_app.config.get("MAX_ITEM_NAME_LENGTH", 200)
    fields = {}
    if "name" in data:
        fields["name"] = sanitize_text(data.get("name"), max_name)
    if "part_number" in data:
        fields["part_number"] = sanitize_text(data.get("part_number"), 64) or None
    return fields


@estimates_bp.route("/api/<tenant_id>/jobs/<job_id>/estimate", methods=["GET"])
def get_estimate(tenant_id: str, job_id: str):
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)
    return result_response(lifecycle.get_estimate(tenant_id, job_id))


@estimates_bp.route("/api/<tenant_id>/jobs/<job_id>/estimate/items", methods=["POST"])
def add_item(tenant_id: str, job_id: str):
    """Body: {"name", "quantity", "unit_price", "labor_cost"?, "part_number"?}"""
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    item = _text_fields(data)
    item.setdefault("name", "")
    item["quantity"] = data.get("quantity")
    item["unit_price"] = data.get("unit_price")
    item["labor_cost"] = data.get("labor_cost", "0")

    result = lifecycle.add_estimate_item(tenant_id, job_id, **item)
    return result_response(result)


@estimates_bp.route("/api/<tenant_id>/jobs/<job_id>/estimate/items/<item_id>", methods=["PATCH"])
def update_item(tenant_id: str, job_id: str, item_id: str):
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    data = request.get_json(silent=True) or {}
    changes = _text_fields(data)
    for key in NUMERIC_FIELDS:
        if key in data:
            changes[key] = data[key]
    if not changes:
        return error_response("InvalidRequest", "Nothing to update")

    return result_response(lifecycle.update_estimate_item(tenant_id, job_id, item_id, changes))


@estimates_bp.route("/api/<tenant_id>/jobs/<job_id>/estimate/items/<item_id>", methods=["DELETE"])
def remove_item(tenant_id: str, job_id: str, item_id: str):
    lifecycle = get_lifecycle()
    if lifecycle is None:
        return error_response("ServiceUnavailable", "Lifecycle service unavailable", 500)

    return result_response(lifecycle.remove_estimate_item(tenant_id, job_id, item_id))
