"""
Routes Blueprint - Settlement Rail Selection

``POST /api/routes`` with JSON ``{"sender", "recipient", "amount"}`` and the
optional filters ``max_fee`` and ``min_privacy``.  Amounts must be JSON
integers in millisatoshi; strings and fractions are rejected, not coerced.
"""

import logging

from flask import Blueprint, jsonify, request

from payrail.blueprints.admin import record_outcome
from payrail.errors import PayRailError, Rejected
from payrail.factory import get_services

logger = logging.getLogger(__name__)

routes_bp = Blueprint("routes", __name__)


@routes_bp.route("/routes", methods=["POST"])
def select_routes():
    """
    Rank the settlement rails available for a transfer.

    Returns:
        JSON with an ordered ``routes`` list
    """
    services = get_services()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        record_outcome("select_routes", "rejected")
        raise Rejected("invalid request body")

    try:
        candidates = services.router.select_routes(
            data.get("sender"),
            data.get("recipient"),
            data.get("amount"),
            max_fee=data.get("max_fee"),
            min_privacy=data.get("min_privacy"),
        )
    except PayRailError as e:
        services.audit.log_route_selection(e.code)
        record_outcome("select_routes", e.code)
        raise

    services.audit.log_route_selection("ok", rails=[c.rail_kind.value for c in candidates])
    record_outcome("select_routes", "ok")
    return jsonify({"routes": [c.to_dict() for c in candidates]})
