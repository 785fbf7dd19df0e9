"""
LNURL-Pay Blueprint - Lightning Address pull payments

Implements the LUD-06 / LUD-16 endpoints:

- ``GET /.well-known/lnurlp/<name>`` returns pay parameters
- ``GET /api/lnurlp/<domain>/<name>/callback?amount=&comment=`` returns an invoice

Errors use the LNURL ``{"status": "ERROR", "reason": ...}`` shape.
"""

import logging
import re

from flask import Blueprint, current_app, jsonify, request

from payrail.blueprints.admin import record_outcome
from payrail.errors import PayRailError, Rejected
from payrail.factory import get_services, status_for
from payrail.models import Identifier
from payrail.security import limiter

logger = logging.getLogger(__name__)

lnurl_bp = Blueprint("lnurl", __name__)

LNURL_RATE_LIMIT = "30 per minute"

_DIGITS = re.compile(r"^[0-9]+$")


def _lnurl_error(e: PayRailError):
    return jsonify({"status": "ERROR", "reason": str(e)}), status_for(e)


def _query_amount(raw):
    """Accept only plain decimal digits; anything else is passed through to be rejected."""
    if isinstance(raw, str) and _DIGITS.match(raw):
        return int(raw)
    return raw


@lnurl_bp.route("/.well-known/lnurlp/<name>", methods=["GET"])
@limiter.limit(LNURL_RATE_LIMIT)
def pay_parameters(name: str):
    """
    LNURL-pay phase 1 for ``name`` under the configured domain.

    Returns:
        JSON payRequest parameters
    """
    services = get_services()
    cfg = current_app.config.get("APP_CONFIG", {})
    identifier = Identifier(name=name.strip().lower(), domain=cfg.get("IDENTIFIER_DOMAIN", ""))

    try:
        session = services.negotiator.get_pay_parameters(identifier)
    except PayRailError as e:
        services.audit.log_pay_parameters(e.code)
        record_outcome("get_pay_parameters", e.code)
        return _lnurl_error(e)

    services.audit.log_pay_parameters("issued")
    record_outcome("get_pay_parameters", "issued")
    return jsonify(session.to_lnurl())


@lnurl_bp.route("/api/lnurlp/<domain>/<name>/callback", methods=["GET"])
@limiter.limit(LNURL_RATE_LIMIT)
def pay_callback(domain: str, name: str):
    """
    LNURL-pay phase 2.

    Query parameters:
        - amount: millisatoshi, decimal digits only
        - comment: optional LUD-12 comment

    Returns:
        JSON with pr, routes, successAction and disposable
    """
    services = get_services()
    identifier = Identifier(name=name.strip().lower(), domain=domain.strip().lower())
    amount = _query_amount(request.args.get("amount"))
    comment = request.args.get("comment")

    try:
        payment = services.negotiator.request_payment(identifier, amount, comment)
    except Rejected as e:
        services.audit.log_pay_request("rejected", reason=e.reason)
        record_outcome("request_payment", "rejected")
        return _lnurl_error(e)
    except PayRailError as e:
        services.audit.log_pay_request(e.code)
        record_outcome("request_payment", e.code)
        return _lnurl_error(e)

    services.audit.log_pay_request("issued")
    record_outcome("request_payment", "issued")
    return jsonify(payment.to_lnurl())
