"""
Identity Blueprint - Identifier Resolution

Exposes the resolver over HTTP:

- ``GET /api/resolve?name=&domain=``
- ``GET /.well-known/nostr.json?name=`` (NIP-05, for the configured domain)

Every failure to resolve returns the same 404 body, whatever the cause.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from payrail.blueprints.admin import record_outcome
from payrail.errors import NotFound, PayRailError
from payrail.factory import get_services, status_for
from payrail.security import limiter

logger = logging.getLogger(__name__)

identity_bp = Blueprint("identity", __name__)

RESOLVE_RATE_LIMIT = "60 per minute"


def _not_found():
    return jsonify({"error": "not_found"}), 404


@identity_bp.route("/api/resolve", methods=["GET"])
@limiter.limit(RESOLVE_RATE_LIMIT)
def resolve():
    """
    Resolve ``name@domain`` to its public key.

    Query parameters:
        - name: handle
        - domain: domain the handle lives under

    Returns:
        JSON with pubkey, or a uniform not-found body
    """
    services = get_services()
    try:
        pubkey = services.resolver.resolve(request.args.get("name", ""), request.args.get("domain", ""))
    except NotFound:
        services.audit.log_resolution("not_found")
        record_outcome("resolve", "not_found")
        return _not_found()
    except PayRailError as e:
        services.audit.log_resolution(e.code)
        record_outcome("resolve", e.code)
        return jsonify({"error": e.code}), status_for(e)

    services.audit.log_resolution("found")
    record_outcome("resolve", "found")
    return jsonify({"pubkey": pubkey})


@identity_bp.route("/.well-known/nostr.json", methods=["GET"])
@limiter.limit(RESOLVE_RATE_LIMIT)
def nostr_json():
    """
    NIP-05 lookup for a single name under the configured domain.

    There is no listing: a request without ``name`` gets the
    same not-found response as an unregistered name.
    """
    services = get_services()
    cfg = current_app.config.get("APP_CONFIG", {})
    name = request.args.get("name", "")
    try:
        pubkey = services.resolver.resolve(name, cfg.get("IDENTIFIER_DOMAIN", ""))
    except NotFound:
        services.audit.log_resolution("not_found", channel="nip05")
        record_outcome("resolve", "not_found")
        return _not_found()
    except PayRailError as e:
        services.audit.log_resolution(e.code, channel="nip05")
        record_outcome("resolve", e.code)
        return jsonify({"error": e.code}), status_for(e)

    services.audit.log_resolution("found", channel="nip05")
    record_outcome("resolve", "found")
    return jsonify({"names": {name.strip().lower(): pubkey}})
