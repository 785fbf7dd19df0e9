"""
Application Factory for payrail

Implements the Flask application factory pattern with:
- Service wiring (artifact store, resolver, invoice backend, negotiator, router)
- Security configuration (TLS, headers, rate limiting)
- Blueprint registration
- Error handling for the NotFound / Rejected / Unavailable / Timeout taxonomy
"""

import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask, current_app, jsonify, request

from payrail.audit_logger import AuditLogger, get_audit_logger, init_audit_logger
from payrail.config import AppConfig, get_config, validate_config
from payrail.errors import NotFound, PayRailError, Rejected, Timeout, Unavailable
from payrail.lnurl_pay import LnurlPayNegotiator
from payrail.membership import MembershipVerifier, build_membership_verifier
from payrail.payments.ln import InvoiceBackend, build_invoice_backend
from payrail.resolver import ArtifactStore, IdentifierResolver
from payrail.routing import RouteSelector
from payrail.security import init_security

logger = logging.getLogger(__name__)

STATUS_FOR_ERROR = {
    NotFound: 404,
    Rejected: 400,
    Unavailable: 503,
    Timeout: 504,
}


@dataclass
class Services:
    """Per-app service graph, stored in ``app.extensions["payrail"]``."""

    store: ArtifactStore
    resolver: IdentifierResolver
    negotiator: LnurlPayNegotiator
    router: RouteSelector
    audit: AuditLogger


def get_services() -> Services:
    return current_app.extensions["payrail"]


def status_for(error: PayRailError) -> int:
    for error_type, status in STATUS_FOR_ERROR.items():
        if isinstance(error, error_type):
            return status
    return 500


def build_artifact_store(cfg: AppConfig) -> ArtifactStore:
    backend = cfg.get("ARTIFACT_STORE", "memory")
    if backend == "redis":
        from payrail.db_storage import RedisArtifactStore, build_redis_client

        return RedisArtifactStore(build_redis_client(cfg))
    if backend != "memory":
        raise ValueError(f"Unknown ARTIFACT_STORE {backend!r}")
    from payrail.storage import InMemoryArtifactStore

    logger.warning("Using in-memory artifact store; artifacts vanish on restart")
    return InMemoryArtifactStore()


def create_app(
    config_override: Optional[AppConfig] = None,
    store: Optional[ArtifactStore] = None,
    invoices: Optional[InvoiceBackend] = None,
    membership: Optional[MembershipVerifier] = None,
) -> Flask:
    """
    Create and configure the Flask application using the factory pattern.

    Args:
        config_override: Optional configuration override for testing
        store: Artifact store to use instead of the configured one
        invoices: Invoice backend to use instead of the configured one
        membership: Membership verifier to use instead of the configured one

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration
    cfg = get_config()
    if config_override:
        cfg.update(config_override)  # type: ignore[typeddict-item]
    validate_config(cfg)
    app.config["APP_CONFIG"] = cfg

    # Set Flask secret key (required for sessions)
    app.secret_key = cfg["FLASK_SECRET_KEY"]

    init_security(app, cfg)
    init_audit_logger()

    store = store if store is not None else build_artifact_store(cfg)
    resolver = IdentifierResolver(
        store,
        cfg.get("RESOLVER_SECRETS", []),
        require_integrity_tag=cfg.get("RESOLVER_REQUIRE_INTEGRITY_TAG", False),
        audit=get_audit_logger(),
    )
    if not resolver.configured:
        logger.error("❌ No resolver secret configured; every lookup will report unavailable")

    invoices = invoices if invoices is not None else build_invoice_backend(cfg)
    membership = membership if membership is not None else build_membership_verifier(cfg)

    app.extensions["payrail"] = Services(
        store=store,
        resolver=resolver,
        negotiator=LnurlPayNegotiator.from_config(resolver, invoices, cfg),
        router=RouteSelector.from_config(membership, cfg),
        audit=get_audit_logger(),
    )

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Register before/after request handlers
    register_request_handlers(app)

    logger.info("🚀 Application factory completed successfully")
    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""

    # Identifier resolution (API + NIP-05 well-known)
    from payrail.blueprints.identity import identity_bp
    app.register_blueprint(identity_bp)

    # LNURL-pay blueprint (well-known pay parameters, invoice callback)
    from payrail.blueprints.lnurl import lnurl_bp
    app.register_blueprint(lnurl_bp)

    # Settlement rail selection
    from payrail.blueprints.routes import routes_bp
    app.register_blueprint(routes_bp, url_prefix="/api")

    # Admin/operations blueprint (health, metrics)
    from payrail.blueprints.admin import admin_bp
    app.register_blueprint(admin_bp)

    logger.info("✅ All blueprints registered")


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers."""

    @app.errorhandler(PayRailError)
    def payrail_error(e: PayRailError):
        body = {"error": e.code}
        if isinstance(e, Rejected):
            body["reason"] = e.reason
        return jsonify(body), status_for(e)

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": "Malformed request"}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(e):
        # Endpoint name, not path: LNURL paths embed the recipient handle.
        get_audit_logger().log_rate_limit_exceeded(request.remote_addr, request.endpoint or "unknown")
        return jsonify({"error": "rate_limit_exceeded", "message": str(e.description)}), 429

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal server error: {e}", exc_info=True)
        cause = getattr(e, "original_exception", None) or e
        get_audit_logger().log_error(type(cause).__name__, "unhandled exception", {"endpoint": request.endpoint})
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500


def register_request_handlers(app: Flask) -> None:
    """Register before/after request handlers."""

    LNURL_PATH_PREFIXES = ("/.well-known/lnurlp/", "/.well-known/nostr.json", "/api/lnurlp/")

    @app.after_request
    def add_cors_headers(response):
        """LUD-01 and NIP-05 require wallets on any origin to reach these endpoints."""
        if request.path.startswith(LNURL_PATH_PREFIXES):
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif request.path.startswith("/api/"):
            cfg = app.config.get("APP_CONFIG", {})
            response.headers["Access-Control-Allow-Origin"] = cfg.get("CORS_ORIGINS", "*")
        response.headers["Cache-Control"] = "no-store"
        return response
