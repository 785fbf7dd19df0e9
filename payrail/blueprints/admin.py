"""
Admin Blueprint - Health Checks and Metrics

Provides monitoring endpoints.  Metrics count operations by outcome only;
labels never carry identifiers or amounts.
"""

import logging
import time
from typing import Any, Dict

from flask import Blueprint, Response, current_app, jsonify
from prometheus_client import CollectorRegistry, Counter, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

# Prometheus metrics
registry = CollectorRegistry()
operation_counter = Counter(
    "payrail_operations_total",
    "Core operations by outcome",
    ["operation", "outcome"],
    registry=registry,
)


def record_outcome(operation: str, outcome: str) -> None:
    operation_counter.labels(operation=operation, outcome=outcome).inc()


@admin_bp.route("/health")
def health():
    """
    Health check endpoint.

    Returns:
        JSON health status with component readiness
    """
    from payrail.factory import get_services

    cfg = current_app.config.get("APP_CONFIG", {})
    services = get_services()
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": cfg.get("APP_NAME", "payrail"),
        "version": cfg.get("APP_VERSION", "0.1.0"),
        "components": {},
    }

    health_status["components"]["resolver"] = {
        "status": "configured" if services.resolver.configured else "unconfigured",
        "secret_versions": len(services.resolver.versions),
    }
    if not services.resolver.configured:
        health_status["status"] = "degraded"

    ping = getattr(services.store, "ping", None)
    store_ok = bool(ping()) if callable(ping) else True
    health_status["components"]["artifact_store"] = {"status": "connected" if store_ok else "error"}
    if not store_ok:
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return jsonify(health_status), status_code


@admin_bp.route("/metrics")
def metrics():
    """Prometheus exposition of operation counters."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
