"""
Audit logging for payrail.

Events go to Python's logging system on the ``audit`` logger.  They record
which operation ran and how it ended, never who was involved: no names,
domains, public keys, lookup digests, invoices or sender/recipient ids.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger

_FORBIDDEN_FIELDS = {"name", "domain", "identifier", "pubkey", "sender", "recipient", "pr", "invoice", "lookup_key"}


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    # Add console handler if not already present
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()

    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


class AuditLogger:
    """
    Audit logging interface for payment-rail operations.

    Every operation logs an outcome (``found``, ``not_found``, ``issued``,
    ``rejected``, ``unavailable``, ``timeout``).  Fields that would tie an
    event to an identity are dropped before the event is written.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        safe = {k: v for k, v in details.items() if k not in _FORBIDDEN_FIELDS}
        payload = {"event": event, **safe, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_resolution(self, outcome: str, channel: str = "api"):
        """Log an identifier resolution."""
        self.logger.info(f"RESOLVE | channel={channel} | outcome={outcome}")

    def log_pay_parameters(self, outcome: str):
        """Log an LNURL-pay phase 1 request."""
        self.logger.info(f"LNURLP_PARAMS | outcome={outcome}")

    def log_pay_request(self, outcome: str, reason: Optional[str] = None):
        """Log an LNURL-pay phase 2 request."""
        msg = f"LNURLP_INVOICE | outcome={outcome}"
        if reason:
            msg += f" | reason={reason}"
        self.logger.info(msg)

    def log_route_selection(self, outcome: str, rails: Iterable[str] = ()):
        """Log a route selection with the rail kinds offered."""
        self.logger.info(f"ROUTE_SELECT | outcome={outcome} | rails={','.join(rails) or '-'}")

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        safe = {k: v for k, v in details.items() if k not in _FORBIDDEN_FIELDS}
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={safe}")

    def log_rate_limit_exceeded(self, ip_address: str, endpoint: str):
        """Log rate limit violation."""
        self.logger.warning(f"RATE_LIMIT_EXCEEDED | ip={ip_address} | endpoint={endpoint}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
