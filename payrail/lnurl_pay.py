"""
LNURL-Pay Negotiator

Implements the two-phase LUD-06 pull-payment handshake for Lightning
Addresses (LUD-16):

- phase 1 returns pay parameters for ``name@domain``;
- phase 2 takes an amount (and optional LUD-12 comment) and returns a BOLT11
  invoice bound to exactly that amount.

No state is kept between the phases.  Phase 2 re-resolves the identifier and
re-derives every bound, so nothing issued in phase 1 has to be trusted later.
"""

import hashlib
import json
import logging
from typing import Any, Mapping, Optional, Union

from payrail.errors import NotFound, Rejected, Unavailable
from payrail.models import Identifier, PaymentRequest, PullPaymentSession
from payrail.payments.bolt11 import InvoiceError, decode_invoice
from payrail.payments.ln import InvoiceBackend
from payrail.resolver import IdentifierResolver

logger = logging.getLogger(__name__)

DEFAULT_MIN_SENDABLE = 1_000
DEFAULT_MAX_SENDABLE = 100_000_000
DEFAULT_COMMENT_ALLOWED = 255
DEFAULT_INVOICE_EXPIRY = 600


class LnurlPayNegotiator:
    """Stateless LNURL-pay server for the identifiers the resolver knows."""

    def __init__(
        self,
        resolver: IdentifierResolver,
        invoices: InvoiceBackend,
        base_url: str,
        min_sendable: int = DEFAULT_MIN_SENDABLE,
        max_sendable: int = DEFAULT_MAX_SENDABLE,
        comment_allowed: int = DEFAULT_COMMENT_ALLOWED,
        invoice_expiry: int = DEFAULT_INVOICE_EXPIRY,
        success_message: Optional[str] = None,
    ):
        if min_sendable < 1 or max_sendable < min_sendable:
            raise ValueError("sendable bounds must satisfy 1 <= min_sendable <= max_sendable")
        if comment_allowed < 0:
            raise ValueError("comment_allowed must not be negative")

        self.resolver = resolver
        self.invoices = invoices
        self.base_url = base_url.rstrip("/")
        self.min_sendable = min_sendable
        self.max_sendable = max_sendable
        self.comment_allowed = comment_allowed
        self.invoice_expiry = invoice_expiry
        self.success_message = success_message

    @classmethod
    def from_config(
        cls, resolver: IdentifierResolver, invoices: InvoiceBackend, cfg: Mapping[str, Any]
    ) -> "LnurlPayNegotiator":
        return cls(
            resolver,
            invoices,
            base_url=cfg.get("LNURL_BASE_URL", "http://localhost:5000"),
            min_sendable=cfg.get("LNURL_MIN_SENDABLE", DEFAULT_MIN_SENDABLE),
            max_sendable=cfg.get("LNURL_MAX_SENDABLE", DEFAULT_MAX_SENDABLE),
            comment_allowed=cfg.get("LNURL_COMMENT_ALLOWED", DEFAULT_COMMENT_ALLOWED),
            invoice_expiry=cfg.get("LNURL_INVOICE_EXPIRY", DEFAULT_INVOICE_EXPIRY),
            success_message=cfg.get("LNURL_SUCCESS_MESSAGE"),
        )

    def callback_url(self, identifier: Identifier) -> str:
        return f"{self.base_url}/api/lnurlp/{identifier.domain}/{identifier.name}/callback"

    @staticmethod
    def metadata_for(identifier: Identifier) -> str:
        """LUD-06 metadata: display text plus the LUD-16 identifier entry."""
        return json.dumps(
            [
                ["text/plain", f"Payment to {identifier}"],
                ["text/identifier", str(identifier)],
            ]
        )

    def _session(self, identifier: Union[str, Identifier]) -> PullPaymentSession:
        if not isinstance(identifier, Identifier):
            identifier = Identifier.parse(identifier)

        # NotFound from the resolver propagates unchanged.
        artifact = self.resolver.resolve_artifact(identifier.name, identifier.domain)

        max_sendable = self.max_sendable
        if artifact.max_sendable is not None:
            max_sendable = min(max_sendable, artifact.max_sendable)
        if max_sendable < self.min_sendable:
            # recipient cap below the service minimum: nothing is payable
            logger.warning("Recipient max_sendable is below LNURL_MIN_SENDABLE; treating as not found")
            raise NotFound()

        success_action = {"tag": "message", "message": self.success_message} if self.success_message else {}
        return PullPaymentSession(
            recipient=identifier,
            min_sendable=self.min_sendable,
            max_sendable=max_sendable,
            comment_allowed=self.comment_allowed,
            callback=self.callback_url(identifier),
            metadata=self.metadata_for(identifier),
            success_action=success_action,
        )

    def get_pay_parameters(self, identifier: Union[str, Identifier]) -> PullPaymentSession:
        """
        Phase 1: pay parameters for ``identifier``.

        Raises:
            NotFound: the identifier does not resolve
        """
        return self._session(identifier)

    def request_payment(
        self, identifier: Union[str, Identifier], amount: Any, comment: Optional[str] = None
    ) -> PaymentRequest:
        """
        Phase 2: a payment request for exactly ``amount`` millisatoshi.

        Raises:
            NotFound: the identifier does not resolve
            Rejected: the amount or comment violates the declared bounds
            Unavailable: the invoice backend could not issue a valid invoice
            Timeout: the invoice backend did not answer in time
        """
        session = self._session(identifier)

        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise Rejected(Rejected.INVALID_AMOUNT)
        if amount < session.min_sendable:
            raise Rejected(Rejected.BELOW_MINIMUM)
        if amount > session.max_sendable:
            raise Rejected(Rejected.ABOVE_MAXIMUM)
        if comment is not None and not isinstance(comment, str):
            raise Rejected(Rejected.INVALID_COMMENT)
        if comment and len(comment) > session.comment_allowed:
            raise Rejected(Rejected.COMMENT_TOO_LONG)

        description_hash = hashlib.sha256(session.metadata.encode("utf-8")).digest()
        pr = self.invoices.create_invoice(amount, description_hash, self.invoice_expiry)
        self._check_invoice(pr, amount, description_hash)

        return PaymentRequest(
            pr=pr,
            amount=amount,
            routes=[],
            success_action=session.success_action or None,
            disposable=False,
        )

    @staticmethod
    def _check_invoice(pr: str, amount: int, description_hash: bytes) -> None:
        """Refuse to hand out an invoice that does not commit to what was asked."""
        try:
            decoded = decode_invoice(pr)
        except InvoiceError as e:
            logger.error(f"Invoice backend returned an undecodable invoice: {e}")
            raise Unavailable("invalid invoice from backend") from e

        if decoded.amount_msat != amount:
            logger.error("Invoice backend returned an invoice with the wrong amount")
            raise Unavailable("invoice amount mismatch")
        if decoded.description_hash != description_hash:
            logger.error("Invoice backend returned an invoice with the wrong description hash")
            raise Unavailable("invoice description hash mismatch")
