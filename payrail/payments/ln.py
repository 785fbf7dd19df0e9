"""Lightning invoice backends for LNURL-pay phase 2."""

import base64
import hashlib
import hmac
import logging
import secrets
from typing import Any, Mapping, Optional, Protocol

import requests
from coincurve import PrivateKey

from payrail.errors import Timeout, Unavailable
from payrail.payments.bolt11 import DEFAULT_MIN_FINAL_CLTV, encode_invoice

logger = logging.getLogger(__name__)


class InvoiceBackend(Protocol):
    def create_invoice(self, amount_msat: int, description_hash: bytes, expiry_seconds: int) -> str:
        ...


class LocalInvoiceSigner:
    """
    Issue BOLT11 invoices signed with the node key held by this service.

    Invoices are stateless: the preimage is HMAC(node key, payment secret), so
    the settling node recomputes it from the payment secret carried in the
    final-hop onion payload instead of looking it up.
    """

    def __init__(
        self,
        node_private_key: Optional[str],
        network: str = "bc",
        min_final_cltv: int = DEFAULT_MIN_FINAL_CLTV,
    ):
        self.network = network
        self.min_final_cltv = min_final_cltv
        self._key: Optional[PrivateKey] = None
        if node_private_key:
            try:
                self._key = PrivateKey(bytes.fromhex(node_private_key))
            except ValueError:
                logger.error("LN_NODE_PRIVATE_KEY is not a valid secp256k1 secret; invoice signing disabled")

    @property
    def node_id(self) -> Optional[str]:
        if self._key is None:
            return None
        return self._key.public_key.format(compressed=True).hex()

    def derive_preimage(self, payment_secret: bytes) -> bytes:
        if self._key is None:
            raise Unavailable("node key not configured")
        return hmac.new(self._key.secret, b"preimage:" + payment_secret, hashlib.sha256).digest()

    def create_invoice(self, amount_msat: int, description_hash: bytes, expiry_seconds: int) -> str:
        if self._key is None:
            raise Unavailable("node key not configured")

        payment_secret = secrets.token_bytes(32)
        payment_hash = hashlib.sha256(self.derive_preimage(payment_secret)).digest()
        return encode_invoice(
            self._key,
            amount_msat,
            payment_hash=payment_hash,
            payment_secret=payment_secret,
            description_hash=description_hash,
            expiry=expiry_seconds,
            min_final_cltv=self.min_final_cltv,
            network=self.network,
        )


class LndRestBackend:
    """Create invoices on an LND node through its REST API."""

    def __init__(self, base_url: str, macaroon: Optional[str], timeout_ms: int = 3000):
        self.base_url = (base_url or "").rstrip("/")
        self.macaroon = macaroon
        self.timeout = timeout_ms / 1000.0

    def _headers(self) -> dict:
        if not self.macaroon:
            raise Unavailable("Missing LND_MACAROON or LND_MACAROON_HEX for LND REST backend.")
        return {"Grpc-Metadata-macaroon": self.macaroon}

    def create_invoice(self, amount_msat: int, description_hash: bytes, expiry_seconds: int) -> str:
        if not self.base_url:
            raise Unavailable("Missing LND_REST_URL for LND REST backend.")

        payload = {
            "value_msat": str(int(amount_msat)),
            "description_hash": base64.b64encode(description_hash).decode("ascii"),
            "expiry": str(int(expiry_seconds)),
        }
        try:
            resp = requests.post(
                f"{self.base_url}/v1/invoices", json=payload, headers=self._headers(), timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.warning("LND invoice request timed out")
            raise Timeout("lnd timeout") from e
        except requests.RequestException as e:
            logger.warning(f"LND invoice request failed: {type(e).__name__}")
            raise Unavailable("lnd unreachable") from e

        if resp.status_code >= 300:
            logger.warning(f"LND invoice create failed: {resp.status_code}")
            raise Unavailable(f"lnd status {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            logger.warning("LND invoice response was not JSON")
            raise Unavailable("lnd returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise Unavailable("lnd returned an unexpected body")

        payment_request = body.get("payment_request")
        if not isinstance(payment_request, str) or not payment_request:
            raise Unavailable("LND invoice response missing payment_request.")
        return payment_request


def build_invoice_backend(cfg: Mapping[str, Any]) -> InvoiceBackend:
    """Select the invoice backend named by ``LN_BACKEND``."""
    backend = str(cfg.get("LN_BACKEND", "local")).lower()
    if backend == "lnd_rest":
        return LndRestBackend(cfg.get("LND_REST_URL", ""), cfg.get("LND_MACAROON"), cfg.get("LND_TIMEOUT_MS", 3000))
    if backend != "local":
        raise ValueError(f"Unknown LN_BACKEND {backend!r}")
    return LocalInvoiceSigner(
        cfg.get("LN_NODE_PRIVATE_KEY"),
        network=cfg.get("LN_NETWORK", "bc"),
        min_final_cltv=cfg.get("LN_MIN_FINAL_CLTV", DEFAULT_MIN_FINAL_CLTV),
    )
