"""
Data model for identifier resolution, LNURL-pay negotiation and rail selection.

Nothing here is persisted by payrail.  Artifacts are provisioned out-of-band
and read through an artifact store; sessions, payment requests and route
candidates are built per call and dropped with the response.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

NAME_PATTERN = re.compile(r"^[a-z0-9._-]{1,64}$")
DOMAIN_PATTERN = re.compile(r"^(?=.{4,253}$)[a-z0-9-]+(\.[a-z0-9-]+)*\.[a-z]{2,}$")
# 33-byte compressed SEC1 key or 32-byte x-only (BIP-340 / nostr) key, lowercase hex
PUBKEY_PATTERN = re.compile(r"^(0[23][0-9a-f]{64}|[0-9a-f]{64})$")


def normalize(value: Optional[str]) -> str:
    """Trim and lowercase a name or domain; ``None`` becomes ``""``."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


@dataclass(frozen=True)
class Identifier:
    """A human-readable ``name@domain`` handle."""

    name: str
    domain: str

    @classmethod
    def parse(cls, raw: str) -> "Identifier":
        """
        Split ``name@domain`` and normalise both halves.

        Malformed input yields an identifier with empty parts rather than an
        exception, so callers route it through the same not-found path as an
        unregistered handle.
        """
        raw = normalize(raw)
        if raw.count("@") != 1:
            return cls(name="", domain="")
        name, domain = raw.split("@", 1)
        return cls(name=name, domain=domain)

    @property
    def is_well_formed(self) -> bool:
        return bool(NAME_PATTERN.match(self.name) and DOMAIN_PATTERN.match(self.domain))

    def __str__(self) -> str:
        return f"{self.name}@{self.domain}"


def is_valid_pubkey(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(PUBKEY_PATTERN.match(value))


@dataclass(frozen=True)
class IdentifierArtifact:
    """
    Binding between a handle and a public key.

    - name          : lowercase handle, unique within its domain
    - domain        : domain the handle lives under
    - pubkey        : public key, compressed or x-only hex
    - issued_at     : unix timestamp of provisioning
    - integrity_tag : keyed digest over the canonical bytes; may be absent
                      on artifacts provisioned before tags existed
    - max_sendable  : optional per-recipient cap in msat, covered by the tag
    """

    name: str
    domain: str
    pubkey: str
    issued_at: int
    integrity_tag: Optional[str] = None
    max_sendable: Optional[int] = None

    def canonical_bytes(self) -> bytes:
        fields: List[Any] = [self.name, self.domain, self.pubkey]
        if self.max_sendable is not None:
            fields.append(self.max_sendable)
        return json.dumps(fields, separators=(",", ":")).encode("utf-8")

    def to_json(self) -> str:
        payload: Dict[str, Any] = {
            "name": self.name,
            "domain": self.domain,
            "pubkey": self.pubkey,
            "issued_at": self.issued_at,
            "integrity_tag": self.integrity_tag,
        }
        if self.max_sendable is not None:
            payload["max_sendable"] = self.max_sendable
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    @classmethod
    def from_json(cls, raw: Any) -> "IdentifierArtifact":
        """Decode a stored artifact, raising ``ValueError`` on any malformed field."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("artifact must be a JSON object")

        name, domain, pubkey = data.get("name"), data.get("domain"), data.get("pubkey")
        if not all(isinstance(v, str) and v for v in (name, domain, pubkey)):
            raise ValueError("artifact name, domain and pubkey must be non-empty strings")

        issued_at = data.get("issued_at", 0)
        if isinstance(issued_at, bool) or not isinstance(issued_at, int):
            raise ValueError("artifact issued_at must be an integer timestamp")

        tag = data.get("integrity_tag")
        if tag is not None and not isinstance(tag, str):
            raise ValueError("artifact integrity_tag must be a string")

        max_sendable = data.get("max_sendable")
        if max_sendable is not None and (
            isinstance(max_sendable, bool) or not isinstance(max_sendable, int) or max_sendable < 1
        ):
            raise ValueError("artifact max_sendable must be a positive integer")

        return cls(
            name=name,
            domain=domain,
            pubkey=pubkey,
            issued_at=issued_at,
            integrity_tag=tag or None,
            max_sendable=max_sendable,
        )


@dataclass(frozen=True)
class PullPaymentSession:
    """Phase-1 LNURL-pay parameters for one recipient (LUD-06)."""

    recipient: Identifier
    min_sendable: int
    max_sendable: int
    comment_allowed: int
    callback: str
    metadata: str
    success_action: Dict[str, str] = field(default_factory=dict)

    tag = "payRequest"

    def to_lnurl(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": "OK",
            "tag": self.tag,
            "callback": self.callback,
            "minSendable": self.min_sendable,
            "maxSendable": self.max_sendable,
            "metadata": self.metadata,
        }
        if self.comment_allowed > 0:
            payload["commentAllowed"] = self.comment_allowed
        return payload


@dataclass(frozen=True)
class PaymentRequest:
    """Phase-2 result: a BOLT11 invoice bound to exactly ``amount`` msat."""

    pr: str
    amount: int
    routes: List[Any] = field(default_factory=list)
    success_action: Optional[Dict[str, str]] = None
    disposable: bool = False

    def to_lnurl(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "pr": self.pr,
            "routes": list(self.routes),
            "disposable": self.disposable,
        }
        if self.success_action:
            payload["successAction"] = dict(self.success_action)
        return payload


class RailKind(str, Enum):
    """Settlement rails, listed in tie-break priority order."""

    INTERNAL_LEDGER = "internal-ledger"
    PULL_PAYMENT = "pull-payment"
    TOKEN_TRANSFER = "token-transfer"

    @property
    def priority(self) -> int:
        return _RAIL_PRIORITY[self]


_RAIL_PRIORITY = {
    RailKind.INTERNAL_LEDGER: 0,
    RailKind.PULL_PAYMENT: 1,
    RailKind.TOKEN_TRANSFER: 2,
}


class PrivacyLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "PrivacyLevel":
        try:
            return cls[normalize(label).upper()]
        except KeyError:
            raise ValueError(f"unknown privacy level {label!r}") from None


@dataclass(frozen=True)
class LatencyRange:
    min_ms: int
    max_ms: int


@dataclass(frozen=True)
class RouteCandidate:
    """One admissible rail for a specific transfer."""

    rail_kind: RailKind
    estimated_fee: int
    estimated_latency: LatencyRange
    privacy_level: PrivacyLevel
    reliability: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rail_kind": self.rail_kind.value,
            "estimated_fee": self.estimated_fee,
            "estimated_latency_ms": {
                "min": self.estimated_latency.min_ms,
                "max": self.estimated_latency.max_ms,
            },
            "privacy_level": self.privacy_level.label,
            "reliability": self.reliability,
        }
