"""
Identifier Resolver

Maps ``name@domain`` to a public key without a plaintext directory.  Lookups
go through a keyed digest of the handle, so enumerating the artifact store
reveals nothing about which handles exist.

Secret rotation
---------------
The resolver holds an ordered keyring of ``(version, secret)`` pairs, newest
first.  A lookup derives one key per version and stops at the first stored
artifact.  To rotate:

1. prepend the new version to ``RESOLVER_SECRETS``;
2. re-provision every artifact under the new version
   (``scripts/provision_identifier.py``);
3. drop the old version from ``RESOLVER_SECRETS``;
4. delete the old-version keys from the store.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import replace
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from payrail.audit_logger import AuditLogger, get_audit_logger
from payrail.errors import NotFound, Unavailable
from payrail.models import Identifier, IdentifierArtifact, is_valid_pubkey, normalize

logger = logging.getLogger(__name__)

_TAG_CONTEXT = b"artifact:"


class ArtifactStore(Protocol):
    def fetch(self, key: str) -> Optional[Union[str, bytes]]:
        ...


class IdentifierResolver:
    """Resolve handles to public keys through an opaque artifact store."""

    def __init__(
        self,
        store: ArtifactStore,
        secrets: Sequence[Tuple[str, Union[str, bytes]]],
        require_integrity_tag: bool = False,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.require_integrity_tag = require_integrity_tag
        self.audit = audit or get_audit_logger()
        self._keyring: List[Tuple[str, bytes]] = [
            (version, secret.encode("utf-8") if isinstance(secret, str) else secret)
            for version, secret in secrets
            if secret
        ]

    @property
    def configured(self) -> bool:
        return bool(self._keyring)

    @property
    def versions(self) -> List[str]:
        return [version for version, _ in self._keyring]

    @staticmethod
    def lookup_digest(secret: bytes, name: str, domain: str) -> str:
        return hmac.new(secret, f"{name}@{domain}".encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def integrity_digest(secret: bytes, artifact: IdentifierArtifact) -> str:
        return hmac.new(secret, _TAG_CONTEXT + artifact.canonical_bytes(), hashlib.sha256).hexdigest()

    def lookup_keys(self, name: str, domain: str) -> Iterable[Tuple[str, str, bytes]]:
        """Yield ``(store_key, version, secret)`` for every configured secret version."""
        for version, secret in self._keyring:
            yield f"{version}:{self.lookup_digest(secret, name, domain)}", version, secret

    def resolve(self, name: str, domain: str) -> str:
        """Return the public key bound to ``name@domain``; see ``resolve_artifact``."""
        return self.resolve_artifact(name, domain).pubkey

    def resolve_artifact(self, name: str, domain: str) -> IdentifierArtifact:
        """
        Return the verified artifact bound to ``name@domain``.

        Raises:
            NotFound: the handle is empty, unregistered, or its artifact fails
                      any check; the cause is never distinguished
            Unavailable: no resolver secret is configured, or the store is down
            Timeout: the store did not answer in time
        """
        if not self._keyring:
            logger.error("Identifier resolver has no secret configured; refusing lookups")
            raise Unavailable("resolver secret not configured")

        name, domain = normalize(name), normalize(domain)
        if not name or not domain:
            raise NotFound()

        for store_key, version, secret in self.lookup_keys(name, domain):
            raw = self.store.fetch(store_key)
            if raw is None:
                continue
            artifact = self._verify(raw, name, domain, version, secret)
            if artifact is None:
                raise NotFound()
            return artifact

        raise NotFound()

    def _verify(
        self, raw: Union[str, bytes], name: str, domain: str, version: str, secret: bytes
    ) -> Optional[IdentifierArtifact]:
        try:
            artifact = IdentifierArtifact.from_json(raw)
        except ValueError:
            logger.warning("Discarding undecodable identifier artifact")
            return None

        if artifact.name != name or artifact.domain != domain:
            self.audit.log_security_event("artifact_binding_mismatch", "HIGH", {"secret_version": version})
            return None

        if artifact.integrity_tag is None:
            return None if self.require_integrity_tag else artifact

        expected = self.integrity_digest(secret, artifact)
        if not hmac.compare_digest(expected, artifact.integrity_tag):
            logger.warning("Identifier artifact failed integrity verification")
            self.audit.log_security_event("artifact_integrity_failure", "HIGH", {"secret_version": version})
            return None
        return artifact

    def seal_artifact(
        self,
        name: str,
        domain: str,
        pubkey: str,
        issued_at: Optional[int] = None,
        max_sendable: Optional[int] = None,
    ) -> Tuple[str, IdentifierArtifact]:
        """
        Build a tagged artifact and its store key under the newest secret.

        Provisioning helper only; the resolver never writes to the store.

        Raises:
            ValueError: malformed handle, pubkey or ``max_sendable``
            Unavailable: no resolver secret is configured
        """
        if not self._keyring:
            raise Unavailable("resolver secret not configured")

        name, domain, pubkey = normalize(name), normalize(domain), normalize(pubkey)
        if not Identifier(name=name, domain=domain).is_well_formed:
            raise ValueError("name must match [a-z0-9._-]{1,64} and domain must be a DNS name")
        if not is_valid_pubkey(pubkey):
            raise ValueError("pubkey must be 33-byte compressed or 32-byte x-only hex")
        if max_sendable is not None and (
            isinstance(max_sendable, bool) or not isinstance(max_sendable, int) or max_sendable < 1
        ):
            raise ValueError("max_sendable must be a positive number of millisatoshi")

        version, secret = self._keyring[0]
        untagged = IdentifierArtifact(
            name=name,
            domain=domain,
            pubkey=pubkey,
            issued_at=int(time.time()) if issued_at is None else issued_at,
            max_sendable=max_sendable,
        )
        artifact = replace(untagged, integrity_tag=self.integrity_digest(secret, untagged))
        return f"{version}:{self.lookup_digest(secret, name, domain)}", artifact
