"""
Unit tests for the identifier resolver.
"""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
from conftest import ALICE_PUBKEY, RESOLVER_SECRET

from payrail.errors import NotFound, Timeout, Unavailable
from payrail.models import IdentifierArtifact
from payrail.resolver import IdentifierResolver
from payrail.storage import STORAGE


def _expected_key(secret, name, domain, version="v1"):
    digest = hmac.new(secret.encode(), f"{name}@{domain}".encode(), hashlib.sha256).hexdigest()
    return f"{version}:{digest}"


class TestResolve:
    def test_resolves_provisioned_identifier(self, resolver, alice):
        assert resolver.resolve("alice", "example.com") == ALICE_PUBKEY

    def test_input_is_normalized(self, resolver, alice):
        assert resolver.resolve("  Alice ", "EXAMPLE.com") == ALICE_PUBKEY

    def test_store_key_is_keyed_digest(self, alice):
        assert alice == _expected_key(RESOLVER_SECRET, "alice", "example.com")
        assert "alice" not in alice

    def test_unregistered_identifier(self, resolver, alice):
        with pytest.raises(NotFound):
            resolver.resolve("bob", "example.com")

    @pytest.mark.parametrize("name,domain", [("", "example.com"), ("alice", ""), (None, "example.com"), ("  ", "  ")])
    def test_empty_input_is_not_found(self, resolver, alice, name, domain):
        with pytest.raises(NotFound):
            resolver.resolve(name, domain)

    def test_tampered_pubkey_is_not_found(self, resolver, alice):
        data = json.loads(STORAGE["identifier_artifacts"][alice])
        data["pubkey"] = "03" + "11" * 32
        STORAGE["identifier_artifacts"][alice] = json.dumps(data)

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")

    def test_artifact_for_another_name_is_not_found(self, resolver, alice):
        # Artifact copied under alice's key but naming someone else
        _, mallory = resolver.seal_artifact("mallory", "example.com", ALICE_PUBKEY)
        STORAGE["identifier_artifacts"][alice] = mallory.to_json()

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")

    def test_undecodable_artifact_is_not_found(self, resolver, alice):
        STORAGE["identifier_artifacts"][alice] = "{not json"

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")

    def test_failure_causes_are_indistinguishable(self, resolver, alice):
        STORAGE["identifier_artifacts"][alice] = "garbage"
        errors = []
        for name in ("alice", "nobody", ""):
            with pytest.raises(NotFound) as exc_info:
                resolver.resolve(name, "example.com")
            errors.append((type(exc_info.value), str(exc_info.value), exc_info.value.code))

        assert len(set(errors)) == 1

    def test_missing_secret_fails_closed(self, artifact_store, alice):
        resolver = IdentifierResolver(artifact_store, [])

        assert resolver.configured is False
        with pytest.raises(Unavailable):
            resolver.resolve("alice", "example.com")

    def test_store_errors_propagate(self):
        store = MagicMock()
        store.fetch.side_effect = Timeout("slow")
        resolver = IdentifierResolver(store, [("v1", RESOLVER_SECRET)])

        with pytest.raises(Timeout):
            resolver.resolve("alice", "example.com")


class TestIntegrityTag:
    def _untagged(self, resolver, alice):
        data = json.loads(STORAGE["identifier_artifacts"][alice])
        data["integrity_tag"] = None
        STORAGE["identifier_artifacts"][alice] = json.dumps(data)

    def test_untagged_artifact_accepted_by_default(self, resolver, alice):
        self._untagged(resolver, alice)

        assert resolver.resolve("alice", "example.com") == ALICE_PUBKEY

    def test_untagged_artifact_rejected_in_strict_mode(self, artifact_store, resolver, alice):
        self._untagged(resolver, alice)
        strict = IdentifierResolver(artifact_store, [("v1", RESOLVER_SECRET)], require_integrity_tag=True)

        with pytest.raises(NotFound):
            strict.resolve("alice", "example.com")

    def test_wrong_tag_rejected_even_when_optional(self, resolver, alice):
        data = json.loads(STORAGE["identifier_artifacts"][alice])
        data["integrity_tag"] = "00" * 32
        STORAGE["identifier_artifacts"][alice] = json.dumps(data)

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")


class TestRotation:
    def test_new_secret_keys_are_tried_first(self, artifact_store):
        resolver = IdentifierResolver(artifact_store, [("v2", "new-secret"), ("v1", RESOLVER_SECRET)])

        keys = [key for key, _, _ in resolver.lookup_keys("alice", "example.com")]

        assert keys[0] == _expected_key("new-secret", "alice", "example.com", version="v2")
        assert keys[1] == _expected_key(RESOLVER_SECRET, "alice", "example.com")
        assert resolver.versions == ["v2", "v1"]

    def test_old_artifacts_resolve_during_rotation(self, artifact_store, alice):
        rotating = IdentifierResolver(artifact_store, [("v2", "new-secret"), ("v1", RESOLVER_SECRET)])

        assert rotating.resolve("alice", "example.com") == ALICE_PUBKEY

    def test_reprovisioned_artifacts_use_newest_secret(self, artifact_store, alice):
        rotating = IdentifierResolver(artifact_store, [("v2", "new-secret"), ("v1", RESOLVER_SECRET)])
        store_key, artifact = rotating.seal_artifact("alice", "example.com", ALICE_PUBKEY)
        artifact_store.put(store_key, artifact.to_json())
        STORAGE["identifier_artifacts"].pop(alice)

        assert store_key.startswith("v2:")
        assert IdentifierResolver(artifact_store, [("v2", "new-secret")]).resolve("alice", "example.com") == (
            ALICE_PUBKEY
        )

    def test_retired_secret_no_longer_resolves(self, artifact_store, alice):
        retired = IdentifierResolver(artifact_store, [("v2", "new-secret")])

        with pytest.raises(NotFound):
            retired.resolve("alice", "example.com")


class TestSealArtifact:
    def test_seal_produces_verifiable_tag(self, resolver):
        _, artifact = resolver.seal_artifact("Alice", "Example.com", ALICE_PUBKEY, issued_at=42)

        assert artifact.name == "alice"
        assert artifact.domain == "example.com"
        assert artifact.issued_at == 42
        assert artifact.integrity_tag == IdentifierResolver.integrity_digest(RESOLVER_SECRET.encode(), artifact)

    def test_seal_requires_all_fields(self, resolver):
        with pytest.raises(ValueError):
            resolver.seal_artifact("alice", "example.com", "")

    def test_seal_without_secret(self, artifact_store):
        with pytest.raises(Unavailable):
            IdentifierResolver(artifact_store, []).seal_artifact("alice", "example.com", ALICE_PUBKEY)

    @pytest.mark.parametrize(
        "name,domain",
        [
            ("a?b", "example.com"),
            ("a@b", "example.com"),
            ("x" * 65, "example.com"),
            ("alice", "localhost"),
            ("alice", "exa mple.com"),
        ],
    )
    def test_seal_rejects_malformed_handle(self, resolver, name, domain):
        with pytest.raises(ValueError):
            resolver.seal_artifact(name, domain, ALICE_PUBKEY)

    @pytest.mark.parametrize(
        "pubkey", ["02ab", "04" + "ab" * 32, ALICE_PUBKEY + "00", "g" * 64, "npub1qqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqq"]
    )
    def test_seal_rejects_malformed_pubkey(self, resolver, pubkey):
        with pytest.raises(ValueError):
            resolver.seal_artifact("alice", "example.com", pubkey)

    def test_seal_accepts_x_only_pubkey(self, resolver):
        x_only = ALICE_PUBKEY[2:]

        assert resolver.seal_artifact("alice", "example.com", x_only)[1].pubkey == x_only

    def test_seal_lowercases_pubkey(self, resolver):
        assert resolver.seal_artifact("alice", "example.com", ALICE_PUBKEY.upper())[1].pubkey == ALICE_PUBKEY

    @pytest.mark.parametrize("max_sendable", [0, -1, True, 1.5, "5000"])
    def test_seal_rejects_bad_max_sendable(self, resolver, max_sendable):
        with pytest.raises(ValueError):
            resolver.seal_artifact("alice", "example.com", ALICE_PUBKEY, max_sendable=max_sendable)


class TestMaxSendable:
    def test_round_trip(self, resolver, artifact_store):
        store_key, artifact = resolver.seal_artifact("alice", "example.com", ALICE_PUBKEY, max_sendable=50_000)
        artifact_store.put(store_key, artifact.to_json())

        resolved = resolver.resolve_artifact("alice", "example.com")

        assert resolved.max_sendable == 50_000
        assert resolved.pubkey == ALICE_PUBKEY

    def test_absent_limit_is_not_serialized(self, resolver):
        _, artifact = resolver.seal_artifact("alice", "example.com", ALICE_PUBKEY)

        assert "max_sendable" not in json.loads(artifact.to_json())

    def test_raised_limit_breaks_the_tag(self, resolver, artifact_store):
        store_key, artifact = resolver.seal_artifact("alice", "example.com", ALICE_PUBKEY, max_sendable=50_000)
        data = json.loads(artifact.to_json())
        data["max_sendable"] = 50_000_000
        artifact_store.put(store_key, json.dumps(data))

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")

    def test_added_limit_breaks_the_tag(self, resolver, artifact_store, alice):
        data = json.loads(STORAGE["identifier_artifacts"][alice])
        data["max_sendable"] = 1_000
        STORAGE["identifier_artifacts"][alice] = json.dumps(data)

        with pytest.raises(NotFound):
            resolver.resolve("alice", "example.com")


class TestSecurityEvents:
    @pytest.fixture
    def audit(self):
        return MagicMock()

    @pytest.fixture
    def audited(self, artifact_store, audit):
        return IdentifierResolver(artifact_store, [("v1", RESOLVER_SECRET)], audit=audit)

    def test_wrong_tag_is_reported(self, audited, audit, alice):
        data = json.loads(STORAGE["identifier_artifacts"][alice])
        data["pubkey"] = "03" + "11" * 32
        STORAGE["identifier_artifacts"][alice] = json.dumps(data)

        with pytest.raises(NotFound):
            audited.resolve("alice", "example.com")

        audit.log_security_event.assert_called_once_with(
            "artifact_integrity_failure", "HIGH", {"secret_version": "v1"}
        )

    def test_binding_mismatch_is_reported(self, audited, audit, resolver, alice):
        _, mallory = resolver.seal_artifact("mallory", "example.com", ALICE_PUBKEY)
        STORAGE["identifier_artifacts"][alice] = mallory.to_json()

        with pytest.raises(NotFound):
            audited.resolve("alice", "example.com")

        audit.log_security_event.assert_called_once_with(
            "artifact_binding_mismatch", "HIGH", {"secret_version": "v1"}
        )

    def test_events_carry_no_identity(self, audited, audit, alice):
        STORAGE["identifier_artifacts"][alice] = STORAGE["identifier_artifacts"][alice].replace(
            ALICE_PUBKEY, "03" + "11" * 32
        )

        with pytest.raises(NotFound):
            audited.resolve("alice", "example.com")

        logged = repr(audit.log_security_event.call_args)
        for value in ("alice", "example.com", ALICE_PUBKEY, alice):
            assert value not in logged

    def test_plain_misses_are_not_reported(self, audited, audit, alice):
        with pytest.raises(NotFound):
            audited.resolve("nobody", "example.com")

        audit.log_security_event.assert_not_called()


class TestArtifactSerialization:
    def test_from_json_accepts_bytes(self):
        artifact = IdentifierArtifact("alice", "example.com", ALICE_PUBKEY, 1)

        assert IdentifierArtifact.from_json(artifact.to_json().encode()) == artifact

    @pytest.mark.parametrize(
        "raw",
        [
            "[]",
            '{"name": "alice", "domain": "example.com"}',
            '{"name": "alice", "domain": "example.com", "pubkey": "02ab", "issued_at": "yesterday"}',
            '{"name": "alice", "domain": "example.com", "pubkey": "02ab", "integrity_tag": 7}',
        ],
    )
    def test_from_json_rejects_malformed(self, raw):
        with pytest.raises(ValueError):
            IdentifierArtifact.from_json(raw)

    @pytest.mark.parametrize("max_sendable", [0, -5, "1000", True])
    def test_from_json_rejects_bad_max_sendable(self, max_sendable):
        raw = json.dumps(
            {"name": "alice", "domain": "example.com", "pubkey": ALICE_PUBKEY, "max_sendable": max_sendable}
        )

        with pytest.raises(ValueError):
            IdentifierArtifact.from_json(raw)
