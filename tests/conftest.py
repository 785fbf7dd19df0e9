"""
Pytest configuration and shared fixtures for payrail tests.
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

# Set test environment before importing payrail
os.environ["FLASK_ENV"] = "testing"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["RESOLVER_SECRET"] = "test-resolver-secret"
os.environ.pop("RESOLVER_SECRETS", None)
os.environ["LNURL_BASE_URL"] = "https://pay.example.com"
os.environ["IDENTIFIER_DOMAIN"] = "example.com"
os.environ["ARTIFACT_STORE"] = "memory"
os.environ["LN_BACKEND"] = "local"
# BOLT11 test-vector node key; never used outside tests
os.environ["LN_NODE_PRIVATE_KEY"] = "e126f68f7eafcc8b74f54d269fe206be715000f94dac067d1c04a8ca3b2db734"
os.environ["RATE_LIMIT_ENABLED"] = "false"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

NODE_KEY = os.environ["LN_NODE_PRIVATE_KEY"]
RESOLVER_SECRET = os.environ["RESOLVER_SECRET"]
ALICE_PUBKEY = "02f9308a019258c31049344f85f89d5229b531c845836f99b08601f113bce036f9"


@pytest.fixture
def artifact_store():
    """In-memory artifact store backed by the shared STORAGE buckets."""
    from payrail.storage import InMemoryArtifactStore

    return InMemoryArtifactStore()


@pytest.fixture
def resolver(artifact_store):
    """Resolver with a single v1 secret."""
    from payrail.resolver import IdentifierResolver

    return IdentifierResolver(artifact_store, [("v1", RESOLVER_SECRET)])


@pytest.fixture
def provision(resolver, artifact_store):
    """Seal and store an artifact, returning its store key."""

    def _provision(name, domain, pubkey, issued_at=1_700_000_000):
        store_key, artifact = resolver.seal_artifact(name, domain, pubkey, issued_at=issued_at)
        artifact_store.put(store_key, artifact.to_json())
        return store_key

    return _provision


@pytest.fixture
def alice(provision):
    """alice@example.com bound to a sample pubkey."""
    return provision("alice", "example.com", ALICE_PUBKEY)


@pytest.fixture
def invoice_signer():
    from payrail.payments.ln import LocalInvoiceSigner

    return LocalInvoiceSigner(NODE_KEY)


@pytest.fixture
def negotiator(resolver, invoice_signer):
    from payrail.lnurl_pay import LnurlPayNegotiator

    return LnurlPayNegotiator(
        resolver,
        invoice_signer,
        base_url="https://pay.example.com",
        min_sendable=1_000,
        max_sendable=100_000_000,
        comment_allowed=64,
        success_message="Thanks!",
    )


@pytest.fixture
def membership():
    from payrail.membership import StaticMembershipVerifier

    return StaticMembershipVerifier()


@pytest.fixture
def app(artifact_store, membership):
    """Create and configure a test Flask application instance."""
    from payrail.factory import create_app

    flask_app = create_app(store=artifact_store, membership=membership)
    flask_app.config.update({"TESTING": True})

    with flask_app.app_context():
        yield flask_app


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def mock_audit_logger():
    """Mock audit logger for testing."""
    return MagicMock()


@pytest.fixture(autouse=True)
def reset_storage():
    """Reset in-memory storage before and after each test."""
    from payrail.storage import STORAGE, init_storage

    init_storage()
    STORAGE["identifier_artifacts"].clear()

    yield

    STORAGE["identifier_artifacts"].clear()


# Pytest configuration hooks
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add 'unit' marker to tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Add 'integration' marker to tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
