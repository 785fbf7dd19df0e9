"""In-memory artifact store for tests and local development.

This module mirrors the interface of ``payrail.db_storage`` but keeps
everything in Python dictionaries.  The unit and integration tests rely on
this module to avoid the need for a running Redis.
"""

from __future__ import annotations

from typing import Dict, Optional, Union

# Public storage dictionary used by the test-suite fixtures.  The individual
# buckets are populated by ``init_storage``.
STORAGE: Dict[str, Dict[str, str]] = {}

StoredValue = Union[str, bytes]


def init_storage() -> None:
    """Initialise the in-memory storage buckets.

    Re-initialising recreates the bucket dictionaries but leaves the
    ``STORAGE`` object itself in place so references held by fixtures remain
    valid.
    """

    buckets = {
        "identifier_artifacts": {},
    }

    STORAGE.update(buckets)
    for key in list(STORAGE.keys()):
        if key not in buckets:
            STORAGE.pop(key)


def _get_bucket(name: str) -> Dict[str, str]:
    if name not in STORAGE:
        init_storage()
    return STORAGE[name]


def store_artifact(key: str, serialized: StoredValue) -> None:
    """Provisioning write path; the resolver itself never calls this."""
    if isinstance(serialized, bytes):
        serialized = serialized.decode("utf-8")
    _get_bucket("identifier_artifacts")[key] = serialized


def get_artifact(key: str) -> Optional[str]:
    return _get_bucket("identifier_artifacts").get(key)


def delete_artifact(key: str) -> None:
    _get_bucket("identifier_artifacts").pop(key, None)


class InMemoryArtifactStore:
    """Artifact store backed by the module-level ``STORAGE`` buckets."""

    def fetch(self, key: str) -> Optional[str]:
        return get_artifact(key)

    def put(self, key: str, serialized: StoredValue) -> None:
        store_artifact(key, serialized)

    def ping(self) -> bool:
        return True


# Ensure buckets exist on import so fixtures can use STORAGE immediately.
init_storage()
