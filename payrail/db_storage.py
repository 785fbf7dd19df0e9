"""
Redis-backed artifact store for payrail - Production version.

Artifacts are provisioned out-of-band under ``artifact:<version>:<digest>``
keys.  This module only reads them; the ``put`` method exists for the
provisioning script.
"""

import logging
from typing import Any, Mapping, Optional

import redis

from payrail.errors import Timeout, Unavailable

logger = logging.getLogger(__name__)

KEY_PREFIX = "artifact:"


def build_redis_client(cfg: Mapping[str, Any]) -> redis.Redis:
    """
    Create a Redis client from configuration.

    The socket timeout doubles as the per-call time budget for artifact
    fetches, so it is taken from ``ARTIFACT_STORE_TIMEOUT_MS``.
    """
    timeout = cfg.get("ARTIFACT_STORE_TIMEOUT_MS", 500) / 1000.0

    if cfg.get("REDIS_URL"):
        return redis.Redis.from_url(
            str(cfg["REDIS_URL"]),
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )

    return redis.Redis(
        host=cfg.get("REDIS_HOST", "localhost"),
        port=cfg.get("REDIS_PORT", 6379),
        password=cfg.get("REDIS_PASSWORD"),
        db=cfg.get("REDIS_DB", 0),
        decode_responses=True,  # Return strings instead of bytes
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
        max_connections=50,
        health_check_interval=30,
    )


class RedisArtifactStore:
    """Artifact store reading serialized artifacts from Redis."""

    def __init__(self, client: redis.Redis, prefix: str = KEY_PREFIX):
        self.client = client
        self.prefix = prefix

    def fetch(self, key: str) -> Optional[str]:
        """
        Fetch a serialized artifact.

        Raises:
            Timeout: Redis did not answer within the socket timeout
            Unavailable: Redis is unreachable or returned an error
        """
        try:
            return self.client.get(f"{self.prefix}{key}")
        except redis.exceptions.TimeoutError as e:
            logger.warning("Artifact store fetch timed out")
            raise Timeout("artifact store timeout") from e
        except redis.exceptions.RedisError as e:
            logger.warning(f"Artifact store fetch failed: {type(e).__name__}")
            raise Unavailable("artifact store error") from e

    def put(self, key: str, serialized: str) -> None:
        self.client.set(f"{self.prefix}{key}", serialized)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
