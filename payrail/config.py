"""Configuration management for payrail.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from typing import Any, List, Mapping, Optional, Tuple, TypedDict
from urllib.parse import urlparse

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

DEFAULT_SECRET_VERSION = "v1"


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    FLASK_DEBUG: bool
    RESOLVER_SECRETS: List[Tuple[str, str]]
    RESOLVER_REQUIRE_INTEGRITY_TAG: bool
    ARTIFACT_STORE: str
    ARTIFACT_STORE_TIMEOUT_MS: int
    LNURL_BASE_URL: str
    IDENTIFIER_DOMAIN: str
    LNURL_MIN_SENDABLE: int
    LNURL_MAX_SENDABLE: int
    LNURL_COMMENT_ALLOWED: int
    LNURL_INVOICE_EXPIRY: int
    LNURL_SUCCESS_MESSAGE: str
    LN_BACKEND: str
    LN_NETWORK: str
    LN_NODE_PRIVATE_KEY: Optional[str]
    LN_MIN_FINAL_CLTV: int
    LND_REST_URL: str
    LND_MACAROON: Optional[str]
    LND_TIMEOUT_MS: int
    MEMBERSHIP_URL: Optional[str]
    MEMBERSHIP_TIMEOUT_MS: int
    ROUTE_PULL_FEE_PPM: int
    CORS_ORIGINS: str
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    RATELIMIT_DEFAULT: str
    FORCE_HTTPS: bool
    LOG_LEVEL: str
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_PASSWORD: Optional[str]
    REDIS_DB: int
    REDIS_URL: Optional[str]
    APP_NAME: str
    APP_VERSION: str
    APP_HOST: str
    APP_PORT: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def parse_resolver_secrets(raw_value: Optional[str]) -> List[Tuple[str, str]]:
    """Parse ``"v2:secret,v1:secret"`` into an ordered keyring, newest first.

    Entries without a ``version:`` prefix get the default version.  Duplicate
    versions are rejected because they would make lookup keys ambiguous.
    """

    keyring: List[Tuple[str, str]] = []
    if not raw_value:
        return keyring

    seen = set()
    for part in raw_value.split(","):
        part = part.strip()
        if not part:
            continue
        if ":" in part:
            version, secret = part.split(":", 1)
            version = version.strip()
        else:
            version, secret = DEFAULT_SECRET_VERSION, part
        if not version or not secret:
            raise ValueError("RESOLVER_SECRETS entries must look like 'version:secret'")
        if version in seen:
            raise ValueError(f"RESOLVER_SECRETS contains duplicate version {version!r}")
        seen.add(version)
        keyring.append((version, secret))
    return keyring


def _resolver_secrets_from_env() -> List[Tuple[str, str]]:
    keyring = parse_resolver_secrets(os.getenv("RESOLVER_SECRETS"))
    if keyring:
        return keyring
    single = os.getenv("RESOLVER_SECRET")
    if single:
        return [(DEFAULT_SECRET_VERSION, single)]
    return []


def _identifier_domain_from_env() -> str:
    """Domain served by the well-known endpoints; defaults to the LNURL base URL host."""

    explicit = os.getenv("IDENTIFIER_DOMAIN")
    if explicit:
        return explicit.strip().lower()
    return (urlparse(os.getenv("LNURL_BASE_URL", "http://localhost:5000")).hostname or "localhost").lower()


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    return {
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": os.getenv("FLASK_ENV", "development"),
        "FLASK_DEBUG": _get_env_bool("FLASK_DEBUG", False),
        # Identifier resolution
        "RESOLVER_SECRETS": _resolver_secrets_from_env(),
        "RESOLVER_REQUIRE_INTEGRITY_TAG": _get_env_bool("RESOLVER_REQUIRE_INTEGRITY_TAG", False),
        "ARTIFACT_STORE": os.getenv("ARTIFACT_STORE", "memory").strip().lower(),
        "ARTIFACT_STORE_TIMEOUT_MS": _get_env_int("ARTIFACT_STORE_TIMEOUT_MS", 500),
        # LNURL-pay Configuration (amounts in millisatoshi)
        "LNURL_BASE_URL": os.getenv("LNURL_BASE_URL", "http://localhost:5000").rstrip("/"),
        "IDENTIFIER_DOMAIN": _identifier_domain_from_env(),
        "LNURL_MIN_SENDABLE": _get_env_int("LNURL_MIN_SENDABLE", 1_000),
        "LNURL_MAX_SENDABLE": _get_env_int("LNURL_MAX_SENDABLE", 100_000_000),
        "LNURL_COMMENT_ALLOWED": _get_env_int("LNURL_COMMENT_ALLOWED", 255),
        "LNURL_INVOICE_EXPIRY": _get_env_int("LNURL_INVOICE_EXPIRY", 600),
        "LNURL_SUCCESS_MESSAGE": os.getenv("LNURL_SUCCESS_MESSAGE", "Payment received. Thank you!"),
        # Lightning invoice backend
        "LN_BACKEND": os.getenv("LN_BACKEND", "local").strip().lower(),
        "LN_NETWORK": os.getenv("LN_NETWORK", "bc").strip().lower(),
        "LN_NODE_PRIVATE_KEY": os.getenv("LN_NODE_PRIVATE_KEY"),
        "LN_MIN_FINAL_CLTV": _get_env_int("LN_MIN_FINAL_CLTV", 18),
        "LND_REST_URL": os.getenv("LND_REST_URL", "").rstrip("/"),
        "LND_MACAROON": os.getenv("LND_MACAROON") or os.getenv("LND_MACAROON_HEX"),
        "LND_TIMEOUT_MS": _get_env_int("LND_TIMEOUT_MS", 3000),
        # Membership verification
        "MEMBERSHIP_URL": os.getenv("MEMBERSHIP_URL"),
        "MEMBERSHIP_TIMEOUT_MS": _get_env_int("MEMBERSHIP_TIMEOUT_MS", 1000),
        # Route cost model
        "ROUTE_PULL_FEE_PPM": _get_env_int("ROUTE_PULL_FEE_PPM", 1_000),
        # CORS Configuration
        "CORS_ORIGINS": os.getenv("CORS_ORIGINS", "*"),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "100/hour"),
        "RATELIMIT_DEFAULT": os.getenv("RATELIMIT_DEFAULT", os.getenv("RATE_LIMIT_DEFAULT", "100/hour")),
        "FORCE_HTTPS": _get_env_bool(
            "FORCE_HTTPS",
            os.getenv("FLASK_ENV", "development").lower() == "production",
        ),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Redis Configuration (artifact store and rate limit storage)
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost"),
        "REDIS_PORT": _get_env_int("REDIS_PORT", 6379),
        "REDIS_PASSWORD": os.getenv("REDIS_PASSWORD"),
        "REDIS_DB": _get_env_int("REDIS_DB", 0),
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "payrail"),
        "APP_VERSION": os.getenv("APP_VERSION", "0.1.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": _get_env_int("APP_PORT", 5000),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    min_sendable = config.get("LNURL_MIN_SENDABLE", 1_000)
    max_sendable = config.get("LNURL_MAX_SENDABLE", 100_000_000)
    if min_sendable < 1:
        raise ValueError("LNURL_MIN_SENDABLE must be at least 1 millisatoshi")
    if max_sendable < min_sendable:
        raise ValueError("LNURL_MAX_SENDABLE must not be below LNURL_MIN_SENDABLE")
    if config.get("LNURL_COMMENT_ALLOWED", 0) < 0:
        raise ValueError("LNURL_COMMENT_ALLOWED must not be negative")

    flask_env = config.get("FLASK_ENV")

    if flask_env == "production":
        if not config.get("RESOLVER_SECRETS"):
            raise ValueError("⚠️  RESOLVER_SECRET must be set for production!")

        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("⚠️  FLASK_SECRET_KEY must be set for production!")

        if config.get("LN_BACKEND", "local") == "local" and not config.get("LN_NODE_PRIVATE_KEY"):
            raise ValueError("⚠️  LN_NODE_PRIVATE_KEY must be set when LN_BACKEND=local!")

        if not config.get("RESOLVER_REQUIRE_INTEGRITY_TAG"):
            import warnings

            warnings.warn(
                "⚠️  RESOLVER_REQUIRE_INTEGRITY_TAG is off - artifacts without a tag will be trusted!",
                stacklevel=2,
            )

        # Warn if Redis password not set
        if config.get("ARTIFACT_STORE") == "redis" and not config.get("REDIS_PASSWORD"):
            import warnings

            warnings.warn("⚠️  REDIS_PASSWORD not set - Redis will be unprotected!", stacklevel=2)

    return True
