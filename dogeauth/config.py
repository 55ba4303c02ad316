"""Configuration management for the access gate.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
import warnings
from typing import Any, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}


class AppConfig(TypedDict, total=False):
    """Typed representation of the application's configuration."""

    FLASK_SECRET_KEY: Optional[str]
    FLASK_ENV: str
    FLASK_DEBUG: bool
    NETWORK: str
    CHALLENGE_TTL_SECONDS: int
    CHALLENGE_RANDOM_BYTES: int
    CHALLENGE_SWEEP_SECONDS: int
    CHALLENGE_STORE: str
    ALLOWED_ADDRESSES_FILE: Optional[str]
    ALLOWED_ADDRESSES: str
    ALLOW_LIST_REFRESH_SECONDS: int
    ACTION_WEBHOOK_URL: Optional[str]
    ACTION_WEBHOOK_TIMEOUT: int
    ACTION_WORKERS: int
    REQUEST_DEADLINE_SECONDS: int
    REDIS_URL: Optional[str]
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_PASSWORD: Optional[str]
    REDIS_DB: int
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    FORCE_HTTPS: bool
    CORS_ORIGINS: str
    LOG_LEVEL: str
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


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    return {
        # Flask Configuration
        "FLASK_SECRET_KEY": os.getenv("FLASK_SECRET_KEY"),
        "FLASK_ENV": os.getenv("FLASK_ENV", "development"),
        "FLASK_DEBUG": _get_env_bool("FLASK_DEBUG", False),
        # Signature scheme
        "NETWORK": os.getenv("NETWORK", "dogecoin"),
        # Challenge lifecycle
        "CHALLENGE_TTL_SECONDS": _get_env_int("CHALLENGE_TTL_SECONDS", 300),
        "CHALLENGE_RANDOM_BYTES": _get_env_int("CHALLENGE_RANDOM_BYTES", 16),
        "CHALLENGE_SWEEP_SECONDS": _get_env_int("CHALLENGE_SWEEP_SECONDS", 60),
        "CHALLENGE_STORE": os.getenv("CHALLENGE_STORE", "memory"),
        # Allow-list
        "ALLOWED_ADDRESSES_FILE": os.getenv("ALLOWED_ADDRESSES_FILE", "allowed_addresses.json"),
        "ALLOWED_ADDRESSES": os.getenv("ALLOWED_ADDRESSES", ""),
        "ALLOW_LIST_REFRESH_SECONDS": _get_env_int("ALLOW_LIST_REFRESH_SECONDS", 30),
        # Grant action
        "ACTION_WEBHOOK_URL": os.getenv("ACTION_WEBHOOK_URL") or None,
        "ACTION_WEBHOOK_TIMEOUT": _get_env_int("ACTION_WEBHOOK_TIMEOUT", 5),
        "ACTION_WORKERS": _get_env_int("ACTION_WORKERS", 4),
        "REQUEST_DEADLINE_SECONDS": _get_env_int("REQUEST_DEADLINE_SECONDS", 5),
        # Redis Configuration (shared challenge store)
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost"),
        "REDIS_PORT": _get_env_int("REDIS_PORT", 6379),
        "REDIS_PASSWORD": os.getenv("REDIS_PASSWORD"),
        "REDIS_DB": _get_env_int("REDIS_DB", 0),
        # Rate Limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "100/hour"),
        "FORCE_HTTPS": _get_env_bool(
            "FORCE_HTTPS",
            os.getenv("FLASK_ENV", "development").lower() == "production",
        ),
        # CORS Configuration
        "CORS_ORIGINS": os.getenv("CORS_ORIGINS", "*"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Application Settings
        "APP_NAME": os.getenv("APP_NAME", "dogeauth"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0"),
        "APP_HOST": os.getenv("APP_HOST", "0.0.0.0"),
        "APP_PORT": _get_env_int("APP_PORT", 8080),
    }


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    ttl = config.get("CHALLENGE_TTL_SECONDS", 300)
    if ttl <= 0:
        raise ValueError(f"CHALLENGE_TTL_SECONDS must be positive (got {ttl})")

    random_bytes = config.get("CHALLENGE_RANDOM_BYTES", 16)
    if random_bytes < 16:
        raise ValueError(f"CHALLENGE_RANDOM_BYTES must be at least 16 (128 bits), got {random_bytes}")

    store = str(config.get("CHALLENGE_STORE", "memory")).lower()
    if store not in {"memory", "redis"}:
        raise ValueError(f"CHALLENGE_STORE must be 'memory' or 'redis' (got {store!r})")

    if not config.get("ALLOWED_ADDRESSES_FILE") and not config.get("ALLOWED_ADDRESSES"):
        warnings.warn("Neither ALLOWED_ADDRESSES_FILE nor ALLOWED_ADDRESSES set - nobody will be granted access", stacklevel=2)

    # Check for insecure defaults in production
    if config.get("FLASK_ENV") == "production":
        if not config.get("FLASK_SECRET_KEY"):
            raise ValueError("FLASK_SECRET_KEY must be set for production!")

        if store == "redis" and not (config.get("REDIS_URL") or config.get("REDIS_HOST")):
            raise ValueError("REDIS_URL or REDIS_HOST must be set when CHALLENGE_STORE=redis")

        if store == "redis" and not config.get("REDIS_PASSWORD") and not config.get("REDIS_URL"):
            warnings.warn("REDIS_PASSWORD not set - Redis will be unprotected!", stacklevel=2)

        if store == "memory":
            warnings.warn(
                "In-memory challenge store in production - challenges are not shared between instances",
                stacklevel=2,
            )

    return True
