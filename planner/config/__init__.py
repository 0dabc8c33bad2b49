"""Centralised configuration helper.

This module eliminates scattered ``os.getenv`` calls by exposing a **single**
:class:`Settings` container (retrieved via :func:`get_settings`).  Values are
read from the process environment after the project ``.env`` file (or
``.env.test`` when ``NODE_ENV=test``) has been loaded with *python-dotenv*.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` is the directory that holds the ``planner`` package.
_REPO_ROOT = Path(__file__).resolve().parents[2]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got '{raw}'") from exc


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    auth_disabled: bool

    # Secrets -----------------------------------------------------------
    jwt_secret: str

    # Database ---------------------------------------------------------
    database_url: str

    # Misc
    log_level: str
    environment: Any
    allowed_cors_origins: str

    # Replication ------------------------------------------------------
    replication_default_batch_size: int
    replication_max_batch_size: int
    replication_partial_apply: bool

    @property
    def resolved_database_url(self) -> str:
        """Return the configured URL or the local fallback for this mode."""

        if self.database_url:
            return self.database_url
        return "sqlite:///:memory:" if self.testing else "sqlite:///./planner.db"

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover – test util
        for key, value in kwargs.items():
            if not hasattr(self, key):  # pragma: no cover – safety
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    node_env = os.getenv("NODE_ENV", "development")

    if node_env == "test":
        env_path = _REPO_ROOT / ".env.test"
        if not env_path.exists():
            env_path = _REPO_ROOT / ".env"
    else:
        env_path = _REPO_ROOT / ".env"

    if env_path.exists():
        # Explicit process variables win over the file.
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))

    # Tests run without auth unless they opt back in with AUTH_DISABLED=0.
    auth_env = os.getenv("AUTH_DISABLED")
    auth_disabled = _truthy(auth_env) if auth_env is not None else testing

    return Settings(
        testing=testing,
        auth_disabled=auth_disabled,
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        database_url=os.getenv("DATABASE_URL", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        environment=os.getenv("ENVIRONMENT"),
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", ""),
        replication_default_batch_size=_int_env("REPLICATION_DEFAULT_BATCH_SIZE", 10),
        replication_max_batch_size=_int_env("REPLICATION_MAX_BATCH_SIZE", 1000),
        replication_partial_apply=_truthy(os.getenv("REPLICATION_PARTIAL_APPLY")),
    )


# ------------------------------------------------------------------
# Runtime validation – fail fast when *required* settings are unusable.
# ------------------------------------------------------------------


def _validate_required(settings: Settings) -> None:  # noqa: D401 – helper
    """Abort startup when mandatory configuration is missing or inconsistent."""

    if settings.testing:
        return

    problems = []

    if not settings.auth_disabled:
        weak = settings.jwt_secret.strip() in {"", "dev-secret"} or len(settings.jwt_secret) < 16
        if weak:
            problems.append("JWT_SECRET (must be >=16 chars, not 'dev-secret')")

    if settings.replication_default_batch_size < 1:
        problems.append("REPLICATION_DEFAULT_BATCH_SIZE (must be >= 1)")

    if settings.replication_max_batch_size < settings.replication_default_batch_size:
        problems.append("REPLICATION_MAX_BATCH_SIZE (must be >= REPLICATION_DEFAULT_BATCH_SIZE)")

    if problems:
        raise RuntimeError(
            f"CRITICAL: Invalid configuration: {', '.join(problems)}\n"
            f"Set these in your .env file or deployment environment."
        )


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate_required(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]
