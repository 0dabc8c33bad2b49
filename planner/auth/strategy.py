"""Authentication strategy abstraction.

The replication handlers only need an *owner* string.  How that string is
obtained depends on the runtime configuration, so the logic lives behind a
small strategy interface:

• :class:`DevAuthStrategy` – auth disabled (local development, most tests).
• :class:`JWTAuthStrategy` – HS256 bearer tokens; the owner is the ``sub``
  claim.

The concrete strategy is chosen once in :mod:`planner.dependencies.auth`.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any

from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from jose import JWTError
from jose import jwt

from planner.config import get_settings

OWNER_HEADER = "X-Planner-Owner"
DEV_OWNER = "dev@local"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# Strategy base-class
# ---------------------------------------------------------------------------


class AuthStrategy(ABC):
    """Pluggable authentication backend (strategy pattern)."""

    @abstractmethod
    def get_current_owner(self, request: Request) -> str:  # noqa: D401 – abstract
        """Return the authenticated owner identifier or raise **401**."""


# ---------------------------------------------------------------------------
# Development-mode bypass
# ---------------------------------------------------------------------------


class DevAuthStrategy(AuthStrategy):
    """Trust the caller – used when *AUTH_DISABLED* is true or in tests.

    The owner may be chosen per request with the ``X-Planner-Owner`` header so
    several simulated users can share one dev server.
    """

    def get_current_owner(self, request: Request) -> str:  # noqa: D401 – impl
        owner = request.headers.get(OWNER_HEADER, "").strip()
        return owner or DEV_OWNER


# ---------------------------------------------------------------------------
# HS256 JWT validation (production)
# ---------------------------------------------------------------------------


class JWTAuthStrategy(AuthStrategy):
    """Production strategy that validates HS256 tokens."""

    def __init__(self, secret: str | None = None):
        self._secret = secret or get_settings().jwt_secret

    def _decode(self, token: str) -> dict[str, Any]:
        return jwt.decode(token, self._secret, algorithms=["HS256"])

    def get_current_owner(self, request: Request) -> str:  # noqa: D401 – impl
        auth_header: str | None = request.headers.get("Authorization")
        if not auth_header or not auth_header.lower().startswith("bearer "):
            raise _unauthorized("Missing bearer token")

        token = auth_header[7:].strip()
        if not token:
            raise _unauthorized("Missing bearer token")

        try:
            payload = self._decode(token)
        except JWTError:
            raise _unauthorized("Invalid or expired token")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise _unauthorized("Invalid token subject")

        return subject


__all__ = [
    "AuthStrategy",
    "DevAuthStrategy",
    "JWTAuthStrategy",
    "OWNER_HEADER",
    "DEV_OWNER",
]
