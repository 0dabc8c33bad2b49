"""FastAPI dependency that exposes the *current owner*.

The heavy lifting (development bypass vs. JWT validation) is implemented in
strategy classes under :pymod:`planner.auth.strategy`.  The concrete strategy
is picked from :pydata:`settings.auth_disabled` so request handlers remain
branch-free.
"""

from __future__ import annotations

from fastapi import Request

from planner.auth.strategy import AuthStrategy
from planner.auth.strategy import DevAuthStrategy
from planner.auth.strategy import JWTAuthStrategy
from planner.config import get_settings

# Tests patch this flag to toggle dev ↔ JWT behaviour.
AUTH_DISABLED: bool = get_settings().auth_disabled

_strategy_cache: dict[str, AuthStrategy] = {}


def _get_strategy() -> AuthStrategy:  # noqa: D401 – internal helper
    """Return *singleton* strategy instance based on ``AUTH_DISABLED`` flag."""

    if AUTH_DISABLED:
        if "dev" not in _strategy_cache:
            _strategy_cache["dev"] = DevAuthStrategy()
        return _strategy_cache["dev"]

    if "jwt" not in _strategy_cache:
        _strategy_cache["jwt"] = JWTAuthStrategy()
    return _strategy_cache["jwt"]


def get_current_owner(request: Request) -> str:
    """Return the authenticated owner identifier or raise **401**."""

    return _get_strategy().get_current_owner(request)


__all__ = ["get_current_owner"]
