"""Timezone helpers – a single UTC clock plus change-time (de)serialisation.

Change-times are stored as *naive* UTC datetimes (SQLAlchemy ``DateTime``
columns without timezone) and exposed on the wire as ISO-8601 strings with a
``Z`` suffix and microsecond precision, so a checkpoint handed back by a
client compares exactly with the stored value.
"""

from datetime import datetime
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:  # noqa: D401 – simple utility
    """Return *naive* current time in UTC for database compatibility."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_change_time(value: datetime) -> str:
    """Render a stored change-time as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``."""

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds") + "Z"


def parse_change_time(value: str) -> datetime:
    """Parse a wire change-time into a naive UTC datetime.

    Accepts a trailing ``Z`` or an explicit UTC offset.  Raises ``ValueError``
    for anything :func:`datetime.fromisoformat` rejects.
    """

    if not isinstance(value, str) or not value.strip():
        raise ValueError("change-time must be a non-empty ISO-8601 string")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


__all__ = ["utc_now", "utc_now_naive", "format_change_time", "parse_change_time"]
