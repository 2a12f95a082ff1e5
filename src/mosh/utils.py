"""Small shared helpers."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime


def generate_id(prefix: str) -> str:
    """Return ``<prefix>_<24 hex chars>``."""
    return f"{prefix}_{secrets.token_hex(12)}"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a ``Z`` suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
