"""Centralised wall-clock helpers — single source of truth for 'now'.

Session timestamps (createdAt / lastAccessed) and conversation timestamps
all come from here, so tests patch one function instead of datetime.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Milliseconds since the epoch, used for conversation ids and stamps."""
    return int(time.time() * 1000)
