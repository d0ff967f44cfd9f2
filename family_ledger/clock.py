"""
Server clock.

Timestamps are naive UTC throughout: that is what the MongoDB driver
returns with tz_aware=False, and it keeps stored and in-memory values
comparable.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
