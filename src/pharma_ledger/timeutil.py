"""UTC timestamp helpers.

Every timestamp the service writes (transactions, blocks, history entries,
store rows) is an ISO-8601 string in UTC with an explicit offset.
"""

from __future__ import annotations

from datetime import UTC, datetime


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(UTC).isoformat()


def compact_stamp() -> str:
    """Current UTC time formatted for use in file names."""
    return datetime.now(UTC).strftime("%Y%m%d-%H%M%S-%f")
