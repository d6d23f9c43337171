"""
Revision identifier generation.

A revision is named by a 128-bit random token plus an ISO-8601 UTC
timestamp with millisecond precision ("2024-05-01T09:30:00.123Z"). The
timestamp is embedded in commit-log sort keys, so its lexicographic order
must equal chronological order: fixed width, always UTC, always 'Z'.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


@dataclass(frozen=True)
class RevisionIdentifier:
    """Unique id and sortable timestamp of one mutation."""

    rev_id: str
    timestamp: str


def format_timestamp(moment: datetime) -> str:
    """Render a datetime the way revision sort keys expect it."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime(_ISO_FORMAT)[:-4] + "Z"


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, _ISO_FORMAT).replace(tzinfo=timezone.utc)


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def new_revision(not_before: str | None = None) -> RevisionIdentifier:
    """Create a fresh revision identifier.

    Args:
        not_before: Timestamp of the parent revision. The new timestamp is
            forced at least one millisecond past it, so a child always sorts
            after its parent even if the wall clock stepped backwards.

    Returns:
        RevisionIdentifier with a UUID4 id
    """
    now = datetime.now(timezone.utc)
    if not_before is not None:
        floor = parse_timestamp(not_before) + timedelta(milliseconds=1)
        if now < floor:
            now = floor
    return RevisionIdentifier(rev_id=str(uuid.uuid4()), timestamp=format_timestamp(now))
