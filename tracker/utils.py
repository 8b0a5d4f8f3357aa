"""Utility helpers for the tracker."""

import logging
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time (naive, as stored in the database)."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_db_timestamp(raw: str) -> datetime:
    """Parse an upstream ``db_write_timestamp`` into a naive UTC datetime.

    The indexer emits ISO timestamps without an offset (``2024-09-10T00:00:00``,
    optionally with microseconds); an explicit offset is normalised to UTC.
    """

    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_unix_seconds(raw: str) -> int:
    return int(parse_db_timestamp(raw).replace(tzinfo=timezone.utc).timestamp())


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
