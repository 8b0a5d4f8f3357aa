"""Durable per-stream ingestion watermarks."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import CheckpointError, RecordExistsError, RecordNotFoundError
from .events import StreamId
from .models import IndexCheckpoint
from .utils import parse_db_timestamp

logger = logging.getLogger(__name__)

# Nothing was deployed before this instant.
DEFAULT_WATERMARK = "2024-09-04T13:39:30.681834"


@dataclass(frozen=True)
class Checkpoint:
    """Watermark of one stream: the last consumed ``(db_write_timestamp, id)`` pair."""

    stream_id: StreamId
    watermark: str = DEFAULT_WATERMARK
    last_event_id: str = ""

    @property
    def position(self) -> Tuple[datetime, str]:
        return parse_db_timestamp(self.watermark), self.last_event_id

    def is_before(self, other: "Checkpoint") -> bool:
        return self.position < other.position


class CheckpointStore:
    """SQL-backed checkpoint store.

    ``update`` replaces the row unconditionally. Callers only pass watermarks
    at or after the stored one; with a single ingestion cycle in flight nothing
    else writes these rows, so the store does not re-check monotonicity.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, stream_id: StreamId) -> Optional[Checkpoint]:
        with self._session_factory() as session:
            try:
                row = session.execute(
                    select(IndexCheckpoint).where(IndexCheckpoint.stream_id == stream_id.value)
                ).scalar_one_or_none()
            except SQLAlchemyError as exc:
                raise CheckpointError(f"cannot read checkpoint {stream_id.value}: {exc}") from exc
        if row is None:
            return None
        return _to_checkpoint(row)

    def create(self, stream_id: StreamId) -> Checkpoint:
        checkpoint = Checkpoint(stream_id=stream_id)
        with self._session_factory() as session:
            session.add(IndexCheckpoint(
                stream_id=stream_id.value,
                watermark=checkpoint.watermark,
                last_event_id=checkpoint.last_event_id,
            ))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise RecordExistsError(f"checkpoint {stream_id.value} already exists") from exc
            except SQLAlchemyError as exc:
                session.rollback()
                raise CheckpointError(f"cannot create checkpoint {stream_id.value}: {exc}") from exc
        logger.info("Created checkpoint %s at %s", stream_id.value, checkpoint.watermark)
        return checkpoint

    def update(self, checkpoint: Checkpoint) -> None:
        with self._session_factory() as session:
            try:
                row = session.execute(
                    select(IndexCheckpoint).where(IndexCheckpoint.stream_id == checkpoint.stream_id.value)
                ).scalar_one_or_none()
                if row is None:
                    raise RecordNotFoundError(f"checkpoint {checkpoint.stream_id.value} does not exist")
                row.watermark = checkpoint.watermark
                row.last_event_id = checkpoint.last_event_id
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise CheckpointError(f"cannot update checkpoint {checkpoint.stream_id.value}: {exc}") from exc

    def get_or_create(self, stream_id: StreamId) -> Checkpoint:
        found = self.get(stream_id)
        if found is not None:
            return found
        return self.create(stream_id)


def _to_checkpoint(row: IndexCheckpoint) -> Checkpoint:
    return Checkpoint(
        stream_id=StreamId(row.stream_id),
        watermark=row.watermark,
        last_event_id=row.last_event_id or "",
    )
