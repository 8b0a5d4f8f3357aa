"""One ingestion cycle: fetch, fold each stream, advance watermarks, retry dead letters."""

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, List, Mapping, Optional, Sequence

from .checkpoints import Checkpoint, CheckpointStore
from .errors import CheckpointError, FetchError, MalformedEventError, StoreError
from .events import EVENT_TYPES, StreamId
from .fetcher import EventFetcher
from .models import FailedEvent
from .processors import Handler, ProcessOutcome, fold
from .store import FailedEventStore

logger = logging.getLogger(__name__)

BATCH_END = "batch_end"
CONTIGUOUS = "contiguous"

# Start and end of a minting can be replayed in any order; transfers cannot,
# an old transfer replayed late would hand the NFT back to a previous owner.
RETRYABLE_STREAMS = (StreamId.START_MINTING, StreamId.END_MINTING)

# StartMinting first so an EndMinting in the same cycle finds its record.
STREAM_ORDER = (StreamId.START_MINTING, StreamId.END_MINTING, StreamId.NFT_TRANSFER)


@dataclass
class CycleReport:
    fetched: Dict[StreamId, int] = field(default_factory=dict)
    failed: Dict[StreamId, int] = field(default_factory=dict)
    advanced: Dict[StreamId, Checkpoint] = field(default_factory=dict)
    retried: int = 0
    resolved: int = 0
    fetch_error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.fetch_error is not None


def next_checkpoint(
    current: Checkpoint,
    outcomes: Sequence[ProcessOutcome],
    policy: str = BATCH_END,
    passable: AbstractSet[str] = frozenset(),
) -> Checkpoint:
    """Return the watermark a stream may move to after processing ``outcomes``.

    ``batch_end`` moves past the whole batch even if some items failed (those
    are only reachable through the dead-letter table afterwards).
    ``contiguous`` stops right before the first failed item so it is fetched
    again on the next cycle, unless its id is in ``passable`` (its retries are
    used up and it stays in the dead-letter table for manual follow-up).
    An event whose timestamp cannot be read is never chosen as the watermark.
    """

    if policy not in (BATCH_END, CONTIGUOUS):
        raise ValueError(f"unknown checkpoint policy {policy!r}")
    last = None
    for outcome in outcomes:
        if policy == CONTIGUOUS and not outcome.ok and outcome.event.id not in passable:
            break
        try:
            outcome.event.written_at
        except MalformedEventError:
            if policy == CONTIGUOUS and outcome.event.id not in passable:
                break
            continue
        last = outcome.event
    if last is None:
        return current
    return Checkpoint(stream_id=current.stream_id, watermark=last.db_write_timestamp, last_event_id=last.id)


class IngestionCycle:
    def __init__(
        self,
        checkpoints: CheckpointStore,
        fetcher: EventFetcher,
        handlers: Mapping[StreamId, Handler],
        failed_events: FailedEventStore,
        policy: str = BATCH_END,
        max_retry_attempts: int = 5,
    ):
        self.checkpoints = checkpoints
        self.fetcher = fetcher
        self.handlers = handlers
        self.failed_events = failed_events
        self.policy = policy
        self.max_retry_attempts = max_retry_attempts

    def load_checkpoints(self) -> Dict[StreamId, Checkpoint]:
        loaded = {}
        for stream_id in STREAM_ORDER:
            checkpoint = self.checkpoints.get(stream_id)
            if checkpoint is None:
                raise CheckpointError(f"checkpoint {stream_id.value} was never initialised")
            loaded[stream_id] = checkpoint
        return loaded

    def run(self) -> CycleReport:
        report = CycleReport()
        try:
            current = self.load_checkpoints()
            batch = self.fetcher.fetch(current)
        except (FetchError, CheckpointError) as exc:
            logger.error("Fetching from the indexer failed, trying again later: %s", exc)
            report.fetch_error = str(exc)
            return report

        for stream_id in STREAM_ORDER:
            events = batch.for_stream(stream_id)
            report.fetched[stream_id] = len(events)
            if not events:
                continue
            logger.info("Processing %d %s events", len(events), stream_id.value)
            outcomes = fold(events, self.handlers[stream_id])
            failures = [outcome for outcome in outcomes if not outcome.ok]
            report.failed[stream_id] = len(failures)
            exhausted = set()
            for outcome in failures:
                dead = self._dead_letter(outcome)
                if dead is not None and dead.attempts >= self.max_retry_attempts:
                    exhausted.add(outcome.event.id)
            self._advance(current[stream_id], outcomes, report, exhausted)

        self._retry_dead_letters(report)
        logger.info(
            "Cycle done: fetched %s, failed %s, retried %d, resolved %d",
            {s.value: n for s, n in report.fetched.items()},
            {s.value: n for s, n in report.failed.items()},
            report.retried,
            report.resolved,
        )
        return report

    def _advance(self, current: Checkpoint, outcomes: List[ProcessOutcome], report: CycleReport,
                 exhausted: AbstractSet[str] = frozenset()) -> None:
        candidate = next_checkpoint(current, outcomes, self.policy, exhausted)
        if not current.is_before(candidate):
            if candidate.is_before(current):
                logger.warning(
                    "Refusing to move %s back from %s to %s",
                    current.stream_id.value, current.watermark, candidate.watermark,
                )
            return
        try:
            self.checkpoints.update(candidate)
        except StoreError as exc:
            # The stored watermark stays put; the batch is refetched and replayed idempotently.
            logger.error("Failed to update watermark for %s: %s", current.stream_id.value, exc)
            return
        report.advanced[current.stream_id] = candidate

    def _dead_letter(self, outcome: ProcessOutcome) -> Optional[FailedEvent]:
        event = outcome.event
        try:
            return self.failed_events.record(
                stream_id=event.stream.value,
                event_id=event.id,
                payload=event.payload(),
                error_kind=outcome.failure.value,
                detail=outcome.detail,
            )
        except StoreError as exc:
            logger.error("Could not dead-letter %s event %s: %s", event.stream.value, event.id, exc)
            return None

    def _retry_dead_letters(self, report: CycleReport) -> None:
        # Under the contiguous policy the refetch itself is the retry.
        if self.policy != BATCH_END or self.max_retry_attempts <= 0:
            return
        try:
            pending = self.failed_events.pending([s.value for s in RETRYABLE_STREAMS], self.max_retry_attempts)
        except StoreError as exc:
            logger.error("Could not load failed events for retry: %s", exc)
            return
        for failed in pending:
            stream_id = StreamId(failed.stream_id)
            try:
                event = EVENT_TYPES[stream_id].from_payload(failed.payload)
            except MalformedEventError as exc:
                logger.error("Failed event %s has an unreadable payload: %s", failed.id, exc)
                continue
            report.retried += 1
            outcome = self.handlers[stream_id](event)
            try:
                if outcome.ok:
                    self.failed_events.mark_resolved(failed)
                    report.resolved += 1
                else:
                    self._dead_letter(outcome)
            except StoreError as exc:
                logger.error("Could not update failed event %s: %s", failed.id, exc)
