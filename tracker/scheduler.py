"""
Tracker - Ingestion Scheduler

APScheduler BlockingScheduler firing one ingestion cycle per interval.
At most one cycle runs at a time; a tick that finds a cycle still running
is dropped, not queued.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .checkpoints import CheckpointStore
from .chain import ChainReader
from .config import Settings
from .cycle import STREAM_ORDER, CycleReport, IngestionCycle
from .errors import ConfigError, StoreError
from .fetcher import EventFetcher
from .processors import MintingProcessor, NftProcessor, build_handlers
from .store import FailedEventStore, MintingStore, NftStore

logger = logging.getLogger(__name__)

JOB_ID = "ingestion_cycle"


def bootstrap_checkpoints(store: CheckpointStore) -> None:
    """Make sure every stream has a checkpoint; exit the process if one cannot be established."""

    for stream_id in STREAM_ORDER:
        try:
            checkpoint = store.get_or_create(stream_id)
        except StoreError as exc:
            logger.critical("Cannot establish checkpoint for %s: %s", stream_id.value, exc)
            raise SystemExit(1) from exc
        logger.info("Tracking %s from %s", stream_id.value, checkpoint.watermark)


def build_cycle(settings: Settings, session_factory, chain_reader: Optional[ChainReader] = None) -> IngestionCycle:
    if not settings.indexer_url:
        raise ConfigError("INDEXER_URL is not set")
    fetcher = EventFetcher(
        settings.indexer_url,
        timeout=settings.fetch_timeout_seconds,
        minting_batch_size=settings.minting_batch_size,
        transfer_batch_size=settings.transfer_batch_size,
    )
    handlers = build_handlers(
        MintingProcessor(MintingStore(session_factory)),
        NftProcessor(NftStore(session_factory), chain_reader),
    )
    return IngestionCycle(
        checkpoints=CheckpointStore(session_factory),
        fetcher=fetcher,
        handlers=handlers,
        failed_events=FailedEventStore(session_factory),
        policy=settings.checkpoint_policy,
        max_retry_attempts=settings.max_retry_attempts,
    )


class IngestionScheduler:
    """Owns the periodic trigger and the single-flight guard around ``IngestionCycle.run``."""

    def __init__(self, cycle: IngestionCycle, interval_seconds: int = 5,
                 scheduler_factory: Callable[[], BlockingScheduler] = BlockingScheduler):
        self.cycle = cycle
        self.interval_seconds = interval_seconds
        self._busy = threading.Lock()
        self._scheduler_factory = scheduler_factory
        self._scheduler: Optional[BlockingScheduler] = None

    def tick(self) -> Optional[CycleReport]:
        """Run one cycle unless another is in flight; returns None when the tick is dropped."""

        if not self._busy.acquire(blocking=False):
            logger.warning("Previous ingestion cycle still running, skipping this tick")
            return None
        try:
            return self.cycle.run()
        except Exception:
            # Keep the schedule alive; the next tick starts from the stored watermarks.
            logger.exception("Ingestion cycle crashed")
            return None
        finally:
            self._busy.release()

    def start(self) -> None:
        self._scheduler = self._scheduler_factory()
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(),
            coalesce=True,      # missed runs collapse into one
            max_instances=1,    # never two cycles at once
        )
        logger.info("Starting ingestion every %ss", self.interval_seconds)
        try:
            self._scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Ingestion scheduler stopped")

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
