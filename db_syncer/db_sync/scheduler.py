# db_syncer/db_sync/scheduler.py
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from ..adapters.base import RowStoreAdapter
from .models import SyncPair, SyncRunResult, SyncSettings, TableDirection, TickSummary
from .sync_job import SyncJob

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs one SyncJob per configured direction on every tick"""

    def __init__(self, adapters: Dict[str, RowStoreAdapter],
                 directions: List[TableDirection], settings: SyncSettings,
                 schema_providers: Optional[Dict[str, Any]] = None):
        self.adapters = adapters
        self.directions = directions
        self.settings = settings
        self.schema_providers = schema_providers or {}
        self.tick_count = 0
        self.last_summary: Optional[TickSummary] = None
        self._tick_lock = threading.Lock()
        self._running = False
        logger.info(f"Initialized SyncScheduler with {len(directions)} direction(s), "
                    f"interval={settings.interval_seconds}s")

    def build_pair(self, direction: TableDirection) -> SyncPair:
        return SyncPair(
            source_table=direction.listen_table.strip(),
            target_table=direction.sync_table.strip(),
            key_column=self.settings.key_column,
            update_column=self.settings.update_column,
            batch_size=self.settings.batch_size,
            max_retry_attempts=self.settings.max_retry_attempts
        )

    def sync_direction(self, direction: TableDirection) -> TickSummary:
        """Sync one direction, converting any failure into a failed-table count"""
        summary = TickSummary(total_tables=1)
        pair_name = f"{direction.listen_table} -> {direction.sync_table}"
        logger.info(f"Starting {direction.label} sync: {pair_name}")

        try:
            job = SyncJob(
                self.adapters[direction.source_role],
                self.adapters[direction.target_role],
                self.build_pair(direction),
                schema_provider=self.schema_providers.get(direction.source_role),
                watermark_mode=self.settings.watermark_mode,
                watermark_skew_seconds=self.settings.watermark_skew_seconds
            )
            result = job.execute()
        except Exception as e:
            result = SyncRunResult(success=False, error=str(e), message='Sync failed')

        summary.results[direction.name] = result
        if result.success:
            summary.success_tables += 1
            summary.total_records += result.records_processed
            logger.info(f"{direction.label} sync of {pair_name} complete: {result.to_dict()}")
        else:
            summary.failed_tables += 1
            logger.error(f"{direction.label} sync of {pair_name} failed: {result.error}")
        return summary

    def _is_configured(self, direction: TableDirection) -> bool:
        return (direction.source_role in self.adapters
                and direction.target_role in self.adapters
                and bool(direction.listen_table) and bool(direction.sync_table))

    def run_tick(self) -> Optional[TickSummary]:
        """Run all directions once; returns None if a tick is already running"""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous sync tick still running, skipping this one")
            return None

        started = time.time()
        try:
            self.tick_count += 1
            logger.info(f"Sync tick {self.tick_count} started")
            summary = TickSummary()
            for direction in self.directions:
                if not self._is_configured(direction):
                    logger.debug(f"Direction {direction.name} not configured, skipping")
                    continue
                summary.merge(self.sync_direction(direction))
            summary.duration = time.time() - started
            self.last_summary = summary
            logger.info(
                f"Sync tick {self.tick_count} finished in {summary.duration:.3f}s: "
                f"{summary.success_tables}/{summary.total_tables} tables ok, "
                f"{summary.total_records} records"
            )
            return summary
        finally:
            self._tick_lock.release()

    def run_forever(self, stop_event: threading.Event) -> None:
        """Tick immediately, then every interval until ``stop_event`` is set"""
        self._running = True
        logger.info(f"Sync scheduler started, interval {self.settings.interval_seconds}s")
        try:
            while not stop_event.is_set():
                tick_started = time.time()
                try:
                    self.run_tick()
                except Exception as e:
                    logger.error(f"Unexpected error in sync tick: {str(e)}")
                # fixed rate; a tick longer than the interval delays the next one
                elapsed = time.time() - tick_started
                stop_event.wait(max(0.0, self.settings.interval_seconds - elapsed))
        finally:
            self._running = False
            logger.info("Sync scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'tick_count': self.tick_count,
            'interval_seconds': self.settings.interval_seconds,
            'directions': [d.name for d in self.directions if self._is_configured(d)],
            'last_summary': self.last_summary.to_dict() if self.last_summary else None,
        }
