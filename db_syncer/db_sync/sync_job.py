# db_syncer/db_sync/sync_job.py
from datetime import datetime, timedelta
import logging
import time
from typing import Callable, List, Optional

from ..adapters.base import RowStoreAdapter
from .extractor import ChangeExtractor
from .models import JobState, Row, SyncPair, SyncRunResult, WatermarkMode, as_datetime
from .reconciler import BatchReconciler
from .watermark import WatermarkStore

logger = logging.getLogger(__name__)


class SyncJob:
    """Replicates one source table into one target table.

    A run extracts rows changed since the pair's watermark, reconciles them
    into the target and only then advances the watermark. Any failure leaves
    the watermark where it was so the next run re-reads the same window.
    """

    def __init__(self, source_adapter: RowStoreAdapter, target_adapter: RowStoreAdapter,
                 pair: SyncPair, schema_provider=None,
                 watermark_mode: str = WatermarkMode.COMPLETION_TIME.value,
                 watermark_skew_seconds: float = 0,
                 clock: Optional[Callable[[], datetime]] = None):
        if watermark_skew_seconds < 0:
            raise ValueError("Watermark skew must not be negative")
        self.source_adapter = source_adapter
        self.target_adapter = target_adapter
        self.pair = pair
        self.schema_provider = schema_provider
        self.watermark_mode = WatermarkMode(watermark_mode)
        self.watermark_skew = timedelta(seconds=watermark_skew_seconds)
        # watermarks are compared against source values
        self.clock = clock or source_adapter.current_time

        self.extractor = ChangeExtractor(source_adapter)
        self.reconciler = BatchReconciler(target_adapter, pair.max_retry_attempts)
        self.watermarks = WatermarkStore(target_adapter)
        self.state = JobState.IDLE

    @property
    def pair_key(self) -> str:
        return self.watermarks.pair_key(self.pair.source_table, self.pair.target_table)

    def _resolve_columns(self):
        """Key and update column, preferring what schema analysis found"""
        key_column, update_column = self.pair.key_column, self.pair.update_column
        if self.schema_provider is None:
            return key_column, update_column
        try:
            schema = self.schema_provider.analyze_table(self.pair.source_table)
        except Exception as e:
            logger.warning(f"Schema analysis for {self.pair.source_table} failed, using defaults: {str(e)}")
            return key_column, update_column
        return (schema.primary_key or key_column,
                schema.update_column or update_column)

    def execute(self) -> SyncRunResult:
        """Run one extraction/reconcile/advance cycle; never raises"""
        started = time.time()
        self.state = JobState.IDLE
        logger.info(f"Starting sync {self.pair.source_table} -> {self.pair.target_table}")

        try:
            key_column, update_column = self._resolve_columns()

            self.state = JobState.EXTRACTING
            last_sync = self.watermarks.read(self.pair_key)
            logger.info(f"Last sync for {self.pair_key}: {last_sync.isoformat()}")
            rows = self.extractor.get_updated_records(self.pair.source_table, update_column, last_sync)

            if not rows:
                self.state = JobState.DONE
                logger.info(f"No changes for {self.pair_key}")
                return SyncRunResult(success=True, duration=time.time() - started,
                                     message='No new records')

            logger.info(f"Found {len(rows)} changed rows for {self.pair_key}")
            self.state = JobState.RECONCILING
            counts = self.reconciler.reconcile(rows, self.pair.target_table,
                                               key_column, self.pair.batch_size)

            self.state = JobState.ADVANCING
            self.watermarks.advance(self.pair_key,
                                    self._next_watermark(rows, update_column),
                                    previous=last_sync)

            self.state = JobState.DONE
            duration = time.time() - started
            logger.info(
                f"Sync {self.pair_key} done in {duration:.3f}s: "
                f"{counts.inserted} inserted, {counts.updated} updated"
            )
            return SyncRunResult(
                success=True,
                records_processed=counts.processed,
                records_inserted=counts.inserted,
                records_updated=counts.updated,
                duration=duration,
                message='Sync succeeded'
            )

        except Exception as e:
            failed_in = self.state
            self.state = JobState.FAILED
            logger.error(f"Sync {self.pair_key} failed while {failed_in.value}: {str(e)}")
            return SyncRunResult(success=False, duration=time.time() - started,
                                 error=str(e), message='Sync failed')

    def _next_watermark(self, rows: List[Row], update_column: str) -> datetime:
        if self.watermark_mode is WatermarkMode.MAX_SEEN:
            seen = [as_datetime(row[update_column]) for row in rows
                    if row.get(update_column) is not None]
            if seen:
                # rows inside the skew window are read again on every tick
                return max(seen) - self.watermark_skew
        return self.clock()
