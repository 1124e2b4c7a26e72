# db_syncer/db_sync/reconciler.py
import logging
from typing import Iterator, List, Tuple

from ..adapters.base import RowStoreAdapter
from .exceptions import BatchApplyError, DatabaseConnectionError, PartialRowError
from .models import ReconcileResult, Row

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000


def chunked(rows: List[Row], size: int) -> Iterator[List[Row]]:
    """Split rows into consecutive chunks of at most ``size``"""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class BatchReconciler:
    """Classifies candidate rows as inserts or updates and applies them to the target.

    Each chunk is first applied with a single batch call. When that call
    fails the chunk is replayed one row at a time, so a malformed row only
    costs itself. A lost connection is not a row problem and propagates.
    """

    def __init__(self, adapter: RowStoreAdapter, max_retry_attempts: int = 1):
        self.adapter = adapter
        self.max_retry_attempts = max(1, max_retry_attempts)

    def reconcile(self, rows: List[Row], target_table: str, key_column: str,
                  batch_size: int = DEFAULT_BATCH_SIZE) -> ReconcileResult:
        to_insert, to_update = self.partition(rows, target_table, key_column)
        result = ReconcileResult()

        insert_chunks = list(chunked(to_insert, batch_size))
        for index, chunk in enumerate(insert_chunks, 1):
            logger.debug(f"Inserting chunk {index}/{len(insert_chunks)} ({len(chunk)} rows) into {target_table}")
            result.inserted += self._apply_chunk(chunk, target_table, key_column, insert=True)

        update_chunks = list(chunked(to_update, batch_size))
        for index, chunk in enumerate(update_chunks, 1):
            logger.debug(f"Updating chunk {index}/{len(update_chunks)} ({len(chunk)} rows) in {target_table}")
            result.updated += self._apply_chunk(chunk, target_table, key_column, insert=False)

        skipped = len(rows) - result.processed
        if skipped:
            logger.warning(f"{skipped} of {len(rows)} rows for {target_table} were not applied")
        return result

    def partition(self, rows: List[Row], target_table: str,
                  key_column: str) -> Tuple[List[Row], List[Row]]:
        """Split rows by whether their key already exists in the target"""
        to_insert, to_update = [], []
        for row in rows:
            key_value = row.get(key_column)
            if key_value is None:
                logger.warning(f"Skipping row without {key_column} value: {row}")
                continue
            try:
                exists = self.adapter.exists(target_table, key_column, key_value)
            except DatabaseConnectionError:
                raise
            except Exception as e:
                error = PartialRowError(
                    f"Existence check failed for {key_column}={key_value}: {e}", key_value)
                logger.error(f"Skipping row: {str(error)}")
                continue
            (to_update if exists else to_insert).append(row)
        return to_insert, to_update

    def _apply_chunk(self, chunk: List[Row], target_table: str,
                     key_column: str, insert: bool) -> int:
        try:
            self._apply(chunk, target_table, key_column, insert)
            return len(chunk)
        except Exception as e:
            error = BatchApplyError(
                f"Batch {'insert' if insert else 'update'} of {len(chunk)} rows "
                f"into {target_table} failed: {e}")
            logger.error(f"{str(error)}; falling back to row-by-row")

        applied = 0
        for row in chunk:
            if self._apply_row(row, target_table, key_column, insert):
                applied += 1
        logger.info(f"Row-by-row fallback applied {applied}/{len(chunk)} rows to {target_table}")
        return applied

    def _apply_row(self, row: Row, target_table: str, key_column: str, insert: bool) -> bool:
        key_value = row.get(key_column)
        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                self._apply([row], target_table, key_column, insert)
                return True
            except DatabaseConnectionError:
                raise
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt}/{self.max_retry_attempts} failed for "
                    f"{key_column}={key_value}: {str(e)}")
        error = PartialRowError(
            f"Giving up on {key_column}={key_value} in {target_table}", key_value)
        logger.error(str(error))
        return False

    def _apply(self, rows: List[Row], target_table: str, key_column: str, insert: bool) -> None:
        if insert:
            self.adapter.batch_insert(target_table, rows)
        else:
            self.adapter.batch_update(target_table, rows, key_column)
