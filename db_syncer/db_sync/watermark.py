# db_syncer/db_sync/watermark.py
from datetime import datetime
import logging
from typing import Optional

from ..adapters.base import RowStoreAdapter
from .exceptions import WatermarkWriteError

logger = logging.getLogger(__name__)


class WatermarkStore:
    """Per-pair high-water mark kept in the target database"""

    def __init__(self, adapter: RowStoreAdapter):
        self.adapter = adapter

    @staticmethod
    def pair_key(source_table: str, target_table: str) -> str:
        return f"{source_table}_to_{target_table}"

    def read(self, pair_key: str) -> datetime:
        """Last propagated instant for a pair, epoch when never synced"""
        watermark = self.adapter.get_sync_status(pair_key)
        logger.debug(f"Watermark for {pair_key}: {watermark.isoformat()}")
        return watermark

    def advance(self, pair_key: str, instant: datetime,
                previous: Optional[datetime] = None) -> datetime:
        """Persist a new watermark; it never moves below ``previous``"""
        if previous is not None and instant < previous:
            logger.warning(
                f"Refusing to move watermark for {pair_key} back from "
                f"{previous.isoformat()} to {instant.isoformat()}"
            )
            instant = previous
        try:
            self.adapter.update_sync_status(pair_key, instant)
        except Exception as e:
            logger.error(f"Error writing watermark for {pair_key}: {str(e)}")
            raise WatermarkWriteError(f"Could not persist watermark for {pair_key}: {e}") from e
        logger.debug(f"Advanced watermark for {pair_key} to {instant.isoformat()}")
        return instant
