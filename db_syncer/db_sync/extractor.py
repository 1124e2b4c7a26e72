# db_syncer/db_sync/extractor.py
from datetime import datetime
import logging
from typing import List

from ..adapters.base import RowStoreAdapter
from .exceptions import ExtractionError
from .models import Row

logger = logging.getLogger(__name__)


class ChangeExtractor:
    """Reads rows changed since a watermark from the source database"""

    def __init__(self, adapter: RowStoreAdapter):
        self.adapter = adapter

    def get_updated_records(self, table: str, update_column: str,
                            since: datetime) -> List[Row]:
        """Rows with update_column after ``since``, oldest first"""
        try:
            rows = self.adapter.get_updated_records(table, update_column, since)
        except Exception as e:
            logger.error(f"Error reading changes from {table}.{update_column}: {str(e)}")
            raise ExtractionError(f"Could not read changes from {table}: {e}") from e

        logger.debug(f"Extracted {len(rows)} changed rows from {table} since {since.isoformat()}")
        return list(rows)
