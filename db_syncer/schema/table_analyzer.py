# db_syncer/schema/table_analyzer.py
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from ..adapters.base import ColumnInfo, RowStoreAdapter
from .cache import SchemaCache
from .models import TableSchema

logger = logging.getLogger(__name__)

PRIMARY_KEY_CANDIDATES = ['id', 'ID', 'Id']
UPDATE_COLUMN_CANDIDATES = ['updated_at', 'last_update', 'modify_time', 'update_time']


class TableAnalyzer:
    """Guesses primary key and update-timestamp columns for a table.

    Results are kept in memory and, when a SchemaCache is supplied, in its
    JSON file so restarts skip the introspection queries.
    """

    def __init__(self, adapter: RowStoreAdapter, cache: Optional[SchemaCache] = None):
        self.adapter = adapter
        self.cache = cache
        self._memory: Dict[str, TableSchema] = {}

    def _cache_key(self, table_name: str) -> str:
        return f"{self.adapter.db_type}:{self.adapter.config.get('database', '')}:{table_name}"

    def analyze_table(self, table_name: str) -> TableSchema:
        if table_name in self._memory:
            return self._memory[table_name]

        key = self._cache_key(table_name)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self._memory[table_name] = cached
                return cached

        logger.info(f"Analyzing table structure: {table_name}")
        try:
            columns = self.adapter.get_table_columns(table_name)
        except Exception as e:
            logger.error(f"Failed to analyze table {table_name}: {str(e)}")
            raise
        if not columns:
            raise ValueError(f"Table {table_name} does not exist or has no columns")

        schema = TableSchema(
            table_name=table_name,
            primary_key=self._find_primary_key(columns),
            update_column=self._find_update_column(columns),
            columns=[col.name for col in columns],
            analyzed_at=datetime.now().isoformat(),
            db_type=self.adapter.db_type
        )
        self._memory[table_name] = schema
        if self.cache is not None:
            self.cache.set(key, schema)

        logger.info(
            f"Table {table_name} analyzed: primary_key={schema.primary_key}, "
            f"update_column={schema.update_column}, columns={len(columns)}"
        )
        return schema

    @staticmethod
    def _find_primary_key(columns: List[ColumnInfo]) -> Optional[str]:
        for col in columns:
            if col.is_primary_key:
                return col.name
        names = {col.name for col in columns}
        for candidate in PRIMARY_KEY_CANDIDATES:
            if candidate in names:
                return candidate
        return None

    @staticmethod
    def _find_update_column(columns: List[ColumnInfo]) -> Optional[str]:
        by_lower = {col.name.lower(): col.name for col in columns}
        for candidate in UPDATE_COLUMN_CANDIDATES:
            if candidate in by_lower:
                return by_lower[candidate]
        return None

    def clear_cache(self) -> None:
        self._memory.clear()
        if self.cache is not None:
            self.cache.clear()
        logger.info("Table schema cache cleared")

    def get_cache_info(self) -> Dict[str, Any]:
        return {
            'cached_tables': list(self._memory.keys()),
            'cache_size': len(self._memory),
            'cache_file': str(self.cache.file_path) if self.cache else None,
            'cache_enabled': bool(self.cache and self.cache.enabled),
            'cache_ttl': self.cache.ttl_seconds if self.cache else None,
        }
