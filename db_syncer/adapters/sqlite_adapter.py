# db_syncer/adapters/sqlite_adapter.py
import sqlite3
from datetime import datetime
import logging
from typing import Any, Dict, List

from ..db_sync.models import as_datetime
from .base import ColumnInfo, SqlRowStoreAdapter

logger = logging.getLogger(__name__)


class SQLiteAdapter(SqlRowStoreAdapter):
    """SQLite adapter; ``database`` in the config is the file path"""

    db_type = 'sqlite'
    placeholder = '?'
    quote_open = '"'
    quote_close = '"'
    # UTC, like CURRENT_TIMESTAMP column defaults, with milliseconds
    current_time_sql = "SELECT strftime('%Y-%m-%d %H:%M:%f', 'now') AS now"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.db_path = config.get('database', 'db_syncer.db')
        self.timeout = config.get('timeout', 10)

    def _open_connection(self):
        logger.debug(f"Opening SQLite database at {self.db_path}")
        return sqlite3.connect(self.db_path, timeout=self.timeout)

    def _driver_errors(self) -> tuple:
        return (sqlite3.Error,)

    def _is_connection_lost(self, error: Exception) -> bool:
        return (isinstance(error, sqlite3.ProgrammingError)
                and 'closed' in str(error).lower())

    def _bind(self, value: Any) -> Any:
        # ISO text with a fixed precision so lexical order matches time order
        if isinstance(value, datetime):
            return value.isoformat(sep=' ', timespec='milliseconds')
        return value

    def _time_value(self, expression: str) -> str:
        # text timestamps may use ' ' or 'T' and any precision
        return f"julianday({expression})"

    def get_last_update_time(self, table: str, update_column: str) -> datetime:
        column = self.quote(update_column)
        rows = self.query(
            f"SELECT {column} AS last_update FROM {self.quote(table)} "
            f"WHERE {self._time_value(column)} IS NOT NULL "
            f"ORDER BY {self._time_value(column)} DESC LIMIT 1"
        )
        return as_datetime(rows[0]['last_update'] if rows else None)

    def _create_status_table_sql(self) -> str:
        return f'''
            CREATE TABLE IF NOT EXISTS {self.quote(self.status_table)} (
                table_name TEXT PRIMARY KEY,
                last_sync_time TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        '''

    def _upsert_status_sql(self) -> str:
        return f'''
            INSERT INTO {self.quote(self.status_table)} (table_name, last_sync_time)
            VALUES (?, ?)
            ON CONFLICT(table_name) DO UPDATE SET
                last_sync_time = excluded.last_sync_time,
                updated_at = CURRENT_TIMESTAMP
        '''

    def get_table_columns(self, table: str) -> List[ColumnInfo]:
        rows = self.query(f"PRAGMA table_info({self.quote(table)})")
        return [
            ColumnInfo(
                name=row['name'],
                data_type=row['type'] or 'unknown',
                nullable=not row['notnull'],
                is_primary_key=bool(row['pk'])
            )
            for row in rows
        ]
