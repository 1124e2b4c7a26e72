from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Sequence

from ..db_sync.exceptions import DatabaseConnectionError, QueryError, WriteError
from ..db_sync.models import Row, as_datetime

logger = logging.getLogger(__name__)

SYNC_STATUS_TABLE = 'sync_status'


@dataclass
class ColumnInfo:
    name: str
    data_type: str = 'unknown'
    nullable: bool = True
    is_primary_key: bool = False


class RowStoreAdapter(ABC):
    """Abstract base class for database adapters"""

    db_type = 'generic'

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    def connect(self) -> None:
        """Open the connection and make sure the sync status table exists"""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection"""
        pass

    @abstractmethod
    def query(self, text: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run a parameterized statement and return rows as dicts"""
        pass

    @abstractmethod
    def exists(self, table: str, key_column: str, key_value: Any) -> bool:
        """Check whether a row with the given key exists"""
        pass

    @abstractmethod
    def batch_insert(self, table: str, rows: List[Row]) -> None:
        """Insert rows in one transaction"""
        pass

    @abstractmethod
    def batch_update(self, table: str, rows: List[Row], key_column: str) -> None:
        """Update rows by key in one transaction"""
        pass

    @abstractmethod
    def get_updated_records(self, table: str, update_column: str,
                            since: datetime) -> List[Row]:
        """Rows with update_column > since, ascending by update_column"""
        pass

    @abstractmethod
    def get_last_update_time(self, table: str, update_column: str) -> datetime:
        """Largest update_column value in the table, epoch when empty"""
        pass

    @abstractmethod
    def get_sync_status(self, pair_key: str) -> datetime:
        """Stored watermark for a pair key, epoch when absent"""
        pass

    @abstractmethod
    def update_sync_status(self, pair_key: str, instant: datetime) -> None:
        """Persist the watermark for a pair key"""
        pass

    @abstractmethod
    def get_table_columns(self, table: str) -> List[ColumnInfo]:
        """Column metadata used by schema analysis"""
        pass

    @abstractmethod
    def current_time(self) -> datetime:
        """The database's own notion of now, in the zone its timestamp defaults use"""
        pass

    @property
    def name(self) -> str:
        return f"{self.db_type}:{self.config.get('database', '')}"


class SqlRowStoreAdapter(RowStoreAdapter):
    """Common SQL behaviour over a DB-API 2.0 connection.

    Subclasses supply the driver connection and the dialect details:
    identifier quoting, the parameter placeholder, the watermark upsert
    statement and the classification of connection-loss errors.
    """

    placeholder = '?'
    quote_open = '"'
    quote_close = '"'
    current_time_sql = 'SELECT CURRENT_TIMESTAMP AS now'

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.connection = None
        self.status_table = config.get('sync_status_table', SYNC_STATUS_TABLE)

    # -- dialect hooks -------------------------------------------------

    @abstractmethod
    def _open_connection(self):
        """Return a new DB-API connection"""
        pass

    @abstractmethod
    def _create_status_table_sql(self) -> str:
        pass

    @abstractmethod
    def _upsert_status_sql(self) -> str:
        """Statement taking (pair_key, last_sync_time) parameters"""
        pass

    @abstractmethod
    def _driver_errors(self) -> tuple:
        """Exception classes raised by the driver"""
        pass

    def _is_connection_lost(self, error: Exception) -> bool:
        return False

    def _bind(self, value: Any) -> Any:
        return value

    def _time_value(self, expression: str) -> str:
        """SQL comparing ``expression`` as a point in time"""
        return expression

    # -- helpers -------------------------------------------------------

    def quote(self, identifier: str) -> str:
        return f"{self.quote_open}{identifier}{self.quote_close}"

    def _require_connection(self):
        if self.connection is None:
            self.connect()
        return self.connection

    def _translate(self, error: Exception, error_type: type, message: str) -> Exception:
        """Map a driver error to the replication error taxonomy"""
        if self._is_connection_lost(error):
            self._drop_connection()
            return DatabaseConnectionError(f"{self.name}: connection lost during {message}: {error}")
        return error_type(f"{self.name}: {message} failed: {error}")

    def _drop_connection(self) -> None:
        conn, self.connection = self.connection, None
        if conn is not None:
            try:
                conn.close()
            except self._driver_errors() as e:
                logger.debug(f"Ignoring close error on dead connection: {str(e)}")

    @staticmethod
    def _rows_from_cursor(cursor) -> List[Row]:
        if cursor.description is None:
            return []
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, record)) for record in cursor.fetchall()]

    # -- connection lifecycle ------------------------------------------

    def connect(self) -> None:
        if self.connection is not None:
            return
        logger.info(f"Connecting to {self.name}")
        try:
            self.connection = self._open_connection()
        except self._driver_errors() as e:
            logger.error(f"Failed to connect to {self.name}: {str(e)}")
            raise DatabaseConnectionError(f"{self.name}: cannot connect: {e}") from e
        self.create_sync_status_table()
        logger.info(f"Connected to {self.name}")

    def disconnect(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            logger.info(f"Disconnected from {self.name}")

    def create_sync_status_table(self) -> None:
        try:
            self._execute(self._create_status_table_sql(), (), WriteError, 'create sync status table')
        except WriteError as e:
            logger.error(f"Error creating sync status table: {str(e)}")
            raise

    # -- statements ----------------------------------------------------

    def _execute(self, text: str, params: Sequence[Any], error_type: type, action: str) -> List[Row]:
        conn = self._require_connection()
        cursor = None
        try:
            cursor = conn.cursor()
            cursor.execute(text, tuple(self._bind(p) for p in params))
            rows = self._rows_from_cursor(cursor)
            conn.commit()
            return rows
        except self._driver_errors() as e:
            self._rollback(conn)
            raise self._translate(e, error_type, action) from e
        finally:
            self._close_cursor(cursor)

    def _execute_many(self, statements: List[tuple], action: str) -> None:
        """Run (text, params) pairs in one transaction"""
        conn = self._require_connection()
        cursor = None
        try:
            cursor = conn.cursor()
            for text, params in statements:
                cursor.execute(text, tuple(self._bind(p) for p in params))
            conn.commit()
        except self._driver_errors() as e:
            self._rollback(conn)
            raise self._translate(e, WriteError, action) from e
        finally:
            self._close_cursor(cursor)

    def _rollback(self, conn) -> None:
        try:
            conn.rollback()
        except self._driver_errors() as e:
            logger.warning(f"Rollback failed on {self.name}: {str(e)}")

    def _close_cursor(self, cursor) -> None:
        if cursor is None:
            return
        try:
            cursor.close()
        except self._driver_errors() as e:
            logger.debug(f"Cursor close failed on {self.name}: {str(e)}")

    def query(self, text: str, params: Sequence[Any] = ()) -> List[Row]:
        return self._execute(text, params, QueryError, 'query')

    def exists(self, table: str, key_column: str, key_value: Any) -> bool:
        rows = self.query(
            f"SELECT COUNT(*) AS cnt FROM {self.quote(table)} "
            f"WHERE {self.quote(key_column)} = {self.placeholder}",
            (key_value,)
        )
        return bool(rows) and rows[0]['cnt'] > 0

    def batch_insert(self, table: str, rows: List[Row]) -> None:
        if not rows:
            return
        columns = list(rows[0].keys())
        column_list = ', '.join(self.quote(col) for col in columns)
        placeholders = ', '.join(self.placeholder for _ in columns)
        text = f"INSERT INTO {self.quote(table)} ({column_list}) VALUES ({placeholders})"
        self._execute_many(
            [(text, [row.get(col) for col in columns]) for row in rows],
            f"insert into {table}"
        )
        logger.debug(f"Inserted {len(rows)} rows into {table}")

    def batch_update(self, table: str, rows: List[Row], key_column: str) -> None:
        if not rows:
            return
        statements = []
        for row in rows:
            columns = [col for col in row if col != key_column]
            if not columns:
                continue
            set_clause = ', '.join(f"{self.quote(col)} = {self.placeholder}" for col in columns)
            text = (f"UPDATE {self.quote(table)} SET {set_clause} "
                    f"WHERE {self.quote(key_column)} = {self.placeholder}")
            statements.append((text, [row[col] for col in columns] + [row[key_column]]))
        self._execute_many(statements, f"update of {table}")
        logger.debug(f"Updated {len(rows)} rows in {table}")

    def get_updated_records(self, table: str, update_column: str,
                            since: datetime) -> List[Row]:
        column = self._time_value(self.quote(update_column))
        return self.query(
            f"SELECT * FROM {self.quote(table)} WHERE {column} > {self._time_value(self.placeholder)} "
            f"ORDER BY {column}",
            (since,)
        )

    def get_last_update_time(self, table: str, update_column: str) -> datetime:
        rows = self.query(
            f"SELECT MAX({self.quote(update_column)}) AS last_update FROM {self.quote(table)}"
        )
        return as_datetime(rows[0]['last_update'] if rows else None)

    def get_sync_status(self, pair_key: str) -> datetime:
        rows = self.query(
            f"SELECT last_sync_time FROM {self.quote(self.status_table)} "
            f"WHERE table_name = {self.placeholder}",
            (pair_key,)
        )
        return as_datetime(rows[0]['last_sync_time'] if rows else None)

    def current_time(self) -> datetime:
        rows = self.query(self.current_time_sql)
        return as_datetime(rows[0]['now'])

    def update_sync_status(self, pair_key: str, instant: datetime) -> None:
        self._execute(self._upsert_status_sql(), (pair_key, instant), WriteError,
                      f"sync status update for {pair_key}")
