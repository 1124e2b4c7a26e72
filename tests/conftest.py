# tests/conftest.py
import pytest
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from db_syncer.adapters.base import ColumnInfo, RowStoreAdapter
from db_syncer.db_sync.exceptions import DatabaseConnectionError, QueryError, WriteError
from db_syncer.db_sync.models import EPOCH


class FakeAdapter(RowStoreAdapter):
    """In-memory adapter with failure injection"""

    db_type = 'fake'

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 key_column: str = 'id', name: str = 'fake'):
        super().__init__({'database': name})
        self.tables = {table: [dict(row) for row in rows] for table, rows in (tables or {}).items()}
        self.key_column = key_column
        self.sync_status: Dict[str, datetime] = {}
        self.calls: List[tuple] = []
        self.connected = False
        # method name -> exception raised on every call
        self.fail_methods: Dict[str, Exception] = {}
        # reject multi-row batch calls
        self.fail_batches = False
        # rows failing this check make the whole write call fail
        self.row_validator: Callable[[Dict[str, Any]], bool] = lambda row: True
        self.exists_errors = set()
        # key -> number of single-row writes that fail before succeeding
        self.transient_failures: Dict[Any, int] = {}
        # key whose single-row write loses the connection
        self.connection_drop_key = None
        # what current_time() reports as the database clock
        self.now = datetime.now()

    def _check(self, method: str) -> None:
        if method in self.fail_methods:
            raise self.fail_methods[method]

    def _find(self, table: str, key_column: str, key_value: Any):
        for row in self.tables.get(table, []):
            if row.get(key_column) == key_value:
                return row
        return None

    def _validate_write(self, rows: List[Dict[str, Any]], key_column: str) -> None:
        if self.fail_batches and len(rows) > 1:
            raise WriteError("batch rejected")
        for row in rows:
            key = row.get(key_column)
            if len(rows) == 1 and key == self.connection_drop_key:
                raise DatabaseConnectionError("connection lost")
            if len(rows) == 1 and self.transient_failures.get(key, 0) > 0:
                self.transient_failures[key] -= 1
                raise WriteError(f"transient failure for {key}")
            if not self.row_validator(row):
                raise WriteError(f"constraint violated by {key}")

    def connect(self) -> None:
        self._check('connect')
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def query(self, text, params=()):
        self._check('query')
        return [{'ok': 1}]

    def exists(self, table, key_column, key_value):
        self._check('exists')
        self.calls.append(('exists', table, key_value))
        if key_value in self.exists_errors:
            raise QueryError(f"exists failed for {key_value}")
        return self._find(table, key_column, key_value) is not None

    def batch_insert(self, table, rows):
        self._check('batch_insert')
        self.calls.append(('batch_insert', table, len(rows)))
        self._validate_write(rows, self.key_column)
        for row in rows:
            if self._find(table, self.key_column, row.get(self.key_column)) is not None:
                raise WriteError(f"duplicate key {row.get(self.key_column)}")
        self.tables.setdefault(table, []).extend(dict(row) for row in rows)

    def batch_update(self, table, rows, key_column):
        self._check('batch_update')
        self.calls.append(('batch_update', table, len(rows)))
        self._validate_write(rows, key_column)
        for row in rows:
            existing = self._find(table, key_column, row[key_column])
            if existing is not None:
                existing.update(row)

    def get_updated_records(self, table, update_column, since):
        self._check('get_updated_records')
        if table not in self.tables:
            raise QueryError(f"no such table: {table}")
        rows = [dict(row) for row in self.tables[table] if row[update_column] > since]
        return sorted(rows, key=lambda row: row[update_column])

    def get_last_update_time(self, table, update_column):
        values = [row[update_column] for row in self.tables.get(table, [])]
        return max(values) if values else EPOCH

    def get_sync_status(self, pair_key):
        self._check('get_sync_status')
        return self.sync_status.get(pair_key, EPOCH)

    def update_sync_status(self, pair_key, instant):
        self._check('update_sync_status')
        self.sync_status[pair_key] = instant

    def get_table_columns(self, table):
        self._check('get_table_columns')
        rows = self.tables.get(table, [])
        if not rows:
            return []
        return [ColumnInfo(name=name, is_primary_key=(name == self.key_column))
                for name in rows[0].keys()]

    def current_time(self):
        self._check('current_time')
        return self.now

    def calls_of(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]


@pytest.fixture
def t0():
    return datetime(2024, 1, 1, 10, 0, 0)


@pytest.fixture
def t1():
    return datetime(2024, 1, 1, 11, 0, 0)


@pytest.fixture
def source_rows(t0):
    return [{'id': i, 'name': f"item-{i}", 'updated_at': t0} for i in range(1, 6)]


@pytest.fixture
def fake_source(source_rows):
    return FakeAdapter({'orders': source_rows}, name='source')


@pytest.fixture
def fake_target(source_rows):
    return FakeAdapter({'orders_copy': source_rows}, name='target')


@pytest.fixture
def temp_db_path(tmp_path):
    return str(tmp_path / 'test.db')


@pytest.fixture
def sqlite_config(tmp_path):
    return {
        'client': {'type': 'sqlite', 'database': str(tmp_path / 'client.db')},
        'server': {'type': 'sqlite', 'database': str(tmp_path / 'server.db')},
    }
