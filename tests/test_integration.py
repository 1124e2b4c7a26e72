# tests/test_integration.py
import sqlite3
import time
import pytest
from datetime import datetime, timedelta

from db_syncer.adapters.sqlite_adapter import SQLiteAdapter
from db_syncer.db_sync.models import SyncPair, SyncSettings, TableDirection
from db_syncer.db_sync.sync_job import SyncJob
from db_syncer.db_sync.sync_service import DatabaseSyncService

T0 = datetime(2024, 1, 1, 10, 0, 0)
T1 = datetime(2024, 1, 1, 11, 0, 0)

TABLE_DDL = '''
    CREATE TABLE {name} (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        updated_at TEXT
    )
'''


def create_tables(path, *names):
    with sqlite3.connect(path) as conn:
        for name in names:
            conn.execute(TABLE_DDL.format(name=name))


def fetch(path, table):
    with sqlite3.connect(path) as conn:
        return conn.execute(f"SELECT id, name FROM {table} ORDER BY id").fetchall()


@pytest.fixture
def databases(sqlite_config):
    client_path = sqlite_config['client']['database']
    server_path = sqlite_config['server']['database']
    create_tables(client_path, 'orders', 'prices_copy')
    create_tables(server_path, 'orders_copy', 'prices')
    return sqlite_config


@pytest.fixture
def settings():
    return SyncSettings(
        interval_seconds=1,
        directions=[
            TableDirection('client_to_server', 'client', 'server', 'orders', 'orders_copy'),
            TableDirection('server_to_client', 'server', 'client', 'prices', 'prices_copy'),
        ]
    )


def test_changed_rows_propagate_between_sqlite_databases(databases):
    source = SQLiteAdapter(databases['client'])
    target = SQLiteAdapter(databases['server'])
    pair = SyncPair('orders', 'orders_copy')
    rows = [{'id': i, 'name': f"item-{i}", 'updated_at': T0} for i in range(1, 6)]
    source.batch_insert('orders', rows)
    target.batch_insert('orders_copy', rows)
    target.update_sync_status(pair.pair_key, T0)

    source.batch_update('orders', [{'id': 3, 'name': 'item-3-changed', 'updated_at': T1}], 'id')
    source.batch_insert('orders', [{'id': 6, 'name': 'item-6', 'updated_at': T1}])

    result = SyncJob(source, target, pair).execute()

    assert result.to_dict()['records_processed'] == 2
    assert result.records_inserted == 1
    assert result.records_updated == 1
    assert target.get_sync_status(pair.pair_key) >= T1
    assert fetch(databases['server']['database'], 'orders_copy')[2] == (3, 'item-3-changed')
    assert len(fetch(databases['server']['database'], 'orders_copy')) == 6

    again = SyncJob(source, target, pair).execute()
    assert again.records_processed == 0


def test_service_syncs_both_directions(databases, settings):
    config = {'databases': databases, 'schema_cache': {'enabled': False}}
    client = SQLiteAdapter(databases['client'])
    server = SQLiteAdapter(databases['server'])
    client.batch_insert('orders', [{'id': 1, 'name': 'order', 'updated_at': T0}])
    server.batch_insert('prices', [{'id': 10, 'name': 'price', 'updated_at': T0},
                                   {'id': 11, 'name': 'price2', 'updated_at': T1}])
    client.disconnect()
    server.disconnect()

    service = DatabaseSyncService(config, settings)
    try:
        summary = service.sync_once()
        status = service.get_status()
    finally:
        service.stop()

    assert summary.success_tables == 2
    assert summary.total_records == 3
    assert fetch(databases['server']['database'], 'orders_copy') == [(1, 'order')]
    assert fetch(databases['client']['database'], 'prices_copy') == [(10, 'price'), (11, 'price2')]
    assert status['scheduler']['tick_count'] == 1
    assert status['table_schemas']['client'] == ['orders']


def test_missing_target_table_skips_rows_of_that_direction_only(databases, settings, sqlite_config):
    with sqlite3.connect(sqlite_config['client']['database']) as conn:
        conn.execute('DROP TABLE prices_copy')
    server = SQLiteAdapter(databases['server'])
    server.batch_insert('prices', [{'id': 10, 'name': 'price', 'updated_at': T0}])
    client = SQLiteAdapter(databases['client'])
    client.batch_insert('orders', [{'id': 1, 'name': 'order', 'updated_at': T0}])

    service = DatabaseSyncService({'databases': databases, 'schema_cache': {'enabled': False}}, settings)
    try:
        summary = service.sync_once()
    finally:
        service.stop()

    assert summary.results['client_to_server'].success is True
    # every row fails its existence check, so nothing is applied but the run completes
    assert summary.results['server_to_client'].records_processed == 0
    assert fetch(databases['server']['database'], 'orders_copy') == [(1, 'order')]


def test_check_connections_reports_each_database(databases, settings):
    service = DatabaseSyncService({'databases': databases}, settings)
    try:
        report = service.check_connections()
    finally:
        service.close_connections()

    assert report['client']['ok'] is True
    assert report['server']['ok'] is True


@pytest.fixture
def host_east_of_utc(monkeypatch):
    if not hasattr(time, 'tzset'):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv('TZ', 'Asia/Tokyo')
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_database_default_timestamps_are_not_skipped(sqlite_config, host_east_of_utc):
    source_path = sqlite_config['client']['database']
    target_path = sqlite_config['server']['database']
    for path, table in ((source_path, 'events'), (target_path, 'events_copy')):
        with sqlite3.connect(path) as conn:
            conn.execute(f'''
                CREATE TABLE {table} (
                    id INTEGER PRIMARY KEY,
                    name TEXT,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            ''')
    with sqlite3.connect(source_path) as conn:
        conn.execute("INSERT INTO events (id, name) VALUES (1, 'a')")

    source = SQLiteAdapter(sqlite_config['client'])
    target = SQLiteAdapter(sqlite_config['server'])
    pair = SyncPair('events', 'events_copy')

    assert SyncJob(source, target, pair).execute().records_inserted == 1

    # a later change, stamped by the database in UTC
    with sqlite3.connect(source_path) as conn:
        conn.execute("UPDATE events SET name = 'b', updated_at = datetime('now', '+2 seconds') WHERE id = 1")

    second = SyncJob(source, target, pair).execute()

    assert second.records_updated == 1
    assert fetch(target_path, 'events_copy') == [(1, 'b')]
    # stored in the database zone, hours behind the host clock here
    assert target.get_sync_status(pair.pair_key) < datetime.now() - timedelta(hours=8)


def test_iso_t_separated_rows_are_replicated_once(databases):
    with sqlite3.connect(databases['client']['database']) as conn:
        conn.execute("INSERT INTO orders VALUES (1, 'a', '2024-01-01T00:00:01')")
    source = SQLiteAdapter(databases['client'])
    target = SQLiteAdapter(databases['server'])
    pair = SyncPair('orders', 'orders_copy')

    processed = [SyncJob(source, target, pair, watermark_mode='max_seen').execute().records_processed
                 for _ in range(3)]

    assert processed == [1, 0, 0]
    assert target.get_sync_status(pair.pair_key) == datetime(2024, 1, 1, 0, 0, 1)


def test_check_connections_reports_pending_changes(databases, settings):
    client = SQLiteAdapter(databases['client'])
    client.batch_insert('orders', [{'id': 1, 'name': 'order', 'updated_at': T1}])
    service = DatabaseSyncService({'databases': databases, 'schema_cache': {'enabled': False}}, settings)
    try:
        before = service.check_connections()
        service.sync_once()
        after = service.check_connections()
    finally:
        service.stop()

    orders = before['client']['tables']['orders']
    assert orders['last_update'] == T1.isoformat()
    assert orders['pending'] is True
    assert after['client']['tables']['orders']['pending'] is False
    assert after['server']['tables']['prices']['last_update'] == '1970-01-01T00:00:00'
