# tests/test_reconciler.py
import pytest
from datetime import datetime

from db_syncer.db_sync.exceptions import DatabaseConnectionError
from db_syncer.db_sync.reconciler import BatchReconciler, chunked
from conftest import FakeAdapter

NOW = datetime(2024, 1, 1, 12, 0, 0)


def make_rows(ids, **extra):
    return [{'id': i, 'name': f"item-{i}", 'updated_at': NOW, **extra} for i in ids]


@pytest.fixture
def target():
    return FakeAdapter({'items': make_rows([1, 2, 3])})


def test_chunked_sizes():
    chunks = list(chunked(list(range(5)), 2))
    assert [len(c) for c in chunks] == [2, 2, 1]


def test_chunked_rejects_zero_size():
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_existing_keys_are_updated_and_new_keys_inserted(target):
    reconciler = BatchReconciler(target)
    rows = make_rows([2, 3, 4, 5])

    result = reconciler.reconcile(rows, 'items', 'id')

    assert result.updated == 2
    assert result.inserted == 2
    assert result.processed == 4
    assert target.calls_of('batch_update') == [('batch_update', 'items', 2)]
    assert target.calls_of('batch_insert') == [('batch_insert', 'items', 2)]


def test_partitions_are_chunked_by_batch_size(target):
    reconciler = BatchReconciler(target)
    rows = make_rows(range(10, 15))

    result = reconciler.reconcile(rows, 'items', 'id', batch_size=2)

    assert result.inserted == 5
    assert [call[2] for call in target.calls_of('batch_insert')] == [2, 2, 1]


def test_rows_without_key_are_skipped(target):
    reconciler = BatchReconciler(target)
    rows = make_rows([7]) + [{'id': None, 'name': 'orphan', 'updated_at': NOW},
                            {'name': 'no-key', 'updated_at': NOW}]

    result = reconciler.reconcile(rows, 'items', 'id')

    assert result.processed == 1
    assert len(target.calls_of('exists')) == 1


def test_key_value_zero_is_replicated(target):
    result = BatchReconciler(target).reconcile(make_rows([0]), 'items', 'id')
    assert result.inserted == 1


def test_failed_existence_check_skips_row(target):
    target.exists_errors = {4}
    reconciler = BatchReconciler(target)

    result = reconciler.reconcile(make_rows([4, 5]), 'items', 'id')

    assert result.inserted == 1
    assert [row['id'] for row in target.tables['items']] == [1, 2, 3, 5]


def test_one_bad_row_does_not_block_the_chunk():
    target = FakeAdapter({'items': []})
    target.row_validator = lambda row: row['name'] is not None
    rows = make_rows(range(1, 101))
    rows[41]['name'] = None

    result = BatchReconciler(target, max_retry_attempts=3).reconcile(rows, 'items', 'id')

    assert result.inserted == 99
    assert result.processed == 99
    assert len(target.tables['items']) == 99
    assert 42 not in {row['id'] for row in target.tables['items']}


def test_update_fallback_counts_only_successful_rows(target):
    target.fail_batches = True
    target.row_validator = lambda row: row['id'] != 2

    result = BatchReconciler(target).reconcile(make_rows([1, 2, 3], name='renamed'), 'items', 'id')

    assert result.updated == 2
    names = {row['id']: row['name'] for row in target.tables['items']}
    assert names == {1: 'renamed', 2: 'item-2', 3: 'renamed'}


def test_row_retries_are_bounded_by_max_retry_attempts():
    target = FakeAdapter({'items': []})
    target.fail_batches = True
    target.transient_failures = {1: 1, 2: 5}

    result = BatchReconciler(target, max_retry_attempts=2).reconcile(make_rows([1, 2]), 'items', 'id')

    assert result.inserted == 1
    assert [row['id'] for row in target.tables['items']] == [1]
    # one batch call, then 2 attempts for row 1 and 2 attempts for row 2
    assert [call[2] for call in target.calls_of('batch_insert')] == [2, 1, 1, 1, 1]


def test_single_attempt_when_retries_not_configured():
    target = FakeAdapter({'items': []})
    target.fail_batches = True
    target.transient_failures = {1: 1}

    result = BatchReconciler(target, max_retry_attempts=0).reconcile(make_rows([1, 2]), 'items', 'id')

    assert result.inserted == 1


def test_connection_loss_during_fallback_propagates():
    target = FakeAdapter({'items': []})
    target.fail_batches = True
    target.connection_drop_key = 2

    with pytest.raises(DatabaseConnectionError):
        BatchReconciler(target).reconcile(make_rows([1, 2, 3]), 'items', 'id')


def test_connection_loss_during_existence_check_propagates(target):
    target.fail_methods['exists'] = DatabaseConnectionError("gone")

    with pytest.raises(DatabaseConnectionError):
        BatchReconciler(target).reconcile(make_rows([9]), 'items', 'id')


def test_batch_and_row_by_row_paths_reach_same_state():
    rows = make_rows([1, 2, 3, 4], name='new') + make_rows([10, 11])
    batch_target = FakeAdapter({'items': make_rows([1, 2])})
    row_target = FakeAdapter({'items': make_rows([1, 2])})
    row_target.fail_batches = True

    batch_result = BatchReconciler(batch_target).reconcile(rows, 'items', 'id')
    row_result = BatchReconciler(row_target).reconcile(rows, 'items', 'id')

    def state(adapter):
        return sorted((row['id'], row['name']) for row in adapter.tables['items'])

    assert state(batch_target) == state(row_target)
    assert batch_result == row_result
