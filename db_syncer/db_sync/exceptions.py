# db_syncer/db_sync/exceptions.py


class SyncError(Exception):
    """Base class for all replication errors"""


class DatabaseConnectionError(SyncError, ConnectionError):
    """Adapter cannot reach its database"""


class QueryError(SyncError):
    """A read query failed"""


class WriteError(SyncError):
    """A write (insert, update, status upsert) failed"""


class ExtractionError(SyncError):
    """Reading changed rows from the source failed"""


class PartialRowError(SyncError):
    """A single row could not be checked or applied"""

    def __init__(self, message: str, key_value=None):
        super().__init__(message)
        self.key_value = key_value


class BatchApplyError(SyncError):
    """A whole batch insert/update call failed"""


class WatermarkWriteError(WriteError):
    """Persisting the new watermark failed after reconciliation"""


class UnsupportedDatabaseType(SyncError, ValueError):
    """No adapter exists for the configured database type"""

    def __init__(self, db_type: str):
        super().__init__(f"Unsupported database type: {db_type}")
        self.db_type = db_type
