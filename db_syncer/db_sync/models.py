# db_syncer/db_sync/models.py
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

Row = Dict[str, Any]

EPOCH = datetime(1970, 1, 1)


class JobState(Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    RECONCILING = "reconciling"
    ADVANCING = "advancing"
    DONE = "done"
    FAILED = "failed"


class WatermarkMode(Enum):
    COMPLETION_TIME = "completion_time"  # wall clock at job end
    MAX_SEEN = "max_seen"  # largest update column value extracted


@dataclass(frozen=True)
class SyncPair:
    """One directed source table -> target table relationship"""
    source_table: str
    target_table: str
    key_column: str = 'id'
    update_column: str = 'updated_at'
    batch_size: int = 1000
    max_retry_attempts: int = 3

    @property
    def pair_key(self) -> str:
        return f"{self.source_table}_to_{self.target_table}"


@dataclass
class ReconcileResult:
    inserted: int = 0
    updated: int = 0

    @property
    def processed(self) -> int:
        return self.inserted + self.updated


@dataclass
class SyncRunResult:
    """Outcome of a single SyncJob execution"""
    success: bool
    records_processed: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    duration: float = 0.0  # seconds
    error: Optional[str] = None
    message: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['error'] is None:
            del data['error']
        return data


@dataclass
class TickSummary:
    """Aggregated statistics for one scheduler tick"""
    total_tables: int = 0
    success_tables: int = 0
    failed_tables: int = 0
    total_records: int = 0
    results: Dict[str, SyncRunResult] = field(default_factory=dict)
    duration: float = 0.0

    def merge(self, other: 'TickSummary') -> None:
        self.total_tables += other.total_tables
        self.success_tables += other.success_tables
        self.failed_tables += other.failed_tables
        self.total_records += other.total_records
        self.results.update(other.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_tables': self.total_tables,
            'success_tables': self.success_tables,
            'failed_tables': self.failed_tables,
            'total_records': self.total_records,
            'duration': self.duration,
            'results': {name: result.to_dict() for name, result in self.results.items()},
        }


@dataclass(frozen=True)
class TableDirection:
    """A configured replication direction between the client and server databases"""
    name: str
    source_role: str
    target_role: str
    listen_table: str
    sync_table: str

    @property
    def label(self) -> str:
        return f"{self.source_role} -> {self.target_role}"


@dataclass
class SyncSettings:
    interval_seconds: float = 30
    update_column: str = 'updated_at'
    key_column: str = 'id'
    batch_size: int = 1000
    max_retry_attempts: int = 3
    watermark_mode: str = WatermarkMode.COMPLETION_TIME.value
    watermark_skew_seconds: float = 0
    directions: List[TableDirection] = field(default_factory=list)


def as_datetime(value: Any) -> datetime:
    """Coerce a stored timestamp (datetime, ISO text or None) to a datetime"""
    if value is None:
        return EPOCH
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
