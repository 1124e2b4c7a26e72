# db_syncer/db_sync/sync_service.py
import logging
import signal
import threading
from typing import Any, Dict, Optional

from ..adapters.base import RowStoreAdapter
from ..adapters.factory import create_adapter
from ..schema.cache import SchemaCache
from ..schema.table_analyzer import TableAnalyzer
from .exceptions import DatabaseConnectionError
from .models import SyncSettings, TableDirection, TickSummary
from .scheduler import SyncScheduler
from .watermark import WatermarkStore

logger = logging.getLogger(__name__)

ROLES = ('client', 'server')


class DatabaseSyncService:
    """Service responsible for bidirectional database synchronization"""

    def __init__(self, config: Dict[str, Any], settings: SyncSettings,
                 adapters: Optional[Dict[str, RowStoreAdapter]] = None):
        self.config = config
        self.settings = settings
        self._validate_config()
        self.adapters: Dict[str, RowStoreAdapter] = adapters if adapters is not None else {}
        self.analyzers: Dict[str, TableAnalyzer] = {}
        self.scheduler: Optional[SyncScheduler] = None
        self.stop_event = threading.Event()
        logger.info(f"Initialized DB sync service with {len(settings.directions)} direction(s)")

    def _validate_config(self) -> None:
        """Validate configuration parameters"""
        if not self.settings.directions:
            raise ValueError("At least one sync direction must be configured")

        if self.settings.interval_seconds <= 0:
            raise ValueError("Sync interval must be positive")

        if self.settings.batch_size < 1:
            raise ValueError("Batch size must be at least 1")

        if self.settings.watermark_skew_seconds < 0:
            raise ValueError("Watermark skew must not be negative")

    def _schema_cache(self) -> SchemaCache:
        cache_cfg = self.config.get('schema_cache', {})
        return SchemaCache(
            file_path=cache_cfg.get('file_path', './cache/table_schemas.json'),
            ttl_seconds=cache_cfg.get('ttl_seconds', 3600),
            enabled=cache_cfg.get('enabled', True)
        )

    def initialize(self) -> None:
        """Create adapters, connect them and analyze the listen tables"""
        logger.info("Initializing database syncer")
        self.create_adapters()
        self.analyze_table_schemas()
        self.scheduler = SyncScheduler(self.adapters, self.settings.directions,
                                       self.settings, self.analyzers)
        logger.info("Database syncer initialized")

    def create_adapters(self) -> None:
        cache = self._schema_cache()
        for role in ROLES:
            if role not in self.adapters:
                db_config = self.config['databases'][role]
                self.adapters[role] = create_adapter(db_config.get('type', 'mariadb'), db_config)
            adapter = self.adapters[role]
            try:
                adapter.connect()
                logger.info(f"{role} {adapter.db_type} adapter connected")
            except DatabaseConnectionError as e:
                # jobs touching this database fail per tick and reconnect lazily
                logger.error(f"{role} database unavailable at startup: {str(e)}")
            self.analyzers[role] = TableAnalyzer(adapter, cache)

    def analyze_table_schemas(self) -> None:
        """Analyze every listen table on its source database"""
        analyzed = 0
        for direction in self.settings.directions:
            analyzer = self.analyzers.get(direction.source_role)
            if analyzer is None:
                continue
            try:
                analyzer.analyze_table(direction.listen_table)
                analyzed += 1
            except Exception as e:
                logger.error(f"Failed to analyze table {direction.listen_table}: {str(e)}")

        cache_cfg = self.config.get('schema_cache', {})
        if cache_cfg.get('enabled', True):
            try:
                self._schema_cache().cleanup_expired()
            except OSError as e:
                logger.warning(f"Failed to clean up expired schema cache: {str(e)}")
        logger.info(f"Table schema analysis complete, {analyzed} table(s) analyzed")

    def reanalyze_schemas(self) -> None:
        for analyzer in self.analyzers.values():
            analyzer.clear_cache()
        self.analyze_table_schemas()

    def sync_once(self) -> TickSummary:
        """Perform a single synchronization pass over all directions"""
        if self.scheduler is None:
            self.initialize()
        summary = self.scheduler.run_tick()
        return summary if summary is not None else TickSummary()

    def _handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, stopping after the current job")
        self.stop_event.set()

    def start_sync_service(self) -> None:
        """Start continuous synchronization service"""
        if self.scheduler is None:
            self.initialize()

        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, self._handle_signal)

        logger.info("Starting continuous sync service")
        try:
            self.scheduler.run_forever(self.stop_event)
        except KeyboardInterrupt:
            logger.info("Sync service stopped by user")
        finally:
            self.stop()

    def stop(self) -> None:
        self.stop_event.set()
        self.close_connections()
        logger.info("Database sync service stopped")

    def close_connections(self) -> None:
        for role, adapter in self.adapters.items():
            try:
                adapter.disconnect()
            except Exception as e:
                logger.error(f"Failed to close {role} connection: {str(e)}")

    def check_connections(self) -> Dict[str, Dict[str, Any]]:
        """Connect to each configured database and run a trivial query"""
        report = {}
        for role in ROLES:
            db_config = self.config['databases'][role]
            entry = {'type': db_config.get('type'), 'database': db_config.get('database')}
            try:
                adapter = self.adapters.get(role) or create_adapter(db_config.get('type', 'mariadb'), db_config)
                self.adapters[role] = adapter
                adapter.connect()
                adapter.query('SELECT 1 AS ok')
                entry['ok'] = True
            except Exception as e:
                logger.error(f"Connection check for {role} failed: {str(e)}")
                entry['ok'] = False
                entry['error'] = str(e)
            report[role] = entry

        for direction in self.settings.directions:
            source = report[direction.source_role]
            if source['ok']:
                source.setdefault('tables', {})[direction.listen_table] = self.table_lag(direction)
        return report

    def table_lag(self, direction: TableDirection) -> Dict[str, Any]:
        """Newest change in a listen table against the watermark of its direction"""
        source = self.adapters[direction.source_role]
        target = self.adapters.get(direction.target_role)
        pair_key = WatermarkStore.pair_key(direction.listen_table, direction.sync_table)
        info: Dict[str, Any] = {}
        try:
            last_update = source.get_last_update_time(direction.listen_table, self.settings.update_column)
            info['last_update'] = last_update.isoformat()
            if target is not None:
                watermark = target.get_sync_status(pair_key)
                info['last_sync'] = watermark.isoformat()
                info['pending'] = last_update > watermark
        except Exception as e:
            logger.error(f"Failed to read activity of {direction.listen_table}: {str(e)}")
            info['error'] = str(e)
        return info

    def get_status(self) -> Dict[str, Any]:
        return {
            'adapters': {role: adapter.name for role, adapter in self.adapters.items()},
            'table_schemas': {role: analyzer.get_cache_info()['cached_tables']
                              for role, analyzer in self.analyzers.items()},
            'scheduler': self.scheduler.get_status() if self.scheduler else None,
            'config': {
                'interval_seconds': self.settings.interval_seconds,
                'update_column': self.settings.update_column,
                'batch_size': self.settings.batch_size,
                'watermark_mode': self.settings.watermark_mode,
                'directions': [d.label + f" ({d.listen_table} -> {d.sync_table})"
                               for d in self.settings.directions],
            },
        }
