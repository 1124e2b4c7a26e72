import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional
import yaml
import logging

from .db_sync.models import SyncSettings, TableDirection, WatermarkMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    'databases': {
        'client': {'type': 'mariadb'},
        'server': {'type': 'mariadb'},
    },
    'sync': {
        'interval_seconds': 30,
        'update_column': 'updated_at',
        'key_column': 'id',
        'batch_size': 1000,
        'max_retry_attempts': 3,
        'watermark_mode': 'completion_time',
        'watermark_skew_seconds': 0,
        'tables': {
            'client_to_server': {'listen_table': '', 'sync_table': ''},
            'server_to_client': {'listen_table': '', 'sync_table': ''},
        },
    },
    'schema_cache': {
        'enabled': True,
        'file_path': './cache/table_schemas.json',
        'ttl_seconds': 3600,
    },
    'daemon': {
        'pid_file': './db_syncer.pid',
    },
    'logging': {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'standard',
                'level': 'INFO',
            },
        },
        'root': {'level': 'INFO', 'handlers': ['console']},
    },
}

# (direction name, source role, target role)
DIRECTIONS = [
    ('client_to_server', 'client', 'server'),
    ('server_to_client', 'server', 'client'),
]


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``"""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """Handle loading and validation of configuration"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader

        Args:
            config_path: Path to custom config file (optional)
        """
        self.config_path = config_path or self._get_default_config_path()
        self.config: Dict[str, Any] = {}

    @staticmethod
    def _get_default_config_path() -> str:
        """Get path to default config file"""
        return str(Path(__file__).parent.parent / 'config' / 'default_config.yaml')

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and environment, then validate it

        Returns:
            Validated configuration dictionary
        """
        try:
            file_config = {}
            if Path(self.config_path).exists():
                with open(self.config_path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            else:
                logger.warning(f"Config file {self.config_path} not found, using defaults")

            self.config = deep_merge(DEFAULT_CONFIG, file_config)
            self.update_from_env()
            self._validate_config()
            return self.config

        except Exception as e:
            logger.error(f"Error loading config from {self.config_path}: {str(e)}")
            raise

    def update_from_env(self):
        """Update configuration from environment variables"""
        env_mappings = {
            'SYNC_INTERVAL': (('sync', 'interval_seconds'), float),
            'UPDATE_COLUMN': (('sync', 'update_column'), str),
            'KEY_COLUMN': (('sync', 'key_column'), str),
            'BATCH_SIZE': (('sync', 'batch_size'), int),
            'MAX_RETRY_ATTEMPTS': (('sync', 'max_retry_attempts'), int),
            'WATERMARK_MODE': (('sync', 'watermark_mode'), str),
            'WATERMARK_SKEW_SECONDS': (('sync', 'watermark_skew_seconds'), float),
            'PID_FILE': (('daemon', 'pid_file'), str),
            'SCHEMA_CACHE_ENABLED': (('schema_cache', 'enabled'), _to_bool),
            'SCHEMA_CACHE_FILE': (('schema_cache', 'file_path'), str),
            'SCHEMA_CACHE_TTL': (('schema_cache', 'ttl_seconds'), float),
            'LOG_LEVEL': (('logging', 'level'), str),
        }
        for role in ('client', 'server'):
            prefix = role.upper()
            for key, conv in (('type', str), ('host', str), ('port', int), ('user', str),
                              ('password', str), ('database', str)):
                env_mappings[f"{prefix}_DB_{key.upper()}"] = (('databases', role, key), conv)
        for name, _, _ in DIRECTIONS:
            prefix = name.upper()
            for key in ('listen_table', 'sync_table'):
                env_mappings[f"{prefix}_{key.upper()}"] = (('sync', 'tables', name, key), str.strip)

        for env_var, (path, type_conv) in env_mappings.items():
            if env_var in os.environ:
                try:
                    section = self.config
                    for part in path[:-1]:
                        section = section.setdefault(part, {})
                    section[path[-1]] = type_conv(os.environ[env_var])
                except Exception as e:
                    logger.warning(
                        f"Failed to set {env_var} config value: {str(e)}"
                    )

    def _validate_config(self):
        """Validate required configuration parameters"""
        errors = []

        for role in ('client', 'server'):
            db = self.config['databases'].get(role) or {}
            if not db.get('database'):
                errors.append(f"databases.{role}.database is not set")
            if str(db.get('type', '')).lower() != 'sqlite' and not db.get('host'):
                errors.append(f"databases.{role}.host is not set")

        tables = self.config['sync']['tables']
        complete = 0
        for name, _, _ in DIRECTIONS:
            pair = tables.get(name) or {}
            listen, sync = pair.get('listen_table'), pair.get('sync_table')
            if listen and sync:
                complete += 1
            elif listen:
                errors.append(f"{name}.listen_table is set but {name}.sync_table is missing")
            elif sync:
                errors.append(f"{name}.sync_table is set but {name}.listen_table is missing")
        if complete == 0:
            errors.append("At least one table pair (client_to_server or server_to_client) is required")

        sync = self.config['sync']
        if sync['interval_seconds'] <= 0:
            errors.append("sync.interval_seconds must be positive")
        if sync['batch_size'] < 1:
            errors.append("sync.batch_size must be at least 1")
        if sync['max_retry_attempts'] < 1:
            errors.append("sync.max_retry_attempts must be at least 1")
        if sync['watermark_skew_seconds'] < 0:
            errors.append("sync.watermark_skew_seconds must not be negative")
        if sync['watermark_mode'] not in [mode.value for mode in WatermarkMode]:
            errors.append(f"Unknown sync.watermark_mode: {sync['watermark_mode']}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(errors))

    def sync_settings(self) -> SyncSettings:
        """Build the replication settings from the loaded configuration"""
        sync = self.config['sync']
        directions = []
        for name, source_role, target_role in DIRECTIONS:
            pair = sync['tables'].get(name) or {}
            if pair.get('listen_table') and pair.get('sync_table'):
                directions.append(TableDirection(
                    name=name,
                    source_role=source_role,
                    target_role=target_role,
                    listen_table=pair['listen_table'].strip(),
                    sync_table=pair['sync_table'].strip()
                ))
        return SyncSettings(
            interval_seconds=sync['interval_seconds'],
            update_column=sync['update_column'],
            key_column=sync['key_column'],
            batch_size=sync['batch_size'],
            max_retry_attempts=sync['max_retry_attempts'],
            watermark_mode=sync['watermark_mode'],
            watermark_skew_seconds=sync['watermark_skew_seconds'],
            directions=directions
        )
