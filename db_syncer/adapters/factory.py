# db_syncer/adapters/factory.py
import logging
from typing import Any, Dict, List

from .base import RowStoreAdapter
from ..db_sync.exceptions import UnsupportedDatabaseType

logger = logging.getLogger(__name__)

MARIADB_TYPES = ('mariadb', 'mysql', 'gcp_mariadb', 'client_mariadb')
# Recognised names without an adapter yet
RESERVED_TYPES = ('postgres', 'postgresql', 'mongodb', 'mongo', 'oracle')


def create_adapter(db_type: str, config: Dict[str, Any]) -> RowStoreAdapter:
    """Create the adapter for a configured database type"""
    normalized = (db_type or '').strip().lower()

    # Drivers are imported per type so an absent optional driver only
    # affects configurations that ask for it
    if normalized == 'sqlite':
        from .sqlite_adapter import SQLiteAdapter
        adapter_class = SQLiteAdapter
    elif normalized in MARIADB_TYPES:
        from .mariadb_adapter import MariaDBAdapter
        adapter_class = MariaDBAdapter
    elif normalized == 'mssql':
        from .mssql_adapter import MSSQLAdapter
        adapter_class = MSSQLAdapter
    else:
        if normalized in RESERVED_TYPES:
            logger.error(f"Adapter for {normalized} is not implemented yet")
        raise UnsupportedDatabaseType(db_type)

    logger.debug(f"Creating {adapter_class.__name__} for type {normalized}")
    return adapter_class(config)


def get_supported_types() -> List[str]:
    return ['sqlite', 'mssql', *MARIADB_TYPES]


def is_supported(db_type: str) -> bool:
    return (db_type or '').strip().lower() in get_supported_types()
