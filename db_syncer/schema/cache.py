# db_syncer/schema/cache.py
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .models import TableSchema

logger = logging.getLogger(__name__)


class SchemaCache:
    """JSON file cache of analyzed table schemas with a time-to-live"""

    def __init__(self, file_path: str = './cache/table_schemas.json',
                 ttl_seconds: float = 3600, enabled: bool = True):
        self.file_path = Path(file_path)
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled

    def _load(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {}
        try:
            with open(self.file_path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable schema cache {self.file_path}: {str(e)}")
            return {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_path, 'w') as f:
            json.dump(data, f, indent=2)

    def _is_expired(self, entry: Dict[str, Any], now: float) -> bool:
        return now - entry.get('cached_at', 0) > self.ttl_seconds

    def get(self, key: str) -> Optional[TableSchema]:
        if not self.enabled:
            return None
        entry = self._load().get(key)
        if entry is None:
            return None
        if self._is_expired(entry, time.time()):
            logger.debug(f"Schema cache entry {key} expired")
            return None
        logger.debug(f"Loaded schema {key} from file cache")
        return TableSchema.from_dict(entry['data'])

    def set(self, key: str, schema: TableSchema) -> None:
        if not self.enabled:
            return
        data = self._load()
        data[key] = {'cached_at': time.time(), 'data': schema.to_dict()}
        try:
            self._save(data)
        except OSError as e:
            logger.warning(f"Failed to write schema cache {self.file_path}: {str(e)}")

    def cleanup_expired(self) -> int:
        """Drop expired entries, returning how many were removed"""
        data = self._load()
        now = time.time()
        expired = [key for key, entry in data.items() if self._is_expired(entry, now)]
        if expired:
            for key in expired:
                del data[key]
            self._save(data)
            logger.info(f"Removed {len(expired)} expired schema cache entries")
        return len(expired)

    def clear(self) -> None:
        if self.file_path.exists():
            self.file_path.unlink()
            logger.info(f"Removed schema cache file {self.file_path}")
