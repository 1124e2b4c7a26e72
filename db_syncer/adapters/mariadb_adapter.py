# db_syncer/adapters/mariadb_adapter.py
import logging
from typing import List

import pymysql

from .base import ColumnInfo, SqlRowStoreAdapter

logger = logging.getLogger(__name__)

# Client error codes meaning the server went away
CONNECTION_LOST_CODES = {2003, 2006, 2013, 2055}


class MariaDBAdapter(SqlRowStoreAdapter):
    """MariaDB / MySQL adapter built on PyMySQL"""

    db_type = 'mariadb'
    placeholder = '%s'
    quote_open = '`'
    quote_close = '`'
    current_time_sql = 'SELECT NOW(3) AS now'

    def _open_connection(self):
        return pymysql.connect(
            host=self.config.get('host'),
            port=int(self.config.get('port') or 3306),
            user=self.config.get('user'),
            password=self.config.get('password') or '',
            database=self.config.get('database'),
            charset=self.config.get('charset', 'utf8mb4'),
            connect_timeout=int(self.config.get('connect_timeout', 10)),
            read_timeout=self.config.get('read_timeout'),
            write_timeout=self.config.get('write_timeout'),
            autocommit=False
        )

    def _driver_errors(self) -> tuple:
        return (pymysql.err.MySQLError,)

    def _is_connection_lost(self, error: Exception) -> bool:
        if isinstance(error, pymysql.err.InterfaceError):
            return True
        return (isinstance(error, pymysql.err.OperationalError)
                and bool(error.args) and error.args[0] in CONNECTION_LOST_CODES)

    def _create_status_table_sql(self) -> str:
        return f'''
            CREATE TABLE IF NOT EXISTS {self.quote(self.status_table)} (
                table_name VARCHAR(255) PRIMARY KEY,
                last_sync_time DATETIME(3),
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP
            )
        '''

    def _upsert_status_sql(self) -> str:
        return f'''
            INSERT INTO {self.quote(self.status_table)} (table_name, last_sync_time)
            VALUES (%s, %s)
            ON DUPLICATE KEY UPDATE
                last_sync_time = VALUES(last_sync_time),
                updated_at = CURRENT_TIMESTAMP
        '''

    def get_table_columns(self, table: str) -> List[ColumnInfo]:
        rows = self.query('''
            SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, COLUMN_KEY
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
        ''', (table,))
        return [
            ColumnInfo(
                name=row['COLUMN_NAME'],
                data_type=row['DATA_TYPE'],
                nullable=row['IS_NULLABLE'] == 'YES',
                is_primary_key=row['COLUMN_KEY'] == 'PRI'
            )
            for row in rows
        ]
