# db_syncer/adapters/mssql_adapter.py
import logging
from typing import List

import pyodbc

from .base import ColumnInfo, SqlRowStoreAdapter

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = 'ODBC Driver 18 for SQL Server'


class MSSQLAdapter(SqlRowStoreAdapter):
    """Microsoft SQL Server adapter built on pyodbc"""

    db_type = 'mssql'
    placeholder = '?'
    quote_open = '['
    quote_close = ']'
    current_time_sql = 'SELECT SYSDATETIME() AS now'

    def build_connection_string(self) -> str:
        cfg = self.config
        if cfg.get('use_named_pipe') and cfg.get('named_pipe_path'):
            server = f"np:{cfg['named_pipe_path']}"
        elif cfg.get('port'):
            server = f"{cfg.get('host')},{cfg['port']}"
        else:
            server = cfg.get('host')
        parts = [
            f"DRIVER={{{cfg.get('driver', DEFAULT_DRIVER)}}}",
            f"SERVER={server}",
            f"DATABASE={cfg.get('database')}",
            f"UID={cfg.get('user')}",
            f"PWD={cfg.get('password') or ''}",
            f"Encrypt={'yes' if cfg.get('encrypt', True) else 'no'}",
            f"TrustServerCertificate={'yes' if cfg.get('trust_server_certificate', True) else 'no'}",
        ]
        return ';'.join(parts)

    def _open_connection(self):
        conn = pyodbc.connect(
            self.build_connection_string(),
            autocommit=False,
            timeout=int(self.config.get('connect_timeout', 30))
        )
        conn.timeout = int(self.config.get('request_timeout', 30))
        return conn

    def _driver_errors(self) -> tuple:
        return (pyodbc.Error,)

    def _is_connection_lost(self, error: Exception) -> bool:
        # SQLSTATE class 08 is "connection exception"
        state = error.args[0] if error.args else ''
        return isinstance(error, pyodbc.OperationalError) or str(state).startswith('08')

    def _create_status_table_sql(self) -> str:
        return f'''
            IF NOT EXISTS (SELECT * FROM sysobjects WHERE name='{self.status_table}' AND xtype='U')
            CREATE TABLE {self.quote(self.status_table)} (
                table_name NVARCHAR(255) PRIMARY KEY,
                last_sync_time DATETIME2,
                created_at DATETIME2 DEFAULT GETDATE(),
                updated_at DATETIME2 DEFAULT GETDATE()
            )
        '''

    def _upsert_status_sql(self) -> str:
        return f'''
            MERGE {self.quote(self.status_table)} AS target
            USING (SELECT ? AS table_name, ? AS last_sync_time) AS source
            ON target.table_name = source.table_name
            WHEN MATCHED THEN
                UPDATE SET last_sync_time = source.last_sync_time, updated_at = GETDATE()
            WHEN NOT MATCHED THEN
                INSERT (table_name, last_sync_time) VALUES (source.table_name, source.last_sync_time);
        '''

    def get_table_columns(self, table: str) -> List[ColumnInfo]:
        rows = self.query('''
            SELECT c.COLUMN_NAME, c.DATA_TYPE, c.IS_NULLABLE,
                   CASE WHEN tc.CONSTRAINT_TYPE = 'PRIMARY KEY' THEN 1 ELSE 0 END AS IS_PK
            FROM INFORMATION_SCHEMA.COLUMNS c
            LEFT JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
                ON c.TABLE_NAME = kcu.TABLE_NAME AND c.COLUMN_NAME = kcu.COLUMN_NAME
            LEFT JOIN INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
                ON kcu.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
                AND tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
            WHERE c.TABLE_NAME = ?
            ORDER BY c.ORDINAL_POSITION
        ''', (table,))
        return [
            ColumnInfo(
                name=row['COLUMN_NAME'],
                data_type=row['DATA_TYPE'],
                nullable=row['IS_NULLABLE'] == 'YES',
                is_primary_key=bool(row['IS_PK'])
            )
            for row in rows
        ]
