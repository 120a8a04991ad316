"""MySQL database capability over pyodbc.

The chat pipeline only sees the :class:`DatabaseCapability` protocol: connect,
execute a read query, list tables, describe a table, fetch sample rows.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
import logging
import threading
from typing import Any, Generator, Optional, Protocol

import pyodbc

from ..schema.catalog import Column, Relation, Table
from ..security.sql_guard import is_read_only_statement
from .config import ConnectionConfig
from .exceptions import ExecutionError

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = {"information_schema", "mysql", "performance_schema", "sys"}


class DatabaseCapability(Protocol):
    """What the chat pipeline needs from a database."""

    def connect(self, config: ConnectionConfig) -> bool: ...

    def execute_query(self, sql: str) -> list[dict[str, Any]]: ...

    def get_tables(self) -> list[str]: ...

    def get_table_schema(self, table_name: str) -> Table: ...

    def get_sample_data(self, table_name: str, limit: int = 5) -> list[dict[str, Any]]: ...


def _normalize_value(value: Any) -> Any:
    """Normalize database values for JSON serialization."""
    if value is None:
        return None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        # Try to decode as UTF-8, otherwise return hex representation
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value.hex()
    if isinstance(value, memoryview):
        return bytes(value).hex()
    return value


def _quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


class MySQLDatabase:
    """Single shared MySQL connection, one statement in flight at a time."""

    def __init__(self, max_rows: int = 500):
        self.max_rows = max_rows
        self._config: Optional[ConnectionConfig] = None
        self._conn: Optional[pyodbc.Connection] = None
        self._lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def database_name(self) -> str | None:
        return self._config.database if self._config else None

    def connect(self, config: ConnectionConfig) -> bool:
        """Open the connection described by ``config``.

        Returns:
            True on success, False when the driver refuses the connection.
        """
        self.disconnect()
        logger.info(f"Connecting to {config.masked_connection_string}")
        try:
            self._conn = pyodbc.connect(config.connection_string, timeout=config.timeout)
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to {config.masked_connection_string}: {e}")
            self._conn = None
            return False
        self._config = config
        return True

    def disconnect(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            except pyodbc.Error as e:
                logger.warning(f"Error while closing connection: {e}")
            self._conn = None

    def test_connection(self) -> dict[str, Any]:
        """Ping the server and report its version."""
        result: dict[str, Any] = {
            "host": self._config.host if self._config else None,
            "database": self.database_name,
            "connected": False,
            "error": None,
            "server_version": None,
        }
        if self._conn is None:
            result["error"] = "Not connected"
            return result
        try:
            rows = self._fetch("SELECT VERSION() AS version")
            result["connected"] = True
            result["server_version"] = rows[0]["version"] if rows else "Unknown"
        except ExecutionError as e:
            result["error"] = str(e)
        return result

    @contextmanager
    def _cursor(self) -> Generator[pyodbc.Cursor, None, None]:
        if self._conn is None:
            raise ExecutionError("Database is not connected")
        with self._lock:
            cursor = self._conn.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def _fetch(self, sql: str, params: tuple[Any, ...] = (), limit: int | None = None) -> list[dict[str, Any]]:
        try:
            with self._cursor() as cursor:
                cursor.execute(sql, params)
                if not cursor.description:
                    return []
                columns = [col[0] for col in cursor.description]
                rows = cursor.fetchmany(limit) if limit else cursor.fetchall()
                return [
                    {name: _normalize_value(value) for name, value in zip(columns, row)}
                    for row in rows
                ]
        except pyodbc.ProgrammingError as e:
            logger.error(f"SQL programming error: {e}")
            raise ExecutionError(f"Invalid SQL query: {e}") from e
        except pyodbc.OperationalError as e:
            logger.error(f"Database operational error: {e}")
            raise ExecutionError(f"Database operation failed: {e}") from e
        except pyodbc.Error as e:
            logger.error(f"Database error: {e}")
            raise ExecutionError(f"Database error: {e}") from e

    def execute_query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a read-only statement and return at most ``max_rows`` rows.

        Raises:
            ExecutionError: If the statement is not read-only or the query fails
        """
        allowed, reason = is_read_only_statement(sql)
        if not allowed:
            logger.warning(f"Database gate refused statement: {reason}")
            raise ExecutionError(f"Statement refused: {reason}")

        logger.debug(f"Executing SQL (limit={self.max_rows}): {sql[:200]}")
        rows = self._fetch(sql.strip().rstrip(";"), limit=self.max_rows)
        logger.debug(f"Query returned {len(rows)} rows")
        return rows

    def get_tables(self) -> list[str]:
        rows = self._fetch(
            "SELECT TABLE_NAME AS name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
            "ORDER BY TABLE_NAME"
        )
        return [row["name"] for row in rows]

    def get_table_schema(self, table_name: str) -> Table:
        """Describe ``table_name``: columns, outgoing foreign keys and row estimate."""
        column_rows = self._fetch(
            "SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, COLUMN_KEY, COLUMN_DEFAULT, COLUMN_COMMENT "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ? "
            "ORDER BY ORDINAL_POSITION",
            (table_name,),
        )
        fk_rows = self._fetch(
            "SELECT COLUMN_NAME, REFERENCED_TABLE_NAME, REFERENCED_COLUMN_NAME "
            "FROM information_schema.KEY_COLUMN_USAGE "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ? "
            "AND REFERENCED_TABLE_NAME IS NOT NULL",
            (table_name,),
        )
        count_rows = self._fetch(
            "SELECT TABLE_ROWS, TABLE_COMMENT FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = ?",
            (table_name,),
        )

        foreign_keys = {row["COLUMN_NAME"]: row for row in fk_rows}
        columns = []
        for row in column_rows:
            fk = foreign_keys.get(row["COLUMN_NAME"])
            default = row.get("COLUMN_DEFAULT")
            columns.append(Column(
                name=row["COLUMN_NAME"],
                data_type=str(row["DATA_TYPE"]).upper(),
                is_nullable=row["IS_NULLABLE"] == "YES",
                is_primary_key=row["COLUMN_KEY"] == "PRI",
                is_foreign_key=fk is not None,
                foreign_key_ref=(
                    f"{fk['REFERENCED_TABLE_NAME']}.{fk['REFERENCED_COLUMN_NAME']}" if fk else None
                ),
                default_value=str(default) if default is not None else None,
                description=row.get("COLUMN_COMMENT") or None,
            ))

        relations = tuple(
            Relation(
                kind="MANY_TO_ONE",
                source_column=row["COLUMN_NAME"],
                target_table=row["REFERENCED_TABLE_NAME"],
                target_column=row["REFERENCED_COLUMN_NAME"],
            )
            for row in fk_rows
        )

        row_count = None
        description = None
        if count_rows:
            raw_count = count_rows[0].get("TABLE_ROWS")
            row_count = int(raw_count) if raw_count is not None else None
            description = count_rows[0].get("TABLE_COMMENT") or None

        return Table(
            name=table_name,
            description=description,
            columns=tuple(columns),
            relations=relations,
            row_count=row_count,
        )

    def get_sample_data(self, table_name: str, limit: int = 5) -> list[dict[str, Any]]:
        return self._fetch(f"SELECT * FROM {_quote_identifier(table_name)} LIMIT {int(limit)}")
