"""
Persistent store access for test sessions.

Defines the minimal store interface the harness needs (baseline reset plus
create/find/clear for seeding), a SQLite implementation, and the
session-scoped seeding capability handed to test bodies.
"""

import asyncio
import re
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.exceptions import SeedingError
from ..core.logging_config import get_logger
from .models import Fixture, ResetToken


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """Quote a table or column name, rejecting anything that is not a plain identifier."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


class DataStore(ABC):
    """Interface between the harness and the application's persistent store."""

    name: str = "store"

    @abstractmethod
    def reset(self, fixture: Fixture) -> None:
        """Atomically clear all data and load ``fixture``."""

    @abstractmethod
    def insert(self, table: str, values: Dict[str, Any]) -> int:
        """Insert one row and return its row id."""

    @abstractmethod
    def select(self, table: str, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return rows of ``table`` matching all ``criteria``."""

    @abstractmethod
    def delete(self, table: str) -> int:
        """Delete every row of ``table`` and return the number removed."""

    def describe(self) -> str:
        return self.name


class SQLiteStore(DataStore):
    """SQLite-backed store shared by the harness and the application under test."""

    def __init__(
        self,
        path: Path,
        schema_path: Optional[Path] = None,
        busy_timeout: float = 5.0,
    ):
        self.path = Path(path)
        self.schema_path = Path(schema_path) if schema_path else None
        self.busy_timeout = busy_timeout
        self.name = f"sqlite:{self.path}"

    def connect(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; transactions are explicit."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path), timeout=self.busy_timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        return conn

    def apply_schema(self, conn: sqlite3.Connection) -> None:
        """Run the schema script. It must be idempotent (CREATE ... IF NOT EXISTS)."""
        if self.schema_path is None:
            return
        conn.executescript(self.schema_path.read_text(encoding="utf-8"))

    @staticmethod
    def user_tables(conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [row["name"] for row in rows]

    @staticmethod
    def _has_sequence_table(conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
        ).fetchone()
        return row is not None

    def reset(self, fixture: Fixture) -> None:
        conn = self.connect()
        try:
            self.apply_schema(conn)
            # Take the write lock up front so readers never see a half-cleared store
            conn.execute("BEGIN IMMEDIATE")
            try:
                for table in self.user_tables(conn):
                    conn.execute(f"DELETE FROM {quote_identifier(table)}")
                if self._has_sequence_table(conn):
                    conn.execute("DELETE FROM sqlite_sequence")
                for table, rows in fixture.items():
                    for row in rows:
                        self._insert(conn, table, row)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> int:
        if not values:
            cursor = conn.execute(f"INSERT INTO {quote_identifier(table)} DEFAULT VALUES")
            return cursor.lastrowid
        columns = ", ".join(quote_identifier(column) for column in values)
        placeholders = ", ".join("?" for _ in values)
        cursor = conn.execute(
            f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        return cursor.lastrowid

    def insert(self, table: str, values: Dict[str, Any]) -> int:
        conn = self.connect()
        try:
            return self._insert(conn, table, values)
        finally:
            conn.close()

    def select(self, table: str, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {quote_identifier(table)}"
        params: List[Any] = []
        if criteria:
            clauses = []
            for column, value in criteria.items():
                if value is None:
                    clauses.append(f"{quote_identifier(column)} IS NULL")
                else:
                    clauses.append(f"{quote_identifier(column)} = ?")
                    params.append(value)
            sql += " WHERE " + " AND ".join(clauses)

        conn = self.connect()
        try:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def delete(self, table: str) -> int:
        conn = self.connect()
        try:
            cursor = conn.execute(f"DELETE FROM {quote_identifier(table)}")
            return cursor.rowcount
        finally:
            conn.close()

    def count_rows(self) -> Dict[str, int]:
        """Row count per user table."""
        conn = self.connect()
        try:
            return {
                table: conn.execute(
                    f"SELECT COUNT(*) FROM {quote_identifier(table)}"
                ).fetchone()[0]
                for table in self.user_tables(conn)
            }
        finally:
            conn.close()


class DataSeeder:
    """
    Seeding capability scoped to one test session.

    The first write marks the session's reset token as consumed; data written
    afterwards belongs to the test. The seeder refuses use once its session
    has been torn down.
    """

    def __init__(self, store: DataStore, token: ResetToken):
        self.store = store
        self.token = token
        self._active = True
        self.logger = get_logger("ui_harness.seed", test_name=token.session_name)

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        self._active = False

    def _check(self, operation: str, table: str) -> None:
        if not self._active:
            raise SeedingError(
                f"Seeding capability for {self.token.session_name} is no longer active",
                table=table,
                operation=operation,
            )

    def _mark_write(self) -> None:
        if self.token.valid:
            self.token.invalidate()

    async def _call(self, operation: str, table: str, func, *args):
        self._check(operation, table)
        try:
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, ValueError) as e:
            raise SeedingError(
                f"{operation} on {table} failed: {e}", table=table, operation=operation
            ) from e

    async def create(self, table: str, **values: Any) -> int:
        """Insert a row and return its id."""
        self._check("create", table)
        self._mark_write()
        row_id = await self._call("create", table, self.store.insert, table, values)
        self.logger.debug(
            f"Seeded {table} row {row_id}", extra={"metadata": {"values": values}}
        )
        return row_id

    async def find(self, table: str, **criteria: Any) -> List[Dict[str, Any]]:
        """Return rows matching ``criteria``."""
        return await self._call("find", table, self.store.select, table, criteria)

    async def clear(self, table: str) -> int:
        """Delete every row of ``table``."""
        self._check("clear", table)
        self._mark_write()
        return await self._call("clear", table, self.store.delete, table)
