"""
Database abstraction layer for supporting both PostgreSQL and SQLite backends.

This module provides a unified interface for database operations that can work
with both PostgreSQL (via asyncpg) and SQLite (via aiosqlite). Queries are
written once with PostgreSQL style ``$n`` placeholders; the SQLite wrapper
rewrites them to numbered ``?n`` parameters.
"""

from __future__ import annotations
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple, List, Any, AsyncIterator
from dataclasses import dataclass

import aiosqlite
import asyncpg


_PG_PLACEHOLDER = re.compile(r"\$(\d+)")


@dataclass
class DatabaseConfig:
    """Configuration for database connections."""
    backend: str = "postgresql"  # "postgresql" or "sqlite"

    # SQLite configuration
    sqlite_path: str = ""

    # PostgreSQL configuration
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "slim-list"
    postgres_user: str = "postgres"
    postgres_password: str = ""


class DatabaseConnection(ABC):
    """Abstract base class for database connections."""

    backend: str = ""

    @abstractmethod
    async def execute(self, query: str, *args) -> Any:
        """Execute a query and return the result."""
        pass

    @abstractmethod
    async def executemany(self, query: str, args_list: List[Tuple]) -> Any:
        """Execute a query multiple times with different parameters."""
        pass

    @abstractmethod
    async def fetchone(self, query: str, *args) -> Optional[Tuple]:
        """Fetch one row from a query."""
        pass

    @abstractmethod
    async def fetchall(self, query: str, *args) -> List[Tuple]:
        """Fetch all rows from a query."""
        pass

    @abstractmethod
    def transaction(self):
        """Async context manager wrapping its body in one transaction."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the database connection."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteConnection(DatabaseConnection):
    """SQLite database connection wrapper.

    The underlying connection runs in autocommit mode; ``transaction()``
    issues explicit BEGIN / COMMIT / ROLLBACK.
    """

    backend = "sqlite"

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[aiosqlite.Connection] = None
        self._in_transaction = False

    async def connect(self) -> "SQLiteConnection":
        self.conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        await self._optimize_connection()
        return self

    async def __aenter__(self):
        if self.conn is None:
            await self.connect()
        return self

    async def _optimize_connection(self):
        """Apply SQLite performance optimizations."""
        if self.conn:
            await self.conn.execute("PRAGMA journal_mode=WAL")
            await self.conn.execute("PRAGMA synchronous=NORMAL")
            await self.conn.execute("PRAGMA foreign_keys=ON")
            await self.conn.execute("PRAGMA busy_timeout=30000")

    @staticmethod
    def _translate(query: str) -> str:
        return _PG_PLACEHOLDER.sub(r"?\1", query)

    @staticmethod
    def _adapt(args) -> tuple:
        # sqlite3's implicit datetime adapter is deprecated; store UTC ISO-8601
        # text so that timestamps compare correctly as strings
        return tuple(_to_utc_text(a) if isinstance(a, datetime) else a for a in args)

    def _require(self) -> aiosqlite.Connection:
        if not self.conn:
            raise RuntimeError("Connection not established")
        return self.conn

    async def execute(self, query: str, *args) -> aiosqlite.Cursor:
        return await self._require().execute(self._translate(query), self._adapt(args))

    async def executemany(self, query: str, args_list: List[Tuple]) -> aiosqlite.Cursor:
        return await self._require().executemany(
            self._translate(query), [self._adapt(args) for args in args_list]
        )

    async def fetchone(self, query: str, *args) -> Optional[Tuple]:
        cursor = await self._require().execute(self._translate(query), self._adapt(args))
        try:
            return await cursor.fetchone()
        finally:
            await cursor.close()

    async def fetchall(self, query: str, *args) -> List[Tuple]:
        cursor = await self._require().execute(self._translate(query), self._adapt(args))
        try:
            return await cursor.fetchall()
        finally:
            await cursor.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLiteConnection"]:
        conn = self._require()
        if self._in_transaction:
            # Nested use joins the outer transaction
            yield self
            return
        await conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            await conn.execute("ROLLBACK")
            raise
        else:
            await conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None


class PostgreSQLConnection(DatabaseConnection):
    """PostgreSQL database connection wrapper."""

    backend = "postgresql"

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.conn: Optional[asyncpg.Connection] = None

    async def connect(self) -> "PostgreSQLConnection":
        self.conn = await asyncpg.connect(
            host=self.config.postgres_host,
            port=self.config.postgres_port,
            database=self.config.postgres_database,
            user=self.config.postgres_user,
            password=self.config.postgres_password
        )
        return self

    async def __aenter__(self):
        if self.conn is None:
            await self.connect()
        return self

    def _require(self) -> asyncpg.Connection:
        if not self.conn:
            raise RuntimeError("Connection not established")
        return self.conn

    async def execute(self, query: str, *args) -> str:
        return await self._require().execute(query, *args)

    async def executemany(self, query: str, args_list: List[Tuple]) -> None:
        return await self._require().executemany(query, args_list)

    async def fetchone(self, query: str, *args) -> Optional[Tuple]:
        return await self._require().fetchrow(query, *args)

    async def fetchall(self, query: str, *args) -> List[Tuple]:
        return await self._require().fetch(query, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgreSQLConnection"]:
        # asyncpg turns nested transaction() blocks into savepoints
        async with self._require().transaction():
            yield self

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None


class DatabaseFactory:
    """Factory for creating database connections."""

    @staticmethod
    def create_connection(config: DatabaseConfig) -> DatabaseConnection:
        """Create a (not yet connected) database connection based on configuration."""
        if config.backend == "sqlite":
            return SQLiteConnection(config.sqlite_path)
        elif config.backend == "postgresql":
            return PostgreSQLConnection(config)
        else:
            raise ValueError(f"Unsupported database backend: {config.backend}")


def create_connection(config: Optional[DatabaseConfig] = None) -> DatabaseConnection:
    """Create a database connection for one worker invocation.

    Returns an async context manager; the connection is opened on entry and
    closed on exit.
    """
    if config is None:
        from .config import get_database_config
        config = get_database_config()
    return DatabaseFactory.create_connection(config)
