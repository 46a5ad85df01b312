"""Dual-dialect async database adapter.

One contract over SQLite (aiosqlite) and MySQL (aiomysql), built on
SQLAlchemy's asyncio engine:

- ``query`` returns rows as plain dicts, ``execute`` returns an
  ``ExecuteResult`` with the insert id and affected row count.
- SQL uses named bind parameters (``:name``). The adapter never rewrites
  SQL text; engine-specific text comes from ``adapter.dialect``.
- One transaction per execution context (asyncio task). While it is open,
  ``query``/``execute`` in that context run on the transaction's connection.
  Opening a second one in the same context raises ``TransactionError``.
- MySQL transactions check out a dedicated pooled connection. SQLite has a
  single handle guarded by an ``asyncio.Lock``: a transaction holds the lock
  until commit/rollback, standalone statements take it per statement.
"""

import asyncio
import logging
import ssl
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from infradb.core.config import DatabaseConfig, MySQLConfig, SQLiteConfig
from infradb.core.exceptions import DatabaseConnectionError, TransactionError
from infradb.db.dialects import Dialect, get_dialect

logger = logging.getLogger(__name__)

Params = Optional[Mapping[str, Any]]


@dataclass(frozen=True)
class ExecuteResult:
    insert_id: Optional[int]
    affected_rows: int


class Transaction:
    """An open transaction bound to one connection."""

    def __init__(self, adapter: "DatabaseAdapter", connection: AsyncConnection):
        self.adapter = adapter
        self.connection = connection
        self.active = True

    async def commit(self) -> None:
        await self.adapter._finish(self, commit=True)

    async def rollback(self) -> None:
        await self.adapter._finish(self, commit=False)


class DatabaseAdapter:
    """Base adapter. Use :func:`create_adapter` to get a concrete one."""

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self._engine: Optional[AsyncEngine] = None
        self._current_tx: ContextVar[Optional[Transaction]] = ContextVar(
            f"infradb_tx_{id(self)}", default=None
        )
        self._last_insert_id: ContextVar[Optional[int]] = ContextVar(
            f"infradb_last_insert_id_{id(self)}", default=None
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseConnectionError("Database adapter is not connected", self.dialect.name)
        return self._engine

    async def connect(self) -> None:
        raise NotImplementedError

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        logger.info(f"Disconnected from {self.dialect.name} database")

    async def test_connection(self) -> bool:
        try:
            await self.query("SELECT 1 AS ok")
            return True
        except Exception as e:
            logger.error(f"{self.dialect.name} connection test failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        tx = self._active_tx()
        if tx is not None:
            return await self._run_query(tx.connection, sql, params)
        async with self._standalone() as conn:
            return await self._run_query(conn, sql, params)

    async def execute(self, sql: str, params: Params = None) -> ExecuteResult:
        tx = self._active_tx()
        if tx is not None:
            result = await self._run_execute(tx.connection, sql, params)
        else:
            async with self._standalone() as conn:
                result = await self._run_execute(conn, sql, params)
                await conn.commit()
        self._last_insert_id.set(result.insert_id)
        return result

    def get_last_insert_id(self) -> Optional[int]:
        return self._last_insert_id.get()

    async def _run_query(self, conn: AsyncConnection, sql: str, params: Params) -> List[Dict[str, Any]]:
        try:
            result = await conn.execute(text(sql), dict(params or {}))
        except DBAPIError as e:
            logger.error(f"{self.dialect.name} query failed: {e.orig}")
            raise
        return [dict(row) for row in result.mappings().all()]

    async def _run_execute(self, conn: AsyncConnection, sql: str, params: Params) -> ExecuteResult:
        try:
            result = await conn.execute(text(sql), dict(params or {}))
        except DBAPIError as e:
            logger.error(f"{self.dialect.name} statement failed: {e.orig}")
            raise
        insert_id = result.lastrowid or None
        return ExecuteResult(insert_id=insert_id, affected_rows=max(result.rowcount, 0))

    @asynccontextmanager
    async def _standalone(self) -> AsyncIterator[AsyncConnection]:
        async with self.engine.connect() as conn:
            yield conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._active_tx() is not None

    def _active_tx(self) -> Optional[Transaction]:
        """The context's open transaction. One finished from another task is dropped."""
        tx = self._current_tx.get()
        if tx is not None and not tx.active:
            self._current_tx.set(None)
            return None
        return tx

    async def begin_transaction(self) -> Transaction:
        if self._active_tx() is not None:
            raise TransactionError("A transaction is already open in this context")
        conn = await self._acquire_transaction_connection()
        try:
            await conn.begin()
        except BaseException:
            await self._release_transaction_connection(conn)
            raise
        tx = Transaction(self, conn)
        self._current_tx.set(tx)
        return tx

    async def commit(self) -> None:
        tx = self._active_tx()
        if tx is None:
            raise TransactionError("No transaction is open in this context")
        await tx.commit()

    async def rollback(self) -> None:
        tx = self._active_tx()
        if tx is None:
            raise TransactionError("No transaction is open in this context")
        await tx.rollback()

    async def _finish(self, tx: Transaction, commit: bool) -> None:
        if not tx.active:
            raise TransactionError("Transaction already finished")
        tx.active = False
        try:
            if commit:
                await tx.connection.commit()
            else:
                await tx.connection.rollback()
        finally:
            if self._current_tx.get() is tx:
                self._current_tx.set(None)
            await self._release_transaction_connection(tx.connection)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Commit on success, roll back on any exception (cancellation included)."""
        tx = await self.begin_transaction()
        try:
            yield tx
        except BaseException:
            if tx.active:
                await tx.rollback()
            raise
        else:
            if tx.active:
                await tx.commit()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[Optional[Transaction]]:
        """Join the context's open transaction, or run in a new one."""
        tx = self._active_tx()
        if tx is not None:
            yield tx
            return
        async with self.transaction() as tx:
            yield tx

    async def _acquire_transaction_connection(self) -> AsyncConnection:
        return await self.engine.connect()

    async def _release_transaction_connection(self, conn: AsyncConnection) -> None:
        await conn.close()


class SQLiteAdapter(DatabaseAdapter):
    def __init__(self, config: SQLiteConfig):
        super().__init__(get_dialect("sqlite"))
        self.config = config
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._engine is not None:
            return
        if not self.config.is_memory:
            Path(self.config.filename).parent.mkdir(parents=True, exist_ok=True)
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.config.filename}",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # Enable foreign key enforcement for SQLite
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        self._engine = engine
        try:
            await self.query("SELECT 1 AS ok")
        except Exception as e:
            await engine.dispose()
            self._engine = None
            raise DatabaseConnectionError(
                f"Cannot open SQLite database {self.config.filename}: {e}", "sqlite"
            ) from e
        logger.info(f"Connected to SQLite database {self.config.filename}")

    @asynccontextmanager
    async def _standalone(self) -> AsyncIterator[AsyncConnection]:
        async with self._lock:
            async with self.engine.connect() as conn:
                yield conn

    async def _acquire_transaction_connection(self) -> AsyncConnection:
        await self._lock.acquire()
        try:
            return await self.engine.connect()
        except BaseException:
            self._lock.release()
            raise

    async def _release_transaction_connection(self, conn: AsyncConnection) -> None:
        try:
            await conn.close()
        finally:
            self._lock.release()


class MySQLAdapter(DatabaseAdapter):
    def __init__(self, config: MySQLConfig):
        super().__init__(get_dialect("mysql"))
        self.config = config

    def _url(self, with_database: bool = True) -> URL:
        return URL.create(
            "mysql+aiomysql",
            username=self.config.user,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database if with_database else None,
            query={"charset": "utf8mb4"},
        )

    def _create_engine(self, with_database: bool = True) -> AsyncEngine:
        connect_args = {}
        if self.config.ssl:
            connect_args["ssl"] = ssl.create_default_context()
        return create_async_engine(
            self._url(with_database),
            connect_args=connect_args,
            pool_size=self.config.connection_limit,
            max_overflow=0,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    async def _ping(self, engine: AsyncEngine) -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def connect(self) -> None:
        if self._engine is not None:
            return
        engine = self._create_engine()
        try:
            await self._ping(engine)
        except OperationalError as e:
            await engine.dispose()
            if not self.dialect.is_unknown_database(e):
                raise DatabaseConnectionError(
                    f"Cannot connect to MySQL at {self.config.host}:{self.config.port}: {e.orig}",
                    "mysql",
                ) from e
            await self._create_database()
            engine = self._create_engine()
            try:
                await self._ping(engine)
            except DBAPIError as retry_error:
                await engine.dispose()
                raise DatabaseConnectionError(
                    f"Cannot connect to MySQL database {self.config.database}: {retry_error.orig}",
                    "mysql",
                ) from retry_error
        except DBAPIError as e:
            await engine.dispose()
            raise DatabaseConnectionError(
                f"Cannot connect to MySQL at {self.config.host}:{self.config.port}: {e.orig}",
                "mysql",
            ) from e
        self._engine = engine
        logger.info(
            f"Connected to MySQL database {self.config.database} at "
            f"{self.config.host}:{self.config.port} (pool size {self.config.connection_limit})"
        )

    async def _create_database(self) -> None:
        logger.info(f"MySQL database {self.config.database} does not exist, creating it")
        server = self._create_engine(with_database=False)
        try:
            async with server.begin() as conn:
                await conn.execute(
                    text(
                        f"CREATE DATABASE IF NOT EXISTS `{self.config.database}` "
                        "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                    )
                )
        except DBAPIError as e:
            raise DatabaseConnectionError(
                f"Cannot create MySQL database {self.config.database}: {e.orig}", "mysql"
            ) from e
        finally:
            await server.dispose()


def create_adapter(config: DatabaseConfig) -> DatabaseAdapter:
    """Build the adapter for a connection config. Call ``connect()`` before use."""
    if isinstance(config, MySQLConfig):
        return MySQLAdapter(config)
    return SQLiteAdapter(config)
