"""PostgreSQL persistence through a shared asynchronous connection pool."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from .config import PoolConfig
from .errors import DatabaseError, StartupError
from .models import PoolStats

logger = logging.getLogger("userapi.database")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id          SERIAL PRIMARY KEY,
    name        VARCHAR(100) NOT NULL,
    email       VARCHAR(255) UNIQUE NOT NULL,
    created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);

INSERT INTO users (name, email) VALUES
    ('John Doe', 'john@example.com'),
    ('Jane Smith', 'jane@example.com')
ON CONFLICT (email) DO NOTHING;
"""

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    filename    TEXT PRIMARY KEY,
    applied_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

APPLIED_MIGRATIONS_SQL = "SELECT filename FROM schema_migrations"
RECORD_MIGRATION_SQL = "INSERT INTO schema_migrations (filename) VALUES (%s)"


def _discover_migrations(directory: Path) -> List[Path]:
    return sorted(
        (path for path in directory.iterdir() if path.suffix == ".sql" and path.is_file()),
        key=lambda path: path.name,
    )


class Database:
    """Owns the connection pool and runs parameterised statements against it.

    The pool is created closed; call :meth:`open` once at process start and
    :meth:`close` on shutdown. Every call to :meth:`fetch` borrows a single
    connection for the lifetime of one statement and always returns it.
    """

    def __init__(
        self,
        conninfo: str,
        *,
        pool_config: Optional[PoolConfig] = None,
        pool: Any = None,
    ) -> None:
        self._pool_config = pool_config or PoolConfig()
        self._pool = pool if pool is not None else self._build_pool(conninfo)

    def _build_pool(self, conninfo: str) -> AsyncConnectionPool:
        config = self._pool_config
        return AsyncConnectionPool(
            conninfo,
            min_size=config.min_size,
            max_size=config.max_size,
            max_idle=config.max_idle,
            timeout=config.timeout,
            kwargs={"row_factory": dict_row},
            configure=self._on_connect,
            reconnect_failed=self._on_reconnect_failed,
            name="userapi",
            open=False,
        )

    @staticmethod
    async def _on_connect(conn: psycopg.AsyncConnection) -> None:
        logger.info("Connected to PostgreSQL database")

    @staticmethod
    def _on_reconnect_failed(pool: AsyncConnectionPool) -> None:
        logger.error("Unexpected database error: pool %s could not reconnect", pool.name)

    @property
    def pool_config(self) -> PoolConfig:
        return self._pool_config

    async def open(self) -> None:
        """Open the pool and wait until its minimum connections are ready."""

        try:
            await self._pool.open(wait=True, timeout=self._pool_config.open_timeout)
        except PoolTimeout as exc:
            raise DatabaseError(f"Timed out connecting to the database: {exc}") from exc
        except psycopg.Error as exc:
            raise DatabaseError(f"Failed to connect to the database: {exc}") from exc

    async def close(self) -> None:
        await self._pool.close()

    async def fetch(
        self,
        query: str,
        params: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Execute one statement and return its rows (empty for row-less statements)."""

        try:
            async with self._pool.connection() as conn:
                cursor = await conn.execute(query, params)
                if cursor.description is None:
                    return []
                return list(await cursor.fetchall())
        except PoolTimeout as exc:
            raise DatabaseError(
                f"Timed out after {self._pool_config.timeout}s waiting for a database connection"
            ) from exc
        except psycopg.Error as exc:
            raise DatabaseError(str(exc)) from exc

    async def execute_script(self, sql: str) -> None:
        """Run a multi-statement SQL script without bound parameters."""

        try:
            async with self._pool.connection() as conn:
                await conn.execute(sql)
        except psycopg.Error as exc:
            raise DatabaseError(str(exc)) from exc

    async def initialize(self) -> None:
        """Create the schema and seed rows; safe to run on every start."""

        logger.info("Initializing database schema...")
        try:
            await self.execute_script(SCHEMA_SQL)
        except DatabaseError as exc:
            logger.error("Error initializing database: %s", exc)
            raise StartupError(f"Schema initialization failed: {exc}") from exc
        logger.info("Database schema initialized successfully")

    async def apply_migrations(self, directory: Optional[Path]) -> List[str]:
        """Apply pending ``*.sql`` files from ``directory`` in filename order.

        Each file runs in its own transaction together with the row that marks
        it as applied, so a file is never applied twice. A missing directory
        is not an error.
        """

        if directory is None or not directory.is_dir():
            logger.info("No migrations directory found, skipping migrations")
            return []

        migrations = _discover_migrations(directory)
        applied: List[str] = []
        try:
            await self.execute_script(MIGRATIONS_TABLE_SQL)
            done = {row["filename"] for row in await self.fetch(APPLIED_MIGRATIONS_SQL)}
            for path in migrations:
                if path.name in done:
                    continue
                logger.info("Running migration: %s", path.name)
                await self._apply_migration(path)
                applied.append(path.name)
                logger.info("Migration %s completed", path.name)
        except DatabaseError as exc:
            logger.error("Error applying migrations: %s", exc)
            raise StartupError(f"Migration failed: {exc}") from exc
        return applied

    async def _apply_migration(self, path: Path) -> None:
        sql = path.read_text(encoding="utf-8")
        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute(RECORD_MIGRATION_SQL, (path.name,))
        except psycopg.Error as exc:
            raise DatabaseError(f"{path.name}: {exc}") from exc

    def stats(self) -> PoolStats:
        raw = self._pool.get_stats()
        return PoolStats(
            total=int(raw.get("pool_size", 0)),
            idle=int(raw.get("pool_available", 0)),
            waiting=int(raw.get("requests_waiting", 0)),
        )


__all__ = [
    "APPLIED_MIGRATIONS_SQL",
    "Database",
    "MIGRATIONS_TABLE_SQL",
    "RECORD_MIGRATION_SQL",
    "SCHEMA_SQL",
]
