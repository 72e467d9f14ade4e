"""Shared fixtures: in-memory stand-ins for PostgreSQL and the connection pool."""

from __future__ import annotations

import re
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from userapi import users as user_sql
from userapi.database import APPLIED_MIGRATIONS_SQL, RECORD_MIGRATION_SQL
from userapi.errors import DatabaseError
from userapi.models import PoolStats

_VALUES_ROW = re.compile(r"\('([^']*)', '([^']*)'\)")


class InMemoryDatabase:
    """Implements ``Database.fetch`` for the statements issued by ``UserRepository``."""

    def __init__(self) -> None:
        self.rows: Dict[int, Dict[str, Any]] = {}
        self.next_id = 1
        self.calls: List[tuple] = []
        self.failure: Optional[str] = None
        self.stats_error: Optional[Exception] = None

    def seed(self, name: str, email: str) -> Dict[str, Any]:
        row = {"id": self.next_id, "name": name, "email": email, "created_at": datetime(2024, 1, 1, 12, 0)}
        self.rows[row["id"]] = row
        self.next_id += 1
        return row

    def stats(self) -> PoolStats:
        if self.stats_error is not None:
            raise self.stats_error
        return PoolStats(total=3, idle=2, waiting=0)

    async def fetch(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        params = tuple(params or ())
        self.calls.append((query, params))
        if self.failure is not None:
            raise DatabaseError(self.failure)

        if query == user_sql.LIST_USERS_SQL:
            return [self._public(row) for _, row in sorted(self.rows.items())]
        if query == user_sql.GET_USER_SQL:
            row = self.rows.get(params[0])
            return [self._public(row)] if row else []
        if query == user_sql.CREATE_USER_SQL:
            name, email = params
            self._check_unique(email)
            row = self.seed(name, email)
            return [dict(row)]
        if query == user_sql.UPDATE_USER_SQL:
            name, email, user_id = params
            row = self.rows.get(user_id)
            if row is None:
                return []
            self._check_unique(email, exclude=user_id)
            row.update(name=name, email=email)
            return [self._public(row)]
        if query == user_sql.DELETE_USER_SQL:
            row = self.rows.pop(params[0], None)
            return [{"id": row["id"]}] if row else []
        raise AssertionError(f"Unexpected query: {query}")

    def _check_unique(self, email: str, exclude: Optional[int] = None) -> None:
        for user_id, row in self.rows.items():
            if row["email"] == email and user_id != exclude:
                raise DatabaseError('duplicate key value violates unique constraint "users_email_key"')

    @staticmethod
    def _public(row: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": row["id"], "name": row["name"], "email": row["email"]}


class FakeCursor:
    def __init__(self, rows: Optional[List[Dict[str, Any]]]) -> None:
        self._rows = rows
        self.description = None if rows is None else [("column",)]

    async def fetchall(self) -> List[Dict[str, Any]]:
        return list(self._rows or [])


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    async def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> FakeCursor:
        self._pool.executed.append((query, params))
        for marker, error in self._pool.errors.items():
            if marker in query:
                raise error
        if query == APPLIED_MIGRATIONS_SQL:
            return FakeCursor([{"filename": name} for name in self._pool.applied])
        if query == RECORD_MIGRATION_SQL:
            self._pool.pending.append(params[0])
            return FakeCursor(None)
        if "INSERT INTO users" in query:
            self._pool.insert_users(query)
            return FakeCursor(None)
        return FakeCursor(self._pool.rows.get(query))

    @asynccontextmanager
    async def transaction(self):
        self._pool.pending = []
        try:
            yield
        except BaseException:
            self._pool.pending = []
            raise
        self._pool.applied.extend(self._pool.pending)
        self._pool.pending = []


class FakePool:
    """Mimics the parts of ``psycopg_pool.AsyncConnectionPool`` used by ``Database``."""

    def __init__(self) -> None:
        self.executed: List[tuple] = []
        self.rows: Dict[str, List[Dict[str, Any]]] = {}
        self.errors: Dict[str, Exception] = {}
        self.applied: List[str] = []
        self.pending: List[str] = []
        self.user_emails: List[str] = []
        self.acquire_error: Optional[Exception] = None
        self.open_error: Optional[Exception] = None
        self.checked_out = 0
        self.opened = False
        self.closed = False
        self.stats = {"pool_min": 1, "pool_max": 20, "pool_size": 4, "pool_available": 3, "requests_waiting": 1}

    async def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def close(self, timeout: float = 5.0) -> None:
        self.closed = True

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.checked_out += 1
        try:
            yield FakeConnection(self)
        finally:
            self.checked_out -= 1

    def insert_users(self, query: str) -> None:
        skip_conflicts = "ON CONFLICT (email) DO NOTHING" in query
        for _name, email in _VALUES_ROW.findall(query):
            if skip_conflicts and email in self.user_emails:
                continue
            self.user_emails.append(email)

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)


@pytest.fixture()
def memory_db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture()
def fake_pool() -> FakePool:
    return FakePool()
