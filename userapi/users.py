"""Persistence operations for the ``users`` resource."""
from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence

from .errors import DatabaseError, ErrorKind, Result
from .models import User

LIST_USERS_SQL = "SELECT id, name, email FROM users ORDER BY id"
GET_USER_SQL = "SELECT id, name, email FROM users WHERE id = %s"
CREATE_USER_SQL = (
    "INSERT INTO users (name, email) VALUES (%s, %s) RETURNING id, name, email, created_at"
)
UPDATE_USER_SQL = "UPDATE users SET name = %s, email = %s WHERE id = %s RETURNING id, name, email"
DELETE_USER_SQL = "DELETE FROM users WHERE id = %s RETURNING id"

USER_NOT_FOUND = "User not found"


class QueryRunner(Protocol):
    async def fetch(self, query: str, params: Optional[Sequence[Any]] = None) -> List[dict]:
        ...


class UserRepository:
    """CRUD operations returning :class:`Result` values instead of raising."""

    def __init__(self, database: QueryRunner) -> None:
        self._database = database

    async def _fetch(self, query: str, params: Optional[Sequence[Any]] = None) -> Result[List[dict]]:
        try:
            rows = await self._database.fetch(query, params)
        except DatabaseError as exc:
            return Result.fail(ErrorKind.DATABASE, str(exc))
        return Result.success(rows)

    async def list_users(self) -> Result[List[User]]:
        fetched = await self._fetch(LIST_USERS_SQL)
        if not fetched.ok:
            return Result(failure=fetched.failure)
        return Result.success([User.from_row(row) for row in fetched.value or []])

    async def get_user(self, user_id: int) -> Result[User]:
        return self._single(await self._fetch(GET_USER_SQL, (user_id,)))

    async def create_user(self, name: str, email: str) -> Result[User]:
        return self._single(await self._fetch(CREATE_USER_SQL, (name, email)))

    async def update_user(self, user_id: int, name: str, email: str) -> Result[User]:
        return self._single(await self._fetch(UPDATE_USER_SQL, (name, email, user_id)))

    async def delete_user(self, user_id: int) -> Result[None]:
        fetched = await self._fetch(DELETE_USER_SQL, (user_id,))
        if not fetched.ok:
            return Result(failure=fetched.failure)
        if not fetched.value:
            return Result.fail(ErrorKind.NOT_FOUND, USER_NOT_FOUND)
        return Result.success(None)

    @staticmethod
    def _single(fetched: Result[List[dict]]) -> Result[User]:
        if not fetched.ok:
            return Result(failure=fetched.failure)
        if not fetched.value:
            return Result.fail(ErrorKind.NOT_FOUND, USER_NOT_FOUND)
        return Result.success(User.from_row(fetched.value[0]))


__all__ = [
    "CREATE_USER_SQL",
    "DELETE_USER_SQL",
    "GET_USER_SQL",
    "LIST_USERS_SQL",
    "UPDATE_USER_SQL",
    "USER_NOT_FOUND",
    "UserRepository",
]
