"""Error kinds shared by the data layer and the HTTP API."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Classification used by the HTTP layer to pick a status code."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DATABASE = "database"


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an internal operation: either a value or a :class:`Failure`."""

    value: Optional[T] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(failure=Failure(kind=kind, message=message))


class DatabaseError(Exception):
    """Raised when a statement cannot be executed against the pool."""


class StartupError(RuntimeError):
    """Raised when the service cannot be brought up safely."""


__all__ = ["DatabaseError", "ErrorKind", "Failure", "Result", "StartupError"]
