"""Domain models for the users service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class User:
    """Represents a row of the ``users`` table."""

    id: int
    name: str
    email: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            id=int(row["id"]),
            name=row["name"],
            email=row["email"],
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "name": self.name, "email": self.email}
        if self.created_at is not None:
            payload["created_at"] = self.created_at.isoformat()
        return payload


@dataclass(frozen=True)
class PoolStats:
    """Snapshot of the connection pool counters."""

    total: int
    idle: int
    waiting: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalCount": self.total,
            "idleCount": self.idle,
            "waitingCount": self.waiting,
        }


__all__ = ["PoolStats", "User"]
