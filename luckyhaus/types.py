from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:  # pragma: no cover
    from .schemas import LedgerDocument


class RoundStatus(str, Enum):
    ACTIVE = "active"
    DRAWING = "drawing"
    ENDED = "ended"


class WriteStatus(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass(frozen=True)
class Found:
    document: "LedgerDocument"


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Unavailable:
    cause: str


ReadResult = Union[Found, NotFound, Unavailable]


@dataclass(frozen=True)
class WriteResult:
    status: WriteStatus
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.OK

    @classmethod
    def success(cls) -> "WriteResult":
        return cls(WriteStatus.OK)

    @classmethod
    def conflict(cls, detail: str) -> "WriteResult":
        return cls(WriteStatus.CONFLICT, detail)

    @classmethod
    def failure(cls, detail: str) -> "WriteResult":
        return cls(WriteStatus.FAILED, detail)


class LedgerConflictError(RuntimeError):
    """Raised when a read-modify-write keeps losing to concurrent writers."""


class LedgerCapacityError(RuntimeError):
    """Raised when the ticket list of a ledger document is full."""


class LedgerUnavailableError(RuntimeError):
    """Raised when no backend can say whether a ledger document exists."""
