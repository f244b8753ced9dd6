"""
Error kinds and the result wrapper returned by backup operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_CONNECTED = "not_connected"
    NOT_CONFIGURED = "not_configured"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    REMOTE_REJECTED = "remote_rejected"
    PARSE_FAILURE = "parse_failure"
    PARTIAL_RESTORE = "partial_restore"


class BackupError(Exception):
    """Raised by the OAuth and Drive layers; carried by failed outcomes."""

    def __init__(
        self, kind: ErrorKind, message: str, status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"BackupError({self.kind.value!r}, {self.message!r})"


class RemoteDataError(Exception):
    """The data service rejected a read or a write."""


@dataclass
class Outcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[BackupError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls, kind: ErrorKind, message: str, status_code: Optional[int] = None
    ) -> "Outcome[T]":
        return cls(error=BackupError(kind, message, status_code))

    @classmethod
    def from_error(cls, error: BackupError) -> "Outcome[T]":
        return cls(error=error)
