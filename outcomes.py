"""
Explicit success/failure results returned by the repositories.

Nothing above the repository layer sees a raw storage fault: every fault is
translated into one of the FailureKind values below.
"""

from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class FailureKind(str, Enum):
    INTEGRITY_VIOLATION = "integrity_violation"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    USERNAME_TAKEN = "username_taken"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class Outcome(BaseModel, Generic[T]):
    """Either a value (``ok``) or a failure kind with a human readable reason."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    value: Optional[T] = None
    failure: Optional[FailureKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value=None) -> "Outcome":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: FailureKind, message: str) -> "Outcome":
        return cls(failure=failure, message=message)


class RepositoryFailure(Exception):
    """Raised inside repository work to end it with a specific failure kind."""

    def __init__(self, failure: FailureKind, message: str):
        super().__init__(message)
        self.failure = failure
        self.message = message
