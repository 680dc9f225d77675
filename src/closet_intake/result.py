"""Result type and error taxonomy shared by adapters and pipeline components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced by adapters and components."""

    CLASSIFICATION = "classification"
    EXTRACTION = "extraction"
    BACKGROUND_REMOVAL = "background_removal"
    CATEGORIZATION = "categorization"
    VALIDATION = "validation"
    UNRECOGNIZED_SHAPE = "unrecognized_shape"
    TRANSPORT = "transport"
    DECODE = "decode"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    """Failed outcome carrying an error kind and a human-readable message."""

    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


Result = Ok[T] | Err


class IntakeError(RuntimeError):
    """Base class for pipeline errors that carry an :class:`ErrorKind`."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @classmethod
    def from_err(cls, err: Err) -> IntakeError:
        return cls(err.kind, err.message)


class ExtractionError(IntakeError):
    """Raised when a person/multi-item branch cannot produce a garment image."""
