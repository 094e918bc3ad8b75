"""
Error taxonomy and operation results.

Service internals raise these exceptions; public entry points wrapped with
`returns_result` convert them into an OperationResult so callers get a
success flag and a human-readable message instead of a traceback.

ImmutableRecordError is deliberately NOT a StockcoreError: it signals a broken
invariant (someone tried to rewrite the ledger) and must propagate.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class StockcoreError(Exception):
    """Base class for expected, caller-facing failures."""

    code = "ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StockcoreError):
    """Malformed input."""

    code = "VALIDATION_ERROR"


class AccessDenied(StockcoreError):
    """Target entity belongs to another tenant."""

    code = "ACCESS_DENIED"


class PreconditionFailed(StockcoreError):
    """Destructive operation blocked by stock, variants or document state."""

    code = "PRECONDITION_FAILED"


class NotFound(StockcoreError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"


class NoActiveShift(StockcoreError):
    """Shift operation attempted while no shift is open."""

    code = "NO_ACTIVE_SHIFT"


class ImmutableRecordError(RuntimeError):
    """Raised when an append-only record is modified in place."""


@dataclass(frozen=True)
class OperationResult:
    """
    Discriminated success/failure result.

    - success: whether the operation committed
    - message: human-readable summary, safe to show to an operator
    - error_code: StockcoreError.code on failure, None on success
    - data: operation payload (entity, counts, ...) on success
    """
    success: bool
    message: str | None = None
    error_code: str | None = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, error: StockcoreError) -> "OperationResult":
        return cls(success=False, message=error.message, error_code=error.code)

    def __bool__(self) -> bool:
        return self.success
