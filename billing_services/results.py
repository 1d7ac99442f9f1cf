"""
Structured results returned by the BillingOperations facade.

Callers never see kernel exceptions from the facade; they get an
OperationResult whose ``error`` carries the exception's kind, code,
message and structured details.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from billing_kernel.exceptions import BillingKernelError

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorInfo:
    """Machine-readable failure description."""

    kind: str
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BillingKernelError) -> ErrorInfo:
        payload = exc.to_dict()
        return cls(
            kind=payload["kind"],
            code=payload["code"],
            message=payload["message"],
            details=payload["details"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of one facade operation.

    Guarantees:
        - ``ok`` is True iff ``error`` is None.
        - ``attempts`` counts transactions tried, retries included.
    """

    ok: bool
    value: T | None = None
    error: ErrorInfo | None = None
    attempts: int = 1

    @classmethod
    def success(cls, value: T, attempts: int = 1) -> OperationResult[T]:
        return cls(ok=True, value=value, attempts=attempts)

    @classmethod
    def failure(cls, exc: BillingKernelError, attempts: int = 1) -> OperationResult[T]:
        return cls(ok=False, error=ErrorInfo.from_exception(exc), attempts=attempts)

    def unwrap(self) -> T:
        """Return the value, or raise RuntimeError with the error message."""
        if not self.ok:
            raise RuntimeError(f"{self.error.code}: {self.error.message}")
        return self.value
