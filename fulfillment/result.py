"""
Result: the return value of every workflow and saga operation.

Business failures are returned, not raised. A failed result carries one or
more human-readable messages and the kind of failure; it never carries data.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INVALID_PAYMENT_TYPE = "invalid_payment_type"
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_PAID = "already_paid"
    ALREADY_FAILED = "already_failed"
    ALREADY_CANCELLED = "already_cancelled"
    ALREADY_FULFILLED = "already_fulfilled"
    ALREADY_SUCCESSFUL = "already_successful"
    NOT_ACTIVE = "not_active"
    AMOUNT_MISMATCH = "amount_mismatch"
    INSUFFICIENT_STOCK = "insufficient_stock"
    ORDER_RESOLUTION_FAILED = "order_resolution_failed"
    PERSISTENCE = "persistence"
    UNEXPECTED = "unexpected"


@dataclass
class Result:
    data: Any = None
    errors: list[str] = field(default_factory=list)
    kind: ErrorKind | None = None

    @property
    def is_success(self) -> bool:
        return not self.errors

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(data=data)

    @classmethod
    def failure(cls, errors: str | list[str], kind: ErrorKind) -> "Result":
        if isinstance(errors, str):
            errors = [errors]
        return cls(errors=list(errors), kind=kind)

    @classmethod
    def propagate(cls, other: "Result") -> "Result":
        """Re-wrap another failed result without its data."""
        return cls(errors=list(other.errors), kind=other.kind)
