"""Typed errors raised by the ledger services.

Every failure path surfaces one of these kinds. The HTTP layer maps the kind
to a status code; services never raise ``HTTPException`` themselves.
"""

from enum import Enum as PyEnum


class ErrorKind(str, PyEnum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL"


class LedgerError(Exception):
    """Base class for ledger errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code = "ERROR"

    def __init__(
        self,
        message: str = "A ledger error occurred",
        code: str | None = None,
        original_exception: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.original_exception = original_exception

    @property
    def retryable(self) -> bool:
        return self.kind not in (ErrorKind.VALIDATION, ErrorKind.FORBIDDEN)

    def __str__(self) -> str:
        if self.original_exception:
            return f"{self.message} (Original error: {self.original_exception})"
        return self.message


class NotFoundError(LedgerError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class ForbiddenError(LedgerError):
    kind = ErrorKind.FORBIDDEN
    default_code = "FORBIDDEN"


class LedgerValidationError(LedgerError):
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION"


class ConflictError(LedgerError):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class InsufficientStockError(ConflictError):
    default_code = "INSUFFICIENT_STOCK"

    def __init__(self, current: int, requested: int) -> None:
        super().__init__(f"Insufficient stock. Current: {current}, requested change: {requested}")
        self.current = current
        self.requested = requested


class InternalError(LedgerError):
    kind = ErrorKind.INTERNAL
    default_code = "STORE_FAILURE"


def product_not_found(product_id: str) -> NotFoundError:
    return NotFoundError(f"Product {product_id} not found", code="PRODUCT_NOT_FOUND")
