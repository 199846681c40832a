"""Error kinds raised by the checkout engine.

Business-rule failures are reported through a single exception type,
:class:`CheckoutError`, whose ``kind`` attribute is one member of the
closed :class:`ErrorKind` enumeration.  Callers can therefore handle
every business failure with one ``except`` clause and branch on the
kind.  Misuse of the API (settling an empty transaction, a zero
quantity, and so on) raises :class:`TransactionStateError` or
``ValueError`` instead, so programming errors are never confused with
recoverable conditions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of recoverable business errors."""

    PRODUCT_NOT_FOUND = "product_not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INSUFFICIENT_PAYMENT = "insufficient_payment"
    INVALID_RETURN = "invalid_return"
    STOCK_VIOLATION = "stock_violation"


class CheckoutError(Exception):
    """A recoverable business error.

    Args:
        kind: The error kind.
        message: Human readable explanation, suitable for display.
        details: Optional structured context (product code, amounts ...).
    """

    def __init__(self, kind: ErrorKind, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __repr__(self) -> str:
        return f"CheckoutError(kind={self.kind.value!r}, message={self.message!r})"


class TransactionStateError(RuntimeError):
    """Raised when the checkout API is used outside its contract."""
