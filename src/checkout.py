"""Checkout transaction: signed line items, totals and the settle protocol.

A :class:`Checkout` holds the open transaction of one register.  Items
are validated against the shared :class:`~catalog.Catalog` as they are
added, but stock is only touched when the transaction is settled.  Both
sales and returns go through one settle routine which builds the
receipt, applies every stock delta as a single group and resets the
transaction.

Quantities are signed: ``add_item("P001", 2)`` sells two units and
``add_item("P001", -1)`` takes one back.  Adding the same code again
merges into the existing line; a line that nets to zero disappears.
"""

from __future__ import annotations

import itertools
import logging
import os
import time
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from catalog import Catalog, MoneyLike, as_money
from errors import CheckoutError, ErrorKind, TransactionStateError
from metrics import (
    ITEMS_REJECTED_TOTAL,
    PENDING_LINE_ITEMS,
    RECEIPTS_TOTAL,
    SETTLE_DURATION_SECONDS,
    SETTLE_ERROR_TOTAL,
)
from receipt import LineItem, Receipt, ReceiptFactory, ReceiptKind, compute_total

logger = logging.getLogger(__name__)

DEFAULT_REGISTER_PREFIX = "register"

# Numbers default register ids so registers in one process keep separate series.
_register_numbers = itertools.count(1)


class TransactionState(str, Enum):
    EMPTY = "empty"
    BUILDING = "building"


class Checkout:
    """The in-progress transaction of a single register.

    Args:
        catalog: Shared catalog to validate against and settle into.
        receipt_factory: Factory for receipts; a default one is created
            when omitted.
        register_id: Label used in logs and metrics.  Falls back to the
            ``POS_REGISTER_ID`` environment variable, then to a numbered
            ``register-N`` that is unique within the process.
    """

    def __init__(
        self,
        catalog: Catalog,
        receipt_factory: Optional[ReceiptFactory] = None,
        register_id: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.receipt_factory = receipt_factory or ReceiptFactory()
        self.register_id = (
            register_id
            or os.environ.get("POS_REGISTER_ID")
            or f"{DEFAULT_REGISTER_PREFIX}-{next(_register_numbers)}"
        )
        # code -> LineItem, insertion order is display order
        self._items: Dict[str, LineItem] = {}

    # ---- State ----

    @property
    def state(self) -> TransactionState:
        return TransactionState.BUILDING if self._items else TransactionState.EMPTY

    def is_empty(self) -> bool:
        return not self._items

    def current_items(self) -> List[LineItem]:
        """Snapshot of pending items in the order they were first added."""
        return list(self._items.values())

    def pending_quantity(self, code: str) -> int:
        """Signed quantity pending for ``code`` (0 if none)."""
        item = self._items.get(code)
        return item.quantity if item else 0

    def total_amount(self) -> Decimal:
        """Signed total: positive is owed by the customer, negative to them."""
        return compute_total(self._items.values())

    # ---- Building ----

    def add_item(self, code: str, quantity: int) -> Optional[LineItem]:
        """Add ``quantity`` units of ``code`` to the transaction.

        Sales are checked against the stock that remains once the units
        already pending in this transaction are set aside.  Returns carry no
        stock ceiling.

        Returns:
            The merged line item, or None if the line netted out to zero.

        Raises:
            ValueError: If ``quantity`` is zero.
            TypeError: If ``quantity`` is not an integer.
            CheckoutError: ``PRODUCT_NOT_FOUND`` or ``INSUFFICIENT_STOCK``;
                the transaction is left unchanged.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise TypeError("Quantity must be an integer")
        if quantity == 0:
            raise ValueError("Quantity must be non-zero")

        product = self.catalog.lookup(code)
        if product is None:
            raise self._rejected(CheckoutError(
                ErrorKind.PRODUCT_NOT_FOUND,
                f"Product ID not found: {code}",
                {"code": code},
            ))

        existing = self._items.get(code)
        if quantity > 0:
            pending = max(existing.quantity, 0) if existing else 0
            available = product.stock - pending
            if available < quantity:
                raise self._rejected(CheckoutError(
                    ErrorKind.INSUFFICIENT_STOCK,
                    f"Product '{product.name}' out of stock, available: {available}",
                    {"code": code, "requested": quantity, "available": available, "pending": pending},
                ))

        new_quantity = (existing.quantity if existing else 0) + quantity
        if new_quantity == 0:
            del self._items[code]
            item = None
            logger.debug("Line netted out", extra={"extra": {"code": code}})
        else:
            # reassigning an existing key keeps its position
            item = LineItem(product, new_quantity)
            self._items[code] = item
            logger.debug(
                "Line item merged" if existing else "Line item added",
                extra={"extra": {"code": code, "quantity": new_quantity}},
            )
        self._update_pending_gauge()
        return item

    def remove_item(self, code: str) -> LineItem:
        """Drop the pending line for ``code`` entirely.

        Raises:
            TransactionStateError: If ``code`` is not part of the transaction.
        """
        try:
            item = self._items.pop(code)
        except KeyError:
            raise TransactionStateError(f"No pending line for {code}") from None
        self._update_pending_gauge()
        return item

    def cancel(self) -> None:
        """Discard every pending item.  Never fails; stock is untouched."""
        discarded = len(self._items)
        self._items.clear()
        self._update_pending_gauge()
        if discarded:
            logger.info(
                "Transaction cancelled",
                extra={"request_id": self.register_id, "extra": {"discarded_lines": discarded}},
            )

    # ---- Settling ----

    def settle_sale(self, tendered: MoneyLike) -> Receipt:
        """Take payment and commit the transaction as a sale.

        Raises:
            CheckoutError: ``INSUFFICIENT_PAYMENT`` if ``tendered`` is below
                the total, ``STOCK_VIOLATION`` if stock changed underneath.
            TransactionStateError: If the transaction is empty.
        """
        amount = as_money(tendered)
        if amount < 0:
            raise ValueError("Tendered amount must be non-negative")
        return self._settle(ReceiptKind.SALE, amount)

    def settle_return(self) -> Receipt:
        """Commit a refund-dominant transaction as a return.

        Raises:
            CheckoutError: ``INVALID_RETURN`` if the total is not negative,
                ``STOCK_VIOLATION`` if stock changed underneath.
            TransactionStateError: If the transaction is empty.
        """
        return self._settle(ReceiptKind.RETURN)

    def _settle(self, kind: ReceiptKind, tendered: Optional[Decimal] = None) -> Receipt:
        if not self._items:
            raise TransactionStateError(f"Cannot settle an empty transaction as {kind.value}")

        start_time = time.perf_counter()
        error_type: Optional[str] = None
        try:
            total = self.total_amount()
            if tendered is not None and tendered < total:
                raise CheckoutError(
                    ErrorKind.INSUFFICIENT_PAYMENT,
                    f"Insufficient payment! Due: {total}, paid: {tendered}",
                    {"total": str(total), "tendered": str(tendered)},
                )
            if kind is ReceiptKind.RETURN and total >= 0:
                raise CheckoutError(
                    ErrorKind.INVALID_RETURN,
                    "Return requires a negative total",
                    {"total": str(total)},
                )

            items = self.current_items()
            # nothing that can fail may run after the stock adjustment
            receipt = self.receipt_factory.create(items, kind, tendered)
            # selling decreases stock, a negative (returned) quantity adds it back
            self.catalog.adjust_stock_many((item.code, -item.quantity) for item in items)

            self._items.clear()
            self._update_pending_gauge()
            RECEIPTS_TOTAL.inc(kind=kind.value)
            logger.info(
                "Transaction settled",
                extra={
                    "request_id": receipt.receipt_id,
                    "extra": {
                        "register": self.register_id,
                        "kind": kind.value,
                        "total": str(receipt.total),
                        "lines": len(receipt.items),
                    },
                },
            )
            return receipt
        except CheckoutError as exc:
            error_type = exc.kind.value
            logger.warning(
                "Settle rejected",
                extra={
                    "request_id": self.register_id,
                    "extra": {"kind": kind.value, "error": error_type, "reason": exc.message},
                },
            )
            raise
        finally:
            SETTLE_DURATION_SECONDS.observe(time.perf_counter() - start_time, kind=kind.value)
            if error_type:
                SETTLE_ERROR_TOTAL.inc(type=error_type)

    # ---- Helpers ----

    def _rejected(self, error: CheckoutError) -> CheckoutError:
        ITEMS_REJECTED_TOTAL.inc(type=error.kind.value)
        logger.info(
            "Item rejected",
            extra={"request_id": self.register_id, "extra": {"error": error.kind.value, **error.details}},
        )
        return error

    def _update_pending_gauge(self) -> None:
        PENDING_LINE_ITEMS.set(len(self._items), register=self.register_id)
