"""Line items, receipts and the receipt factory."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple, Union

from catalog import MoneyLike, Product, as_money


class ReceiptKind(str, Enum):
    SALE = "SALE"
    RETURN = "RETURN"


@dataclass(frozen=True)
class LineItem:
    """One product's signed quantity: positive sells, negative returns."""
    product: Product
    quantity: int

    @property
    def code(self) -> str:
        return self.product.code

    @property
    def name(self) -> str:
        return self.product.name

    @property
    def unit_price(self) -> Decimal:
        return self.product.price

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity

    @property
    def is_return(self) -> bool:
        return self.quantity < 0


@dataclass(frozen=True)
class ReceiptLine:
    """A settled line: the product's code, name and price when it was sold.

    Stock is not recorded; it is only meaningful in the catalog.
    """
    code: str
    name: str
    unit_price: Decimal
    quantity: int

    @classmethod
    def from_item(cls, item: LineItem) -> "ReceiptLine":
        return cls(item.code, item.name, item.unit_price, item.quantity)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def is_return(self) -> bool:
        return self.quantity < 0


def compute_total(items: Iterable[Union[LineItem, ReceiptLine]]) -> Decimal:
    """Signed sum of ``unit_price * quantity`` over ``items``."""
    return sum((item.line_total for item in items), Decimal("0"))


@dataclass(frozen=True)
class Receipt:
    """Immutable record of a settled transaction.

    ``total`` is positive for a sale-dominant transaction and negative when
    money is owed to the customer.  ``tendered`` and ``change`` are only set
    for sales.
    """
    receipt_id: str
    kind: ReceiptKind
    timestamp: datetime
    items: Tuple[ReceiptLine, ...]
    total: Decimal
    tendered: Optional[Decimal] = None
    change: Optional[Decimal] = None

    @property
    def refund_amount(self) -> Decimal:
        return -self.total if self.total < 0 else Decimal("0")

    @property
    def item_count(self) -> int:
        return sum(abs(item.quantity) for item in self.items)


# Shared by every factory so identifiers stay unique across the process.
_sequence = itertools.count(1)
_sequence_lock = threading.Lock()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ReceiptFactory:
    """Build receipts from finalized line items.

    Identifiers combine the creation second with a process-wide sequence
    number, e.g. ``20261019143000-000042``.  The factory never touches the
    catalog.

    Args:
        clock: Callable returning the current time; defaults to UTC now.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utc_now

    def _next_id(self, now: datetime) -> str:
        with _sequence_lock:
            seq = next(_sequence)
        return f"{now:%Y%m%d%H%M%S}-{seq:06d}"

    def create(
        self,
        items: Iterable[LineItem],
        kind: Union[ReceiptKind, str],
        tendered: Optional[MoneyLike] = None,
    ) -> Receipt:
        """Create a receipt for ``items``.

        Each item is copied into a :class:`ReceiptLine`, so later changes to
        the source collection or to catalog stock cannot reach the receipt.

        Args:
            items: Finalized line items, in display order.
            kind: ``SALE`` or ``RETURN``.
            tendered: Cash handed over for a sale; used to compute change.
        """
        kind = ReceiptKind(kind)
        snapshot = tuple(ReceiptLine.from_item(item) for item in items)
        total = compute_total(snapshot)
        now = self._clock()
        tendered_amount = as_money(tendered) if tendered is not None else None
        change = tendered_amount - total if tendered_amount is not None else None
        return Receipt(
            receipt_id=self._next_id(now),
            kind=kind,
            timestamp=now,
            items=snapshot,
            total=total,
            tendered=tendered_amount,
            change=change,
        )
