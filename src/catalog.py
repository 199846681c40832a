"""Product catalog with validated, serialized stock adjustment.

The :class:`Catalog` is the only owner of product stock.  Products are
immutable snapshots; every stock change replaces the stored snapshot
under a per-product lock, so readers never see a partially applied
update and nothing outside the catalog can alias a mutable record.

Usage example::

    catalog = Catalog([Product("P001", "Coca-Cola", Decimal("3.5"), 100)])
    catalog.adjust_stock("P001", -2)
    catalog.lookup("P001").stock   # 98
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, Overflow
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from errors import CheckoutError, ErrorKind
from metrics import STOCK_ADJUSTMENTS_TOTAL

logger = logging.getLogger(__name__)

MoneyLike = Union[Decimal, int, float, str]


def as_money(value: MoneyLike) -> Decimal:
    """Convert ``value`` to a finite :class:`Decimal`.

    Floats go through ``str()`` so that ``3.5`` becomes ``Decimal("3.5")``
    rather than its binary expansion.

    Raises:
        TypeError: If ``value`` is a bool or an unsupported type.
        ValueError: If ``value`` cannot be parsed, is not finite or lies
            outside the range of the decimal context.
    """
    if isinstance(value, bool):
        raise TypeError("Monetary amounts must be numeric, not bool")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid monetary amount: {value!r}") from None
    else:
        raise TypeError(f"Unsupported monetary type: {type(value).__name__}")
    if not amount.is_finite():
        raise ValueError(f"Monetary amount must be finite: {value!r}")
    try:
        # unary plus applies the context, which traps exponents above Emax
        amount = +amount
    except Overflow:
        raise ValueError(f"Monetary amount out of range: {value!r}") from None
    return amount


@dataclass(frozen=True)
class Product:
    """Immutable snapshot of a catalog product."""
    code: str
    name: str
    price: Decimal
    stock: int

    def __post_init__(self) -> None:
        if not isinstance(self.code, str) or not self.code.strip():
            raise ValueError("Product code must be a non-empty string")
        price = as_money(self.price)
        if price < 0:
            raise ValueError(f"Price for {self.code} must be non-negative")
        if isinstance(self.stock, bool) or not isinstance(self.stock, int):
            raise TypeError(f"Stock for {self.code} must be an integer")
        if self.stock < 0:
            raise ValueError(f"Stock for {self.code} must be non-negative")
        # frozen: bypass __setattr__ to store the normalised price
        object.__setattr__(self, "price", price)


class Catalog:
    """Authoritative registry of products and their stock counters.

    One catalog instance is shared by every checkout that sells from it.
    ``adjust_stock`` and ``adjust_stock_many`` are the only ways to change
    stock; each holds the lock of every product it touches for the whole
    check-then-set, so concurrent callers cannot jointly oversell.
    """

    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: Dict[str, Product] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        for product in products:
            self.register(product)

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, code: object) -> bool:
        return code in self._products

    # ---- Registration ----

    def register(self, product: Product) -> Product:
        """Add a new product to the catalog.

        Raises:
            ValueError: If a product with the same code already exists.
        """
        with self._registry_lock:
            if product.code in self._products:
                raise ValueError(f"Product code already registered: {product.code}")
            self._locks[product.code] = threading.Lock()
            self._products[product.code] = product
        logger.info(
            "Product registered",
            extra={"extra": {"code": product.code, "price": str(product.price), "stock": product.stock}},
        )
        return product

    # ---- Read access ----

    def lookup(self, code: str) -> Optional[Product]:
        """Return the current snapshot for ``code`` or None if unknown."""
        return self._products.get(code)

    def get(self, code: str) -> Product:
        """Return the current snapshot for ``code``.

        Raises:
            CheckoutError: ``PRODUCT_NOT_FOUND`` if the code is unknown.
        """
        product = self._products.get(code)
        if product is None:
            raise _not_found(code)
        return product

    def list_products(self) -> List[Product]:
        """Return all products in registration order, as of now."""
        with self._registry_lock:
            return list(self._products.values())

    # ---- Stock adjustment ----

    def adjust_stock(self, code: str, delta: int) -> Product:
        """Apply ``stock += delta`` to a single product.

        Returns:
            The updated product snapshot.

        Raises:
            CheckoutError: ``PRODUCT_NOT_FOUND`` for an unknown code,
                ``STOCK_VIOLATION`` if stock would become negative.  Stock
                is unchanged on failure.
        """
        return self.adjust_stock_many({code: delta})[0]

    def adjust_stock_many(self, deltas: Union[Mapping[str, int], Iterable[Tuple[str, int]]]) -> List[Product]:
        """Apply several stock deltas as one all-or-nothing group.

        Deltas for the same code are summed.  The locks of every affected
        product are taken in sorted code order, all resulting stock values
        are validated, and only then are they written.  If any product is
        unknown or would go negative nothing is changed.

        Returns:
            Updated snapshots, in sorted code order.
        """
        pairs = deltas.items() if isinstance(deltas, Mapping) else deltas
        combined: Dict[str, int] = {}
        for code, delta in pairs:
            if isinstance(delta, bool) or not isinstance(delta, int):
                raise TypeError(f"Stock delta for {code} must be an integer")
            combined[code] = combined.get(code, 0) + delta

        codes = sorted(combined)
        for code in codes:
            if code not in self._products:
                raise _not_found(code)

        with ExitStack() as stack:
            for code in codes:
                stack.enter_context(self._locks[code])

            violations = []
            for code in codes:
                current = self._products[code]
                if current.stock + combined[code] < 0:
                    violations.append(
                        {"code": code, "stock": current.stock, "delta": combined[code]}
                    )
            if violations:
                first = violations[0]
                raise CheckoutError(
                    ErrorKind.STOCK_VIOLATION,
                    f"Not enough stock for {first['code']}: "
                    f"on hand {first['stock']}, change {first['delta']}",
                    {"violations": violations},
                )

            updated = []
            for code in codes:
                delta = combined[code]
                product = replace(self._products[code], stock=self._products[code].stock + delta)
                self._products[code] = product
                updated.append(product)
                if delta:
                    STOCK_ADJUSTMENTS_TOTAL.inc(direction="decrease" if delta < 0 else "increase")

        logger.debug(
            "Stock adjusted",
            extra={"extra": {"deltas": {c: combined[c] for c in codes}}},
        )
        return updated


def _not_found(code: str) -> CheckoutError:
    return CheckoutError(
        ErrorKind.PRODUCT_NOT_FOUND,
        f"Product ID not found: {code}",
        {"code": code},
    )


DEFAULT_PRODUCTS = (
    ("P001", "Coca-Cola", "3.5", 100),
    ("P002", "Chips", "5.0", 80),
    ("P003", "Notebook", "15.9", 50),
)


def default_catalog() -> Catalog:
    """Return a catalog seeded with the demo products."""
    return Catalog(Product(code, name, Decimal(price), stock) for code, name, price, stock in DEFAULT_PRODUCTS)
