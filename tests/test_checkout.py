# --- path bootstrap (keep this at the very top) ---
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
# --- end path bootstrap ---

import os
import unittest
from decimal import Decimal
from unittest import mock

from catalog import Catalog, Product, default_catalog
from checkout import Checkout, TransactionState
from errors import CheckoutError, ErrorKind, TransactionStateError
from metrics import (
    ITEMS_REJECTED_TOTAL,
    PENDING_LINE_ITEMS,
    RECEIPTS_TOTAL,
    REGISTRY,
    SETTLE_DURATION_SECONDS,
    SETTLE_ERROR_TOTAL,
)
from receipt import ReceiptFactory, ReceiptKind


def assert_invariants(test: unittest.TestCase, checkout: Checkout) -> None:
    """No duplicate codes, no zero quantities, no negative stock."""
    codes = [item.code for item in checkout.current_items()]
    test.assertEqual(len(codes), len(set(codes)))
    for item in checkout.current_items():
        test.assertNotEqual(item.quantity, 0)
    for product in checkout.catalog.list_products():
        test.assertGreaterEqual(product.stock, 0)


class TestScenarios(unittest.TestCase):
    """The register walkthrough: sale, short payment, oversell, return."""

    def setUp(self):
        REGISTRY.reset()
        self.catalog = Catalog([Product("P001", "Coca-Cola", Decimal("3.5"), 100)])
        self.checkout = Checkout(self.catalog, register_id="test-register")

    def stock(self):
        return self.catalog.lookup("P001").stock

    def test_register_walkthrough(self):
        # A: sale settles and decrements stock
        self.checkout.add_item("P001", 2)
        self.assertEqual(self.checkout.total_amount(), Decimal("7.0"))
        receipt = self.checkout.settle_sale(7.0)
        self.assertEqual(receipt.kind, ReceiptKind.SALE)
        self.assertEqual(receipt.total, Decimal("7.0"))
        self.assertEqual(receipt.change, Decimal("0"))
        self.assertEqual(self.stock(), 98)
        self.assertTrue(self.checkout.is_empty())

        # B: short payment leaves stock and pending items alone
        self.checkout.add_item("P001", 2)
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.settle_sale(5.0)
        self.assertEqual(ctx.exception.kind, ErrorKind.INSUFFICIENT_PAYMENT)
        self.assertEqual(self.stock(), 98)
        self.assertEqual(self.checkout.pending_quantity("P001"), 2)
        self.checkout.cancel()

        # C: oversell is rejected, nothing added
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.add_item("P001", 150)
        self.assertEqual(ctx.exception.kind, ErrorKind.INSUFFICIENT_STOCK)
        self.assertTrue(self.checkout.is_empty())

        # D: return settles and increments stock
        self.checkout.add_item("P001", -1)
        self.assertEqual(self.checkout.total_amount(), Decimal("-3.5"))
        receipt = self.checkout.settle_return()
        self.assertEqual(receipt.kind, ReceiptKind.RETURN)
        self.assertEqual(receipt.total, Decimal("-3.5"))
        self.assertEqual(receipt.refund_amount, Decimal("3.5"))
        self.assertEqual(self.stock(), 99)

    def test_second_add_checks_remaining_stock(self):
        self.catalog.adjust_stock("P001", -2)  # stock 98
        self.checkout.add_item("P001", 50)
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.add_item("P001", 50)
        self.assertEqual(ctx.exception.kind, ErrorKind.INSUFFICIENT_STOCK)
        self.assertEqual(ctx.exception.details["available"], 48)
        self.assertEqual(self.checkout.pending_quantity("P001"), 50)
        # the remaining 48 can still be added
        self.checkout.add_item("P001", 48)
        self.assertEqual(self.checkout.pending_quantity("P001"), 98)

    def test_insufficient_payment_keeps_building_state(self):
        self.checkout.add_item("P001", 1)
        with self.assertRaises(CheckoutError):
            self.checkout.settle_sale("1.00")
        self.assertEqual(self.checkout.state, TransactionState.BUILDING)


class TestLineItems(unittest.TestCase):

    def setUp(self):
        REGISTRY.reset()
        self.catalog = default_catalog()
        self.checkout = Checkout(self.catalog, register_id="test-register")

    def test_state_transitions(self):
        self.assertEqual(self.checkout.state, TransactionState.EMPTY)
        self.checkout.add_item("P002", 1)
        self.assertEqual(self.checkout.state, TransactionState.BUILDING)
        self.checkout.cancel()
        self.assertEqual(self.checkout.state, TransactionState.EMPTY)

    def test_merge_keeps_one_line_per_code_in_first_seen_order(self):
        self.checkout.add_item("P002", 1)
        self.checkout.add_item("P001", 2)
        self.checkout.add_item("P002", 3)
        items = self.checkout.current_items()
        self.assertEqual([i.code for i in items], ["P002", "P001"])
        self.assertEqual([i.quantity for i in items], [4, 2])
        assert_invariants(self, self.checkout)

    def test_add_then_negate_nets_out(self):
        self.checkout.add_item("P001", 3)
        self.assertIsNone(self.checkout.add_item("P001", -3))
        self.assertEqual(self.checkout.pending_quantity("P001"), 0)
        self.assertTrue(self.checkout.is_empty())
        assert_invariants(self, self.checkout)

    def test_netted_code_reinserted_at_end(self):
        self.checkout.add_item("P001", 1)
        self.checkout.add_item("P002", 1)
        self.checkout.add_item("P001", -1)
        self.checkout.add_item("P001", 2)
        self.assertEqual([i.code for i in self.checkout.current_items()], ["P002", "P001"])

    def test_return_has_no_stock_ceiling(self):
        item = self.checkout.add_item("P003", -500)
        self.assertEqual(item.quantity, -500)

    def test_pending_return_does_not_raise_sale_ceiling(self):
        # P003 stock 50: a pending return of 10 does not allow selling 55
        self.checkout.add_item("P003", -10)
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.add_item("P003", 55)
        self.assertEqual(ctx.exception.kind, ErrorKind.INSUFFICIENT_STOCK)
        self.assertEqual(self.checkout.pending_quantity("P003"), -10)
        self.checkout.add_item("P003", 50)
        self.assertEqual(self.checkout.pending_quantity("P003"), 40)

    def test_unknown_product(self):
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.add_item("P999", 1)
        self.assertEqual(ctx.exception.kind, ErrorKind.PRODUCT_NOT_FOUND)
        self.assertEqual(ITEMS_REJECTED_TOTAL.value(type="product_not_found"), 1)

    def test_zero_and_non_integer_quantities_are_misuse(self):
        with self.assertRaises(ValueError):
            self.checkout.add_item("P001", 0)
        with self.assertRaises(TypeError):
            self.checkout.add_item("P001", 1.5)
        with self.assertRaises(TypeError):
            self.checkout.add_item("P001", True)
        self.assertTrue(self.checkout.is_empty())

    def test_current_items_is_a_snapshot(self):
        self.checkout.add_item("P001", 1)
        items = self.checkout.current_items()
        items.clear()
        self.assertEqual(len(self.checkout.current_items()), 1)

    def test_remove_item(self):
        self.checkout.add_item("P001", 1)
        self.checkout.add_item("P002", 1)
        removed = self.checkout.remove_item("P001")
        self.assertEqual(removed.code, "P001")
        self.assertEqual([i.code for i in self.checkout.current_items()], ["P002"])
        with self.assertRaises(TransactionStateError):
            self.checkout.remove_item("P001")

    def test_cancel_is_idempotent_and_never_touches_stock(self):
        self.checkout.add_item("P001", 5)
        self.checkout.cancel()
        self.checkout.cancel()
        self.assertTrue(self.checkout.is_empty())
        self.assertEqual(self.catalog.lookup("P001").stock, 100)

    def test_pending_gauge_tracks_lines(self):
        self.checkout.add_item("P001", 1)
        self.checkout.add_item("P002", 1)
        self.assertEqual(PENDING_LINE_ITEMS.value(register="test-register"), 2)
        self.checkout.cancel()
        self.assertEqual(PENDING_LINE_ITEMS.value(register="test-register"), 0)

    def test_default_register_ids_are_distinct(self):
        with mock.patch.dict(os.environ):
            os.environ.pop("POS_REGISTER_ID", None)
            first = Checkout(self.catalog)
            second = Checkout(self.catalog)
        self.assertNotEqual(first.register_id, second.register_id)
        first.add_item("P001", 1)
        second.add_item("P002", 1)
        second.add_item("P003", 1)
        first.cancel()
        self.assertEqual(PENDING_LINE_ITEMS.value(register=first.register_id), 0)
        self.assertEqual(PENDING_LINE_ITEMS.value(register=second.register_id), 2)

    def test_register_id_from_environment(self):
        with mock.patch.dict(os.environ, {"POS_REGISTER_ID": "till-7"}):
            checkout = Checkout(self.catalog)
        self.assertEqual(checkout.register_id, "till-7")


class TestSettle(unittest.TestCase):

    def setUp(self):
        REGISTRY.reset()
        self.catalog = default_catalog()
        self.checkout = Checkout(self.catalog, register_id="test-register")

    def test_mixed_cart_sale_applies_both_legs(self):
        self.checkout.add_item("P001", 2)   # +7.0
        self.checkout.add_item("P002", -1)  # -5.0
        self.assertEqual(self.checkout.total_amount(), Decimal("2.0"))
        receipt = self.checkout.settle_sale(10)
        self.assertEqual(receipt.change, Decimal("8.0"))
        self.assertEqual(self.catalog.lookup("P001").stock, 98)
        self.assertEqual(self.catalog.lookup("P002").stock, 81)

    def test_settle_return_rejects_non_negative_total(self):
        self.checkout.add_item("P001", 2)
        self.checkout.add_item("P002", -1)
        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.settle_return()
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_RETURN)
        self.assertEqual(len(self.checkout.current_items()), 2)
        self.assertEqual(self.catalog.lookup("P001").stock, 100)
        self.assertEqual(SETTLE_ERROR_TOTAL.value(type="invalid_return"), 1)

    def test_settle_empty_transaction_is_misuse(self):
        with self.assertRaises(TransactionStateError):
            self.checkout.settle_sale(0)
        with self.assertRaises(TransactionStateError):
            self.checkout.settle_return()

    def test_negative_tender_is_misuse(self):
        self.checkout.add_item("P001", 1)
        with self.assertRaises(ValueError):
            self.checkout.settle_sale(-1)

    def test_stock_drop_after_add_rolls_back_whole_group(self):
        self.checkout.add_item("P001", 2)
        self.checkout.add_item("P002", 3)
        self.checkout.add_item("P003", -1)
        # another register sells most of P002 before we settle
        self.catalog.adjust_stock("P002", -79)

        with self.assertRaises(CheckoutError) as ctx:
            self.checkout.settle_sale(100)
        self.assertEqual(ctx.exception.kind, ErrorKind.STOCK_VIOLATION)
        self.assertEqual(self.catalog.lookup("P001").stock, 100)
        self.assertEqual(self.catalog.lookup("P002").stock, 1)
        self.assertEqual(self.catalog.lookup("P003").stock, 50)
        self.assertEqual([i.code for i in self.checkout.current_items()], ["P001", "P002", "P003"])
        self.assertEqual(SETTLE_ERROR_TOTAL.value(type="stock_violation"), 1)

    def test_two_registers_cannot_jointly_oversell(self):
        first = Checkout(self.catalog, register_id="r1")
        second = Checkout(self.catalog, register_id="r2")
        first.add_item("P003", 30)
        second.add_item("P003", 30)
        first.settle_sale(1000)
        with self.assertRaises(CheckoutError) as ctx:
            second.settle_sale(1000)
        self.assertEqual(ctx.exception.kind, ErrorKind.STOCK_VIOLATION)
        self.assertEqual(self.catalog.lookup("P003").stock, 20)

    def test_out_of_range_tender_touches_nothing(self):
        self.checkout.add_item("P001", 2)
        with self.assertRaises(ValueError):
            self.checkout.settle_sale("1e1000000")
        self.assertEqual(self.catalog.lookup("P001").stock, 100)
        self.assertEqual(self.checkout.pending_quantity("P001"), 2)
        self.checkout.settle_sale(7)
        self.assertEqual(self.catalog.lookup("P001").stock, 98)

    def test_receipt_failure_leaves_stock_and_items(self):
        def broken_clock():
            raise RuntimeError("clock unavailable")

        checkout = Checkout(self.catalog, ReceiptFactory(clock=broken_clock), register_id="test-register")
        checkout.add_item("P001", 2)
        checkout.add_item("P002", -1)
        with self.assertRaises(RuntimeError):
            checkout.settle_sale(10)
        self.assertEqual(self.catalog.lookup("P001").stock, 100)
        self.assertEqual(self.catalog.lookup("P002").stock, 80)
        self.assertEqual(len(checkout.current_items()), 2)

    def test_receipt_lines_keep_sale_time_name_and_price(self):
        self.checkout.add_item("P001", 2)
        receipt = self.checkout.settle_sale(10)
        line = receipt.items[0]
        self.assertEqual((line.code, line.name, line.unit_price), ("P001", "Coca-Cola", Decimal("3.5")))
        self.assertFalse(hasattr(line, "stock"))
        self.assertFalse(hasattr(line, "product"))

    def test_receipt_is_detached_from_transaction(self):
        self.checkout.add_item("P001", 1)
        receipt = self.checkout.settle_sale(5)
        self.checkout.add_item("P001", 4)
        self.assertEqual(len(receipt.items), 1)
        self.assertEqual(receipt.items[0].quantity, 1)

    def test_receipts_get_unique_ids(self):
        ids = set()
        for _ in range(20):
            self.checkout.add_item("P002", 1)
            ids.add(self.checkout.settle_sale(5).receipt_id)
        self.assertEqual(len(ids), 20)

    def test_metrics_recorded(self):
        self.checkout.add_item("P001", 1)
        self.checkout.settle_sale(5)
        self.checkout.add_item("P001", -1)
        self.checkout.settle_return()
        self.assertEqual(RECEIPTS_TOTAL.value(kind="SALE"), 1)
        self.assertEqual(RECEIPTS_TOTAL.value(kind="RETURN"), 1)
        self.assertEqual(SETTLE_DURATION_SECONDS.count(kind="SALE"), 1)

    def test_settle_logs_receipt_id(self):
        self.checkout.add_item("P001", 1)
        with self.assertLogs("checkout", level="INFO") as logs:
            receipt = self.checkout.settle_sale(5)
        self.assertIn("Transaction settled", logs.output[0])
        self.assertEqual(logs.records[0].request_id, receipt.receipt_id)


if __name__ == "__main__":
    unittest.main(verbosity=2)
