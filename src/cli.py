"""
Command-line register for the checkout engine.

This script wires a :class:`~checkout.Checkout` into an interactive menu
loop.  It prompts for input, calls the checkout and catalog, and prints
results and receipts.  All business rules live in the core modules; the
loop only parses input and reports errors.
"""

import os
import sys
from typing import Iterable, Optional

from catalog import Catalog, default_catalog
from catalog_feed import load_catalog_feed
from checkout import Checkout
from errors import CheckoutError, TransactionStateError
from metrics import generate_metrics_text
from receipt import LineItem, Receipt, ReceiptKind
import logging_config

RULE = "-" * 38
DOUBLE_RULE = "=" * 38


def format_items(items: Iterable[LineItem]) -> str:
    """Render line items as a fixed-width table."""
    lines = [f"{'ID':<10} {'Name':<12} {'Price':>7} {'Qty':>5} {'Subtotal':>9}"]
    for item in items:
        lines.append(
            f"{item.code:<10} {item.name[:12]:<12} {item.unit_price:>7.2f} "
            f"{item.quantity:>5} {item.line_total:>9.2f}"
        )
    return "\n".join(lines)


def format_receipt(receipt: Receipt) -> str:
    """Render a receipt as printable text."""
    kind_label = "Sale" if receipt.kind is ReceiptKind.SALE else "Return"
    lines = [
        DOUBLE_RULE,
        "        Supermarket POS - Receipt",
        DOUBLE_RULE,
        f"Receipt ID: {receipt.receipt_id}",
        f"Type: {kind_label}",
        f"Time: {receipt.timestamp:%Y-%m-%d %H:%M:%S}",
        RULE,
        format_items(receipt.items),
        RULE,
        f"Total: {receipt.total:.2f}",
    ]
    if receipt.kind is ReceiptKind.SALE and receipt.tendered is not None:
        lines.append(f"Paid: {receipt.tendered:.2f}")
        lines.append(f"Change: {receipt.change:.2f}")
    elif receipt.kind is ReceiptKind.RETURN:
        lines.append(f"Refund: {receipt.refund_amount:.2f}")
    lines.append(DOUBLE_RULE)
    lines.append("Thank you for shopping!")
    return "\n".join(lines)


def build_catalog(feed_path: Optional[str] = None) -> Catalog:
    """Load the catalog from ``feed_path`` / ``POS_CATALOG_FEED`` or the demo set."""
    feed_path = feed_path or os.environ.get("POS_CATALOG_FEED")
    if feed_path:
        return load_catalog_feed(feed_path)
    return default_catalog()


def _read_positive_int(prompt: str) -> int:
    value = int(input(prompt).strip())
    if value <= 0:
        raise ValueError("Quantity must be a positive integer")
    return value


def interactive_cli(checkout: Checkout) -> None:
    """Run the register menu until the user exits."""

    def print_menu() -> None:
        print("\n-- Checkout Register --")
        print("1. List Products")
        print("2. Add Sale Item")
        print("3. Add Return Item")
        print("4. View Transaction")
        print("5. Pay (Sale)")
        print("6. Process Return")
        print("7. Cancel Transaction")
        print("8. Show Metrics")
        print("0. Exit")

    while True:
        print_menu()
        choice = input("Select an option: ").strip()
        try:
            if choice == "1":
                products = checkout.catalog.list_products()
                if not products:
                    print("No products available.")
                for p in products:
                    print(f"{p.code}. {p.name} - {p.price:.2f} (Stock: {p.stock})")
            elif choice in ("2", "3"):
                code = input("Enter Product ID: ").strip()
                qty = _read_positive_int("Enter quantity: ")
                item = checkout.add_item(code, qty if choice == "2" else -qty)
                if item is None:
                    print(f"{code} netted out of the transaction.")
                else:
                    print(f"{item.name}: {item.quantity} pending")
                print(f"Total: {checkout.total_amount():.2f}")
            elif choice == "4":
                items = checkout.current_items()
                if not items:
                    print("Transaction is empty.")
                else:
                    print(format_items(items))
                    print(f"Total: {checkout.total_amount():.2f}")
            elif choice == "5":
                print(f"Amount due: {checkout.total_amount():.2f}")
                cash = input("Cash tendered: ").strip()
                receipt = checkout.settle_sale(cash)
                print(format_receipt(receipt))
            elif choice == "6":
                print(f"Refund due: {abs(checkout.total_amount()):.2f}")
                receipt = checkout.settle_return()
                print(format_receipt(receipt))
            elif choice == "7":
                checkout.cancel()
                print("Transaction cancelled.")
            elif choice == "8":
                print(generate_metrics_text().decode("utf-8"))
            elif choice == "0":
                print("Exiting register.")
                break
            else:
                print("Invalid option. Please try again.")
        except CheckoutError as exc:
            print(f"Error: {exc.message}")
        except TransactionStateError as exc:
            print(f"Not allowed: {exc}")
        except ValueError as exc:
            print(f"Invalid input: {exc}")


def main() -> int:
    logging_config.configure_logging()
    checkout = Checkout(build_catalog())
    try:
        interactive_cli(checkout)
    except (KeyboardInterrupt, EOFError):
        print("\nInterrupted by user. Exiting.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
