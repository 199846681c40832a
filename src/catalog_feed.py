"""Seed a catalog from a product feed file.

Feeds come in CSV, JSON or XML; an adapter is picked by file extension
and turns the text into product records, which are then registered in a
:class:`~catalog.Catalog`.  Every record needs ``code``, ``name``,
``price`` and ``stock``.  Invalid records are skipped with a warning so a
single bad row does not block the rest of the feed.

Usage example::

    from catalog_feed import load_catalog_feed
    catalog = load_catalog_feed("products.csv")
"""

from __future__ import annotations

import csv
import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Optional

from catalog import Catalog, Product

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("code", "name", "price", "stock")


class FeedAdapter:
    """Base class for feed adapters."""

    def parse(self, data: str) -> List[Dict[str, Any]]:  # pragma: no cover
        raise NotImplementedError


class CSVFeedAdapter(FeedAdapter):
    """CSV with a header row: code,name,price,stock."""

    def parse(self, data: str) -> List[Dict[str, Any]]:
        reader = csv.DictReader(data.splitlines())
        return [{(k or "").strip().lower(): v for k, v in row.items()} for row in reader]


class JSONFeedAdapter(FeedAdapter):
    """JSON array of objects with the CSV column names as keys."""

    def parse(self, data: str) -> List[Dict[str, Any]]:
        try:
            items = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON feed: {exc}") from exc
        if not isinstance(items, list):
            raise ValueError("JSON feed must be an array of product objects")
        records = []
        for row in items:
            if isinstance(row, dict):
                records.append({str(k).lower(): v for k, v in row.items()})
            else:
                logger.warning("Skipping non-object feed entry", extra={"extra": {"entry": repr(row)}})
        return records


class XMLFeedAdapter(FeedAdapter):
    """<products><product><code/><name/><price/><stock/></product></products>"""

    def parse(self, data: str) -> List[Dict[str, Any]]:
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise ValueError(f"Invalid XML feed: {exc}") from exc
        return [
            {field: node.findtext(field) for field in REQUIRED_FIELDS}
            for node in root.iter("product")
        ]


_ADAPTERS = {
    ".csv": CSVFeedAdapter,
    ".json": JSONFeedAdapter,
    ".xml": XMLFeedAdapter,
}


def select_adapter(file_path: str) -> FeedAdapter:
    """Select an adapter based on the file extension."""
    ext = Path(file_path).suffix.lower()
    try:
        return _ADAPTERS[ext]()
    except KeyError:
        raise ValueError(f"Unsupported catalog feed format: {ext or '(none)'}") from None


def record_to_product(record: Dict[str, Any]) -> Product:
    """Build a product from a parsed feed record.

    Raises:
        ValueError: If a field is missing or invalid.
    """
    missing = [f for f in REQUIRED_FIELDS if record.get(f) in (None, "")]
    if missing:
        raise ValueError(f"missing fields: {', '.join(missing)}")
    try:
        stock = int(str(record["stock"]).strip())
    except ValueError:
        raise ValueError(f"invalid stock: {record['stock']!r}") from None
    try:
        return Product(
            code=str(record["code"]).strip(),
            name=str(record["name"]).strip(),
            price=str(record["price"]),
            stock=stock,
        )
    except TypeError as exc:
        raise ValueError(str(exc)) from exc


def load_catalog_feed(file_path: str, catalog: Optional[Catalog] = None) -> Catalog:
    """Register every valid product in ``file_path`` into ``catalog``.

    Args:
        file_path: Path to a ``.csv``, ``.json`` or ``.xml`` feed.
        catalog: Catalog to extend; a new one is created when omitted.

    Returns:
        The populated catalog.

    Raises:
        ValueError: For an unsupported extension or unparseable feed.
        OSError: If the file cannot be read.
    """
    adapter = select_adapter(file_path)
    catalog = catalog if catalog is not None else Catalog()
    records = adapter.parse(Path(file_path).read_text(encoding="utf-8"))

    loaded = 0
    for idx, record in enumerate(records):
        try:
            catalog.register(record_to_product(record))
        except ValueError as exc:
            logger.warning(
                "Skipping feed record",
                extra={"extra": {"feed": str(file_path), "index": idx, "reason": str(exc)}},
            )
            continue
        loaded += 1

    logger.info(
        "Catalog feed loaded",
        extra={"extra": {"feed": str(file_path), "loaded": loaded, "skipped": len(records) - loaded}},
    )
    return catalog
