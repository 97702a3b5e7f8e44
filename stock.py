"""
Pure stock arithmetic: the simple/variant layout of a product, the single
place its aggregates are derived, the stock event log, and the
available-to-promise calculation used while composing manual orders.

Nothing in here touches the database.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from schemas import Product, ProductVariant, StockHistoryEntry, utcnow


@dataclass(frozen=True)
class SimpleStock:
    price: float
    stock: int


@dataclass(frozen=True)
class VariantStock:
    variants: Tuple[ProductVariant, ...]


StockLayout = Union[SimpleStock, VariantStock]


@dataclass(frozen=True)
class Aggregates:
    price: float
    min_price: float
    max_price: float
    stock: int


def layout_of(product: Product) -> StockLayout:
    if product.has_variants:
        return VariantStock(tuple(product.variants))
    return SimpleStock(price=product.price, stock=product.stock)


def derive_aggregates(layout: StockLayout) -> Aggregates:
    if isinstance(layout, SimpleStock):
        return Aggregates(layout.price, layout.price, layout.price, layout.stock)
    if not layout.variants:
        return Aggregates(0, 0, 0, 0)
    prices = [v.price for v in layout.variants]
    return Aggregates(
        price=min(prices),
        min_price=min(prices),
        max_price=max(prices),
        stock=sum(v.stock for v in layout.variants),
    )


def synchronize(product: Product) -> Product:
    """Return a copy of ``product`` whose price/stock fields match its layout."""
    agg = derive_aggregates(layout_of(product))
    return product.model_copy(update={
        "price": agg.price,
        "min_price": agg.min_price,
        "max_price": agg.max_price,
        "stock": agg.stock,
        "total_stock": agg.stock,
    })


class StockLog:
    """Append-only stock history. Entries are kept in append order."""

    def __init__(self, entries: Iterable[StockHistoryEntry] = ()):
        self._entries: List[StockHistoryEntry] = list(entries)

    @classmethod
    def opening(cls, quantity: int, reason: str) -> "StockLog":
        """A fresh log whose only entry is the opening quantity."""
        log = cls()
        log.append(quantity, reason)
        return log

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> List[StockHistoryEntry]:
        return list(self._entries)

    def append(self, quantity: int, reason: str, notes: Optional[str] = None,
               timestamp: Optional[datetime] = None) -> StockHistoryEntry:
        entry = StockHistoryEntry(
            timestamp=timestamp or utcnow(),
            quantity=quantity,
            reason=reason,
            notes=notes,
        )
        self._entries.append(entry)
        return entry

    def replay(self, initial: int = 0) -> int:
        """Stock after applying every entry; entries carry absolute values."""
        current = initial
        for entry in self._entries:
            current = entry.quantity
        return current

    def at(self, when: datetime, current: int) -> int:
        """
        Stock as of ``when``: the quantity of the latest entry at or before
        that moment, or ``current`` when no entry qualifies.
        """
        relevant = [e for e in self._entries if e.timestamp <= when]
        if not relevant:
            return current
        return max(relevant, key=lambda e: e.timestamp).quantity


def raw_stock(product: Product, variant_id: Optional[str] = None) -> Optional[int]:
    """Ledger stock for one SKU, or None when the variant does not exist."""
    if variant_id is None:
        return product.stock
    variant = product.find_variant(variant_id)
    return variant.stock if variant else None


def available_stock(raw: int, product_id: str, variant_id: Optional[str],
                    draft_lines: Sequence, exclude_index: Optional[int] = None) -> int:
    """
    Stock left for one SKU after the quantities claimed by the other draft
    lines. A line claims stock when both its product id and its variant id
    (or lack of one) match; the line at ``exclude_index`` is the one being
    edited and does not count against itself.
    """
    if raw <= 0:
        return 0
    claimed = 0
    for index, line in enumerate(draft_lines):
        if index == exclude_index:
            continue
        if not line.product_id or line.product_id != product_id:
            continue
        if (line.variant_id or None) != (variant_id or None):
            continue
        claimed += max(0, line.quantity)
    return max(0, raw - claimed)
