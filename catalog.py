"""
Catalog: priority ordering, stock status, product and category management.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

import config
import repository
from errors import ValidationError
from repository import Repository
from schemas import Category, Product, ProductVariant
from stock import StockLog, synchronize

logger = logging.getLogger(__name__)

PRIORITY_STANDARD = 0
PRIORITY_POPULAR = 10
PRIORITY_TOP = 100
PRIORITY_SUPER_TOP = 1000
PRIORITY_URGENT = 9999

PRIORITY_PRESETS = {
    PRIORITY_STANDARD: "Standard",
    PRIORITY_POPULAR: "Popular",
    PRIORITY_TOP: "TOP",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def validate_priority(priority) -> bool:
    return (isinstance(priority, int) and not isinstance(priority, bool)
            and PRIORITY_STANDARD <= priority <= PRIORITY_URGENT)


def priority_label(priority: int) -> str:
    if priority in PRIORITY_PRESETS:
        return PRIORITY_PRESETS[priority]
    if 0 < priority < PRIORITY_POPULAR:
        return f"Low ({priority})"
    if PRIORITY_POPULAR <= priority < PRIORITY_TOP:
        return f"Medium ({priority})"
    if priority >= PRIORITY_TOP:
        return f"High ({priority})"
    return f"Custom ({priority})"


def effective_price(price: float, sale_price: Optional[float]) -> float:
    """Sale price wins only when it is set and lower than the base price."""
    if sale_price and sale_price < price:
        return sale_price
    return price


def stock_status(product: Product) -> str:
    if product.stock <= 0:
        return "out_of_stock"
    if product.stock <= config.LOW_STOCK_THRESHOLD:
        return "low_stock"
    return "in_stock"


def _sort_key(product: Product):
    priority = product.priority or 0
    demoted = product.stock <= 0 and priority < PRIORITY_TOP
    created = product.created_at or _EPOCH
    return (demoted, -priority, -(created - _EPOCH).total_seconds())


def sort_products_by_priority(products: List[Product]) -> List[Product]:
    """
    Display order of the catalog.

    Sold-out products drop below everything in stock unless their priority
    is TOP (100) or more; then higher priority first; then newest first.
    Stable, so products with identical keys keep their input order.
    """
    return sorted(products, key=_sort_key)


class ProductCatalog:
    def __init__(self, products: Optional[Repository[Product]] = None):
        self.products = products or repository.products()

    def create(self, product: Product, reason: str = "Initial stock") -> Product:
        if not product.name.strip():
            raise ValidationError("Product name is required")
        if not validate_priority(product.priority):
            raise ValidationError("Priority must be an integer between 0 and 9999")
        updates: Dict = {"version": 0}
        if product.has_variants:
            if not product.variants:
                raise ValidationError("A variant product needs at least one variant")
            ids = [v.id for v in product.variants]
            if len(set(ids)) != len(ids):
                raise ValidationError("Variant ids must be unique within a product")
            updates["variants"] = [self._with_initial_entry(v, reason) for v in product.variants]
            updates["stock_history"] = []
        else:
            # incoming history is ignored; the log opens at the created stock
            updates["stock_history"] = StockLog.opening(product.stock, reason).entries
            updates["variants"] = []
        created = self.products.create(synchronize(product.model_copy(update=updates)))
        logger.info("Product %s created (%s)", created.id, created.name)
        return created

    @staticmethod
    def _with_initial_entry(variant: ProductVariant, reason: str) -> ProductVariant:
        return variant.model_copy(update={"stock_history": StockLog.opening(variant.stock, reason).entries})

    def update(self, product_id: str, changes: Dict) -> Product:
        """Edit descriptive fields. Stock and variants go through the ledger."""
        forbidden = {"stock", "total_stock", "stock_history", "variants", "has_variants", "version", "id"}
        touched = forbidden.intersection(changes)
        if touched:
            raise ValidationError(f"Fields cannot be edited here: {', '.join(sorted(touched))}")
        cleared = sorted(k for k, v in changes.items() if v is None and k not in ("sale_price", "original_price"))
        if cleared:
            raise ValidationError(f"Fields cannot be empty: {', '.join(cleared)}")
        if "priority" in changes and not validate_priority(changes["priority"]):
            raise ValidationError("Priority must be an integer between 0 and 9999")

        def change(product: Product) -> Product:
            return synchronize(product.model_copy(update=changes))

        return self.products.mutate(product_id, change)

    def toggle_status(self, product_id: str) -> Product:
        return self.products.mutate(
            product_id, lambda p: p.model_copy(update={"is_active": not p.is_active}))

    def delete(self, product_id: str) -> None:
        self.products.delete(product_id)
        logger.info("Product %s deleted", product_id)

    def get(self, product_id: str) -> Product:
        return self.products.get(product_id)

    def list(self, active_only: bool = False, category: Optional[str] = None,
             limit: Optional[int] = None) -> List[Product]:
        query: Dict = {}
        if active_only:
            query["isActive"] = True
        if category:
            query["category"] = category
        # limit is applied after the display sort
        fetched = self.products.list(query, sort=[("createdAt", -1)])
        ordered = sort_products_by_priority(fetched)
        return ordered[:limit] if limit is not None else ordered

    def alerts(self) -> Dict[str, List[Product]]:
        """Active products that are sold out or running low."""
        out: Dict[str, List[Product]] = {"out_of_stock": [], "low_stock": []}
        for product in self.products.list({"isActive": True}):
            status = stock_status(product)
            if status in out:
                out[status].append(product)
        return out


def slugify(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    return re.sub(r"[\s_]+", "-", text).strip("-")


class CategoryStore:
    def __init__(self, categories: Optional[Repository[Category]] = None):
        self.categories = categories or repository.categories()

    def create(self, category: Category) -> Category:
        if not category.name.strip():
            raise ValidationError("Category name is required")
        slug = category.slug or slugify(category.name)
        if self.categories.find_one({"slug": slug}) is not None:
            raise ValidationError(f"Slug already exists: {slug}")
        return self.categories.create(category.model_copy(update={"slug": slug, "version": 0}))

    def list(self, active_only: bool = False) -> List[Category]:
        query = {"isActive": True} if active_only else {}
        return self.categories.list(query, sort=[("priority", 1), ("createdAt", -1)])

    def update(self, category_id: str, changes: Dict) -> Category:
        changes = {k: v for k, v in changes.items() if v is not None}
        if "name" in changes and not str(changes["name"]).strip():
            raise ValidationError("Category name is required")
        return self.categories.mutate(category_id, lambda c: c.model_copy(update=changes))

    def delete(self, category_id: str) -> None:
        self.categories.delete(category_id)
