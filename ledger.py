"""
Stock Ledger: the authoritative stock count per product or variant.

Every mutation rewrites the whole product document in one versioned
replace, appends an immutable history entry with the resulting quantity,
and resynchronises the parent aggregates when a variant changed.
"""

import logging
from typing import Callable, Optional

import repository
from errors import InvalidQuantity, NotFoundError, ValidationError
from repository import Repository
from schemas import Product, ProductVariant, StockHistoryEntry, utcnow
from stock import StockLog, raw_stock, synchronize

logger = logging.getLogger(__name__)


def validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"Stock quantity must be an integer, got {quantity!r}")
    if quantity < 0:
        raise InvalidQuantity(f"Stock quantity cannot be negative: {quantity}")
    return quantity


def _validate_reason(reason) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("A reason is required for every stock change")
    return reason.strip()


class StockLedger:
    def __init__(self, products: Optional[Repository[Product]] = None):
        self.products = products or repository.products()

    def get(self, product_id: str) -> Product:
        return self.products.get(product_id)

    def stock_of(self, product_id: str, variant_id: Optional[str] = None) -> int:
        product = self.products.get(product_id)
        value = raw_stock(product, variant_id)
        if value is None:
            raise NotFoundError("Variant", variant_id)
        return value

    def history(self, product_id: str, variant_id: Optional[str] = None) -> StockLog:
        product = self.products.get(product_id)
        if variant_id is None:
            return StockLog(product.stock_history)
        variant = product.find_variant(variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        return StockLog(variant.stock_history)

    def set_stock(self, product_id: str, new_quantity: int, reason: str,
                  variant_id: Optional[str] = None, notes: Optional[str] = None) -> StockHistoryEntry:
        new_quantity = validate_quantity(new_quantity)
        return self._write_stock(product_id, lambda current: new_quantity, reason, variant_id, notes)

    def adjust_stock(self, product_id: str, delta: int, reason: str,
                     variant_id: Optional[str] = None, notes: Optional[str] = None) -> StockHistoryEntry:
        """Add (positive delta) or remove units; the result may not drop below zero."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidQuantity(f"Adjustment must be an integer, got {delta!r}")

        def target(current: int) -> int:
            if current + delta < 0:
                raise InvalidQuantity(f"Cannot remove {-delta} units, only {current} in stock")
            return current + delta

        return self._write_stock(product_id, target, reason, variant_id, notes)

    def _write_stock(self, product_id: str, target: Callable[[int], int], reason: str,
                     variant_id: Optional[str], notes: Optional[str]) -> StockHistoryEntry:
        # target maps the stock of the document mutate loaded to the new quantity
        reason = _validate_reason(reason)
        appended = []

        def change(product: Product) -> Product:
            if variant_id is None:
                if product.has_variants:
                    raise ValidationError("Stock of a variant product is the sum of its variants; set a variant instead")
                new_quantity = target(product.stock)
                log = StockLog(product.stock_history)
                appended.append(log.append(new_quantity, reason, notes))
                return synchronize(product.model_copy(update={
                    "stock": new_quantity,
                    "stock_history": log.entries,
                }))

            variants = list(product.variants)
            for index, variant in enumerate(variants):
                if variant.id == variant_id:
                    new_quantity = target(variant.stock)
                    log = StockLog(variant.stock_history)
                    appended.append(log.append(new_quantity, reason, notes))
                    variants[index] = variant.model_copy(update={
                        "stock": new_quantity,
                        "stock_history": log.entries,
                        "updated_at": utcnow(),
                    })
                    return synchronize(product.model_copy(update={"variants": variants}))
            raise NotFoundError("Variant", variant_id)

        product = self.products.mutate(product_id, change)
        entry = appended[-1]
        logger.info("Stock of %s%s set to %s (%s)", product_id,
                    f"/{variant_id}" if variant_id else "", entry.quantity, reason)
        logger.debug("Aggregate stock of %s is now %s", product_id, product.stock)
        return entry

    def add_variant(self, product_id: str, variant: ProductVariant, reason: str = "Initial stock") -> Product:
        validate_quantity(variant.stock)

        def change(product: Product) -> Product:
            if product.find_variant(variant.id) is not None:
                raise ValidationError(f"Variant id already used: {variant.id}")
            new_variant = variant.model_copy(update={"stock_history": StockLog.opening(variant.stock, reason).entries})
            variants = list(product.variants) if product.has_variants else []
            return synchronize(product.model_copy(update={
                "has_variants": True,
                "variants": variants + [new_variant],
            }))

        product = self.products.mutate(product_id, change)
        logger.info("Variant %s added to %s", variant.id, product_id)
        return product

    def update_variant(self, product_id: str, variant_id: str, **changes) -> Product:
        """Edit variant fields other than stock (use set_stock for stock)."""
        if "stock" in changes or "stock_history" in changes:
            raise ValidationError("Variant stock is changed through set_stock only")
        if changes.get("name") is not None and not str(changes["name"]).strip():
            raise ValidationError("Variant name is required")
        if changes.get("price") is not None and changes["price"] < 0:
            raise ValidationError("Variant price cannot be negative")

        def change(product: Product) -> Product:
            variants = list(product.variants)
            for index, variant in enumerate(variants):
                if variant.id == variant_id:
                    updates = {k: v for k, v in changes.items() if v is not None or k == "sale_price"}
                    updates["updated_at"] = utcnow()
                    variants[index] = variant.model_copy(update=updates)
                    return synchronize(product.model_copy(update={"variants": variants}))
            raise NotFoundError("Variant", variant_id)

        return self.products.mutate(product_id, change)

    def delete_variant(self, product_id: str, variant_id: str) -> Product:
        def change(product: Product) -> Product:
            if product.find_variant(variant_id) is None:
                raise NotFoundError("Variant", variant_id)
            remaining = [v for v in product.variants if v.id != variant_id]
            if remaining:
                return synchronize(product.model_copy(update={"variants": remaining}))
            # last variant gone: back to a simple product with nothing to sell
            log = StockLog(product.stock_history)
            log.append(0, "Last variant removed")
            return synchronize(product.model_copy(update={
                "stock_history": log.entries,
                "has_variants": False,
                "variants": [],
                "price": 0,
                "stock": 0,
                "sale_price": None,
            }))

        product = self.products.mutate(product_id, change)
        logger.info("Variant %s removed from %s (has_variants=%s)", variant_id, product_id, product.has_variants)
        return product
