"""
Orders: totals, the manual order composer used by admins, website
checkout and the order status lifecycle.
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import config
import repository
from catalog import effective_price
from errors import (
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    RemoteWriteError,
    ShopError,
    ValidationError,
)
from ledger import StockLedger
from repository import Repository
from schemas import (
    CreateManualOrderRequest,
    CreateOrderRequest,
    CustomerInfo,
    ManualOrderItem,
    Order,
    OrderItem,
    Product,
    utcnow,
)
from stock import available_stock, raw_stock

logger = logging.getLogger(__name__)

# allowed next states; delivered and cancelled are terminal
TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}

_PHONE_RE = re.compile(r"^\d{9}$")
_TOKEN_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping_cost: float
    total: float


def shipping_cost_for(city: str, home_city: str = None, flat_fee: float = None) -> float:
    home_city = config.HOME_CITY if home_city is None else home_city
    flat_fee = config.SHIPPING_FEE if flat_fee is None else flat_fee
    return 0 if (city or "").strip() == home_city else flat_fee


def compute_totals(lines: Sequence, city: str, home_city: str = None, flat_fee: float = None) -> OrderTotals:
    """
    Subtotal over already resolved unit prices (``line.price``), city based
    shipping, and ``total == subtotal + shipping_cost``.
    """
    subtotal = round(sum(line.price * line.quantity for line in lines), 2)
    shipping = shipping_cost_for(city, home_city, flat_fee)
    return OrderTotals(subtotal=subtotal, shipping_cost=shipping, total=subtotal + shipping)


def generate_order_number() -> str:
    now = utcnow()
    millis = str(int(now.timestamp() * 1000))
    return f"LS-{now.year}-{millis[-6:]}"


def generate_access_token(length: int = 32) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def _display_name(product: Product, variant_id: Optional[str]) -> str:
    if variant_id:
        variant = product.find_variant(variant_id)
        if variant is not None:
            return f"{product.name} ({variant.name})"
    return product.name


def _unit_price(product: Product, variant_id: Optional[str]) -> float:
    if variant_id:
        variant = product.find_variant(variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        return effective_price(variant.price, variant.sale_price)
    return effective_price(product.price, product.sale_price)


class ManualOrderComposer:
    """Admin workflow: build a multi-line order without double-allocating stock."""

    def __init__(self, ledger: Optional[StockLedger] = None, orders: Optional[Repository[Order]] = None):
        self.ledger = ledger or StockLedger()
        self.orders = orders or repository.orders()

    def available_stock(self, product_id: str, variant_id: Optional[str],
                        draft_lines: Sequence[ManualOrderItem], exclude_index: Optional[int] = None) -> int:
        raw = self.ledger.stock_of(product_id, variant_id)
        return available_stock(raw, product_id, variant_id, draft_lines, exclude_index)

    def line_for(self, product_id: str, variant_id: Optional[str] = None, quantity: int = 1) -> ManualOrderItem:
        product = self.ledger.get(product_id)
        return ManualOrderItem(
            product_id=product_id,
            variant_id=variant_id,
            name=_display_name(product, variant_id),
            price=_unit_price(product, variant_id),
            quantity=quantity,
        )

    def validate(self, request: CreateManualOrderRequest) -> None:
        customer = request.customer_info
        if not customer.first_name.strip() or not customer.phone.strip():
            raise ValidationError("Customer first name and phone are required")
        if not _PHONE_RE.match(customer.phone.strip()):
            raise ValidationError("Phone number must have exactly 9 digits")
        if not request.items:
            raise ValidationError("An order needs at least one line")
        for index, line in enumerate(request.items):
            if not line.name.strip():
                raise ValidationError(f"Line {index + 1}: name is required")
            if line.price < 0:
                raise ValidationError(f"Line {index + 1}: price cannot be negative")
            if line.quantity < 1:
                raise ValidationError(f"Line {index + 1}: quantity must be at least 1")

        products: Dict[str, Product] = {}
        for index, line in enumerate(request.items):
            if not line.product_id:
                continue
            if line.product_id not in products:
                products[line.product_id] = self.ledger.get(line.product_id)
            raw = raw_stock(products[line.product_id], line.variant_id)
            if raw is None:
                raise NotFoundError("Variant", line.variant_id)
            available = available_stock(raw, line.product_id, line.variant_id, request.items, index)
            if line.quantity > available:
                raise InsufficientStock(
                    f"Insufficient stock for {line.name}: requested {line.quantity}, available {available}",
                    requested=line.quantity, available=available)

    def submit(self, request: CreateManualOrderRequest) -> Order:
        """
        Validate and store the order as one record. The stock ledger is not
        touched; manual orders do not reserve inventory.
        """
        self.validate(request)
        items = [
            OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                name=line.name.strip(),
                price=line.price,
                quantity=line.quantity,
                total=round(line.price * line.quantity, 2),
            )
            for line in request.items
        ]
        totals = compute_totals(items, request.delivery_info.city)
        shipping = totals.shipping_cost if request.shipping_cost is None else request.shipping_cost
        paid = request.status == "delivered" or request.payment_method == "cash"
        now = utcnow()
        order = Order(
            order_number=generate_order_number(),
            access_token=generate_access_token(),
            source=request.source,
            customer_info=CustomerInfo(
                first_name=request.customer_info.first_name.strip(),
                last_name=request.customer_info.last_name.strip(),
                phone=request.customer_info.phone.strip(),
                email=(request.customer_info.email or "").strip(),
                is_guest=True,
            ),
            delivery_info=request.delivery_info,
            items=items,
            subtotal=totals.subtotal,
            shipping_cost=shipping,
            total_amount=totals.subtotal + shipping,
            order_status=request.status,
            payment_method=request.payment_method,
            payment_status="paid" if paid else "pending",
            paid_at=now if paid else None,
            delivered_at=now if request.status == "delivered" else None,
            admin_notes="Manually added via Admin Panel",
        )
        created = self.orders.create(order)
        logger.info("Manual order %s created (%s lines, total %.2f)",
                    created.order_number, len(items), created.total_amount)
        return created


class OrderService:
    def __init__(self, ledger: Optional[StockLedger] = None, orders: Optional[Repository[Order]] = None):
        self.ledger = ledger or StockLedger()
        self.orders = orders or repository.orders()

    def place_order(self, request: CreateOrderRequest) -> Order:
        """
        Website checkout: prices come from the catalog, stock is deducted
        through the ledger before the order is written and given back if
        the write fails.
        """
        if not request.items:
            raise ValidationError("No items in order")

        products: Dict[str, Product] = {}
        items: List[OrderItem] = []
        wanted: Dict[Tuple[str, Optional[str]], int] = {}
        for line in request.items:
            if line.product_id not in products:
                products[line.product_id] = self.ledger.get(line.product_id)
            product = products[line.product_id]
            if not product.is_active:
                raise ValidationError(f"Product is not available: {product.name}")
            price = _unit_price(product, line.variant_id)
            items.append(OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                name=_display_name(product, line.variant_id),
                price=price,
                quantity=line.quantity,
                total=round(price * line.quantity, 2),
            ))
            key = (line.product_id, line.variant_id)
            wanted[key] = wanted.get(key, 0) + line.quantity

        for (product_id, variant_id), quantity in wanted.items():
            raw = raw_stock(products[product_id], variant_id)
            if raw is None:
                raise NotFoundError("Variant", variant_id)
            if quantity > raw:
                raise InsufficientStock(
                    f"Insufficient stock for {_display_name(products[product_id], variant_id)}: "
                    f"requested {quantity}, available {raw}",
                    requested=quantity, available=raw)

        order_number = generate_order_number()
        deducted: List[Tuple[str, Optional[str], int]] = []
        try:
            for (product_id, variant_id), quantity in wanted.items():
                self.ledger.adjust_stock(product_id, -quantity, f"Order {order_number}", variant_id=variant_id)
                deducted.append((product_id, variant_id, quantity))

            totals = compute_totals(items, request.delivery_info.city)
            order = Order(
                order_number=order_number,
                access_token=generate_access_token(),
                user_id=request.user_id,
                source="website",
                customer_info=request.customer_info.model_copy(update={"is_guest": request.user_id is None}),
                delivery_info=request.delivery_info,
                items=items,
                subtotal=totals.subtotal,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total,
                payment_method=request.payment_method,
                inventory_reserved=True,
            )
            created = self.orders.create(order)
        except (RemoteWriteError, ValidationError):
            logger.exception("Order %s failed, giving back %s deducted lines", order_number, len(deducted))
            self._restore(deducted, f"Rollback of order {order_number}")
            raise
        logger.info("Order %s created (total %.2f)", created.order_number, created.total_amount)
        return created

    def _restore(self, lines, reason: str) -> None:
        for product_id, variant_id, quantity in lines:
            try:
                self.ledger.adjust_stock(product_id, quantity, reason, variant_id=variant_id)
            except (RemoteWriteError, NotFoundError):
                logger.error("Could not restore %s units of %s/%s", quantity, product_id, variant_id)

    def get(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def get_by_number(self, order_number: str, access_token: Optional[str] = None) -> Order:
        query = {"orderNumber": order_number}
        if access_token is not None:
            query["accessToken"] = access_token
        order = self.orders.find_one(query)
        if order is None:
            raise NotFoundError("Order", order_number)
        return order

    def list(self, user_id: Optional[str] = None, limit: Optional[int] = None) -> List[Order]:
        query = {"userId": user_id} if user_id else {}
        return self.orders.list(query, sort=[("createdAt", -1)], limit=limit)

    def update_status(self, order_id: str, status: str) -> Order:
        def change(order: Order) -> Order:
            if status not in TRANSITIONS.get(order.order_status, ()):
                raise InvalidTransition(f"Cannot move order from {order.order_status} to {status}")
            updates = {"order_status": status}
            if status == "delivered":
                updates["delivered_at"] = utcnow()
            if status == "cancelled":
                updates["cancelled_at"] = utcnow()
            return order.model_copy(update=updates)

        order = self.orders.mutate(order_id, change)
        logger.info("Order %s status -> %s", order.order_number, status)
        return order

    def cancel_order(self, order_id: str, reason: str = "Cancelled by admin") -> Order:
        def change(order: Order) -> Order:
            if "cancelled" not in TRANSITIONS.get(order.order_status, ()):
                raise InvalidTransition(f"Cannot cancel an order that is {order.order_status}")
            updates = {
                "order_status": "cancelled",
                "cancel_reason": reason,
                "cancelled_at": utcnow(),
                "inventory_reserved": False,
            }
            if order.payment_status == "pending":
                updates["payment_status"] = "failed"
            return order.model_copy(update=updates)

        before = self.orders.get(order_id)
        order = self.orders.mutate(order_id, change)
        if before.inventory_reserved:
            self._restore(
                [(i.product_id, i.variant_id, i.quantity) for i in before.items if i.product_id],
                f"Cancelled order {before.order_number}",
            )
        logger.info("Order %s cancelled: %s", order.order_number, reason)
        return order

    def mark_payment(self, order_id: str, approved: bool, payment_id: Optional[str] = None) -> Order:
        def change(order: Order) -> Order:
            if approved:
                return order.model_copy(update={
                    "payment_status": "paid",
                    "paid_at": utcnow(),
                    "payment_id": payment_id,
                })
            return order.model_copy(update={"payment_status": "failed", "payment_id": payment_id})

        return self.orders.mutate(order_id, change)

    def add_admin_notes(self, order_id: str, notes: str) -> Order:
        return self.orders.mutate(order_id, lambda o: o.model_copy(update={"admin_notes": notes}))

    def add_tracking_number(self, order_id: str, tracking_number: str) -> Order:
        if not tracking_number.strip():
            raise ValidationError("Tracking number is required")
        return self.orders.mutate(
            order_id, lambda o: o.model_copy(update={"tracking_number": tracking_number.strip()}))

    def delete(self, order_id: str) -> None:
        self.orders.delete(order_id)
        logger.info("Order %s deleted", order_id)

    def expire_pending_orders(self, older_than: Optional[timedelta] = None, limit: int = 100) -> Dict[str, int]:
        """
        Cancel website orders whose online payment is still pending after
        ``older_than`` and give their stock back through ``cancel_order``.
        Cash orders are paid on delivery and never expire. A failing order
        is logged and counted; the rest are still processed.
        """
        if older_than is None:
            older_than = timedelta(minutes=config.ORDER_EXPIRY_MINUTES)
        cutoff = utcnow() - older_than
        pending = self.orders.list({
            "source": "website",
            "paymentStatus": "pending",
            "paymentMethod": {"$ne": "cash"},
            "orderStatus": {"$in": ["pending", "confirmed"]},
        }, sort=[("createdAt", 1)], limit=limit)
        expired = [o for o in pending if o.created_at <= cutoff]

        minutes = int(older_than.total_seconds() // 60)
        processed = failed = 0
        for order in expired:
            try:
                self.cancel_order(order.id, f"Automatic cleanup - expired after {minutes} minutes")
                processed += 1
            except ShopError as e:
                logger.error("Could not expire order %s: %s", order.order_number, e.message)
                failed += 1
        logger.info("Expired %s of %s unpaid orders (%s pending checked)", processed, len(expired), len(pending))
        return {"totalFound": len(expired), "processedCount": processed, "errorCount": failed}
