"""
Database Schemas for the storefront

Each Pydantic model below represents a MongoDB document. Python attributes
are snake_case; the stored (and JSON) field names are camelCase, e.g.
``has_variants`` is persisted as ``hasVariants``.

Collections:
- products   (Product, with ProductVariant and StockHistoryEntry embedded)
- orders     (Order, with OrderItem embedded)
- categories (Category)

The remaining models are request bodies accepted by the API.
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Timestamp = Annotated[datetime, AfterValidator(_as_utc)]

OrderStatus = Literal["pending", "confirmed", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
OrderSource = Literal["website", "instagram", "facebook", "tiktok", "phone", "personal"]


class ShopModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Dump in the stored camelCase shape, without the ``id`` key."""
        return self.model_dump(by_alias=True, exclude={"id"})

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# Stock

class StockHistoryEntry(ShopModel):
    timestamp: Timestamp = Field(default_factory=utcnow, description="When the stock was set")
    quantity: int = Field(..., ge=0, description="Resulting absolute quantity, not the delta")
    reason: str = Field(..., description="Human supplied reason")
    notes: Optional[str] = Field(None, description="Free-form notes")


class ProductVariant(ShopModel):
    id: str = Field(default_factory=lambda: str(ObjectId()), description="Unique within its product")
    name: str = Field(..., description="Variant name, e.g. size or colour")
    price: float = Field(..., ge=0, description="Unit price")
    sale_price: Optional[float] = Field(None, ge=0, description="Effective only when lower than price")
    stock: int = Field(0, ge=0, description="Units in stock")
    is_active: bool = Field(True)
    stock_history: List[StockHistoryEntry] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class Product(ShopModel):
    id: Optional[str] = Field(None, description="Document id as string")
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    category: str = Field("", description="Category name")
    price: float = Field(0, ge=0, description="Unit price; min variant price for variant products")
    original_price: Optional[float] = Field(None, ge=0, description="Legacy crossed-out price")
    sale_price: Optional[float] = Field(None, ge=0, description="Effective only when lower than price")
    stock: int = Field(0, ge=0, description="Units in stock; sum of variants for variant products")
    total_stock: int = Field(0, ge=0)
    min_price: float = Field(0, ge=0)
    max_price: float = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    priority: int = Field(0, ge=0, le=9999, description="0 standard, >=10 promoted, >=100 top")
    is_active: bool = Field(True)
    has_variants: bool = Field(False)
    variants: List[ProductVariant] = Field(default_factory=list)
    stock_history: List[StockHistoryEntry] = Field(default_factory=list)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)
    version: int = Field(0, ge=0, description="Bumped on every write")

    def find_variant(self, variant_id: str) -> Optional[ProductVariant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


class Category(ShopModel):
    id: Optional[str] = None
    name: str = Field(..., description="Category name")
    slug: str = Field("", description="URL slug, derived from the name when empty")
    priority: int = Field(0, ge=0)
    is_active: bool = Field(True)
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)
    version: int = Field(0, ge=0)


# Orders

class CustomerInfo(ShopModel):
    first_name: str = Field(..., description="Customer first name")
    last_name: str = Field("", description="Customer last name")
    phone: str = Field(..., description="Phone number")
    email: str = Field("", description="Email address, may be empty")
    is_guest: bool = Field(True)


class DeliveryInfo(ShopModel):
    city: str = Field(..., description="Delivery city, drives the shipping cost")
    address: str = Field("")
    comment: str = Field("")


class OrderItem(ShopModel):
    product_id: Optional[str] = Field(None, description="Product id; empty for free-text lines")
    variant_id: Optional[str] = Field(None)
    name: str = Field(..., description="Name snapshot at order time")
    price: float = Field(..., ge=0, description="Resolved unit price at order time")
    quantity: int = Field(..., ge=1)
    total: float = Field(..., ge=0, description="Computed: price * quantity")


class Order(ShopModel):
    id: Optional[str] = None
    order_number: str = Field(..., description="LS-<year>-<digits>")
    access_token: str = Field(..., description="Secret for guest order links")
    user_id: Optional[str] = None
    source: OrderSource = "website"
    customer_info: CustomerInfo
    delivery_info: DeliveryInfo
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    order_status: OrderStatus = "pending"
    payment_method: str = Field("cash")
    payment_status: PaymentStatus = "pending"
    inventory_reserved: bool = Field(False, description="Stock was deducted through the ledger")
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    cancel_reason: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)
    delivered_at: Optional[Timestamp] = None
    paid_at: Optional[Timestamp] = None
    cancelled_at: Optional[Timestamp] = None
    version: int = Field(0, ge=0)


# Request bodies

class ManualOrderItem(ShopModel):
    """A draft line; checked by the composer, so no field constraints here."""
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    name: str = ""
    price: float = 0
    quantity: int = 1


class CreateManualOrderRequest(ShopModel):
    source: OrderSource = "instagram"
    items: List[ManualOrderItem]
    customer_info: CustomerInfo
    delivery_info: DeliveryInfo
    shipping_cost: Optional[float] = Field(None, ge=0, description="Overrides the city rule")
    status: Literal["pending", "confirmed", "delivered"] = "pending"
    payment_method: str = "cash"


class CartLine(ShopModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(ShopModel):
    user_id: Optional[str] = None
    items: List[CartLine]
    customer_info: CustomerInfo
    delivery_info: DeliveryInfo
    payment_method: str = "cash"


class AvailabilityRequest(ShopModel):
    product_id: str
    variant_id: Optional[str] = None
    lines: List[ManualOrderItem] = Field(default_factory=list)
    exclude_index: Optional[int] = None


class StockUpdate(ShopModel):
    quantity: int
    reason: str
    notes: Optional[str] = None
    variant_id: Optional[str] = None


class StockAdjustment(ShopModel):
    delta: int
    reason: str
    variant_id: Optional[str] = None


class StatusUpdate(ShopModel):
    status: OrderStatus


class NotesUpdate(ShopModel):
    notes: str


class TrackingUpdate(ShopModel):
    tracking_number: str


class CancelRequest(ShopModel):
    reason: str = "Cancelled by admin"


class PaymentCreateRequest(ShopModel):
    order_id: str
    amount: float = Field(..., gt=0)
    customer_email: Optional[str] = None
    description: Optional[str] = None


class ProductUpdate(ShopModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class VariantUpdate(ShopModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CategoryUpdate(ShopModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    priority: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class LineRequest(ShopModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = 1
