import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import config
import database
import errors
from catalog import CategoryStore, ProductCatalog, priority_label, stock_status
from ledger import StockLedger
from orders import ManualOrderComposer, OrderService
from payments import FlittClient, handle_callback
from schemas import (
    AvailabilityRequest,
    CancelRequest,
    Category,
    CategoryUpdate,
    CreateManualOrderRequest,
    CreateOrderRequest,
    LineRequest,
    NotesUpdate,
    PaymentCreateRequest,
    Product,
    ProductUpdate,
    ProductVariant,
    StatusUpdate,
    StockAdjustment,
    StockUpdate,
    TrackingUpdate,
    VariantUpdate,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

def _error_response(status_code: int):
    async def handler(request: Request, exc: errors.ShopError):
        return JSONResponse(status_code=status_code, content={"detail": exc.message})
    return handler


app.add_exception_handler(errors.ValidationError, _error_response(400))
app.add_exception_handler(errors.NotFoundError, _error_response(404))
app.add_exception_handler(errors.VersionConflictError, _error_response(409))
app.add_exception_handler(errors.PaymentGatewayError, _error_response(502))
app.add_exception_handler(errors.RemoteWriteError, _error_response(503))
app.add_exception_handler(errors.SignatureInputError, _error_response(500))


@app.get("/")
def read_root():
    return {"message": "Storefront Backend Running"}


@app.get("/test")
def test_database():
    response = {"backend": "✅ Running", "database": "❌ Not Available"}
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["collections"] = database.collection_names()
        else:
            response["database"] = "❌ Not Configured"
    except Exception as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response


# Utility

def _product_json(product: Product) -> dict:
    data = product.to_json()
    data["stockStatus"] = stock_status(product)
    data["priorityLabel"] = priority_label(product.priority)
    return data


# Products
@app.post("/api/products")
def create_product(product: Product):
    return _product_json(ProductCatalog().create(product))


@app.get("/api/products")
def list_products(active_only: bool = False, category: Optional[str] = None, limit: int = 100):
    return [_product_json(p) for p in ProductCatalog().list(active_only=active_only, category=category, limit=limit)]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return _product_json(ProductCatalog().get(product_id))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, changes: ProductUpdate):
    return _product_json(ProductCatalog().update(product_id, changes.model_dump(exclude_unset=True)))


@app.post("/api/products/{product_id}/toggle")
def toggle_product(product_id: str):
    return _product_json(ProductCatalog().toggle_status(product_id))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str):
    ProductCatalog().delete(product_id)
    return {"ok": True}


# Stock
@app.put("/api/products/{product_id}/stock")
def set_stock(product_id: str, update: StockUpdate):
    entry = StockLedger().set_stock(product_id, update.quantity, update.reason,
                                    variant_id=update.variant_id, notes=update.notes)
    return entry.to_json()


@app.post("/api/products/{product_id}/stock/adjust")
def adjust_stock(product_id: str, adjustment: StockAdjustment):
    entry = StockLedger().adjust_stock(product_id, adjustment.delta, adjustment.reason,
                                       variant_id=adjustment.variant_id)
    return entry.to_json()


@app.get("/api/products/{product_id}/stock-history")
def stock_history(product_id: str, variant_id: Optional[str] = None, at: Optional[datetime] = None):
    ledger = StockLedger()
    log = ledger.history(product_id, variant_id)
    response = {"entries": [e.to_json() for e in log]}
    if at is not None:
        if at.tzinfo is None:
            raise HTTPException(status_code=400, detail="'at' must carry a timezone")
        response["stockAt"] = log.at(at, ledger.stock_of(product_id, variant_id))
    return response


@app.get("/api/inventory/alerts")
def inventory_alerts():
    alerts = ProductCatalog().alerts()
    return {status: [_product_json(p) for p in products] for status, products in alerts.items()}


# Variants
@app.post("/api/products/{product_id}/variants")
def add_variant(product_id: str, variant: ProductVariant):
    return _product_json(StockLedger().add_variant(product_id, variant))


@app.put("/api/products/{product_id}/variants/{variant_id}")
def update_variant(product_id: str, variant_id: str, changes: VariantUpdate):
    return _product_json(StockLedger().update_variant(product_id, variant_id, **changes.model_dump(exclude_unset=True)))


@app.delete("/api/products/{product_id}/variants/{variant_id}")
def delete_variant(product_id: str, variant_id: str):
    return _product_json(StockLedger().delete_variant(product_id, variant_id))


# Categories
@app.post("/api/categories")
def create_category(category: Category):
    return CategoryStore().create(category).to_json()


@app.get("/api/categories")
def list_categories(active_only: bool = False):
    return [c.to_json() for c in CategoryStore().list(active_only=active_only)]


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, changes: CategoryUpdate):
    return CategoryStore().update(category_id, changes.model_dump(exclude_unset=True)).to_json()


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str):
    CategoryStore().delete(category_id)
    return {"ok": True}


# Orders: website checkout => deduct stock and record history
@app.post("/api/orders")
def create_order(request: CreateOrderRequest):
    return OrderService().place_order(request).to_json()


@app.get("/api/orders")
def list_orders(user_id: Optional[str] = None, limit: int = 50):
    return [o.to_json() for o in OrderService().list(user_id=user_id, limit=limit)]


@app.get("/api/orders/by-number/{order_number}")
def get_order_by_number(order_number: str, token: Optional[str] = None):
    return OrderService().get_by_number(order_number, access_token=token).to_json()


@app.get("/api/orders/{order_id}")
def get_order(order_id: str):
    return OrderService().get(order_id).to_json()


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, update: StatusUpdate):
    service = OrderService()
    if update.status == "cancelled":
        return service.cancel_order(order_id).to_json()
    return service.update_status(order_id, update.status).to_json()


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, request: CancelRequest):
    return OrderService().cancel_order(order_id, request.reason).to_json()


@app.put("/api/orders/{order_id}/notes")
def add_admin_notes(order_id: str, update: NotesUpdate):
    return OrderService().add_admin_notes(order_id, update.notes).to_json()


@app.put("/api/orders/{order_id}/tracking")
def add_tracking_number(order_id: str, update: TrackingUpdate):
    return OrderService().add_tracking_number(order_id, update.tracking_number).to_json()


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str):
    OrderService().delete(order_id)
    return {"ok": True}


# Manual orders (admin)
@app.post("/api/admin/orders/availability")
def manual_order_availability(request: AvailabilityRequest):
    available = ManualOrderComposer().available_stock(
        request.product_id, request.variant_id, request.lines, request.exclude_index)
    return {"available": available}


@app.post("/api/admin/orders/line")
def manual_order_line(request: LineRequest):
    return ManualOrderComposer().line_for(request.product_id, request.variant_id, request.quantity).to_json()


@app.post("/api/admin/orders")
def create_manual_order(request: CreateManualOrderRequest):
    return ManualOrderComposer().submit(request).to_json()


# Payments
@app.post("/api/payment/create")
def create_payment(request: PaymentCreateRequest):
    return FlittClient().create_checkout(request.order_id, request.amount,
                                         request.description, request.customer_email)


@app.post("/api/payment/callback")
def payment_callback(payload: Dict[str, Any] = Body(...)):
    try:
        handle_callback(payload, OrderService())
    except errors.SignatureInputError as e:
        logger.warning("Rejected payment callback: %s", e.message)
        raise HTTPException(status_code=400, detail=e.message)
    except errors.ShopError as e:
        # acknowledge anyway so the gateway does not keep retrying
        logger.error("Payment callback for %s not applied: %s", payload.get("order_id"), e.message)
    return PlainTextResponse("OK")


# Maintenance, called by a scheduler
@app.post("/api/cleanup/expired-orders")
def cleanup_expired_orders(authorization: Optional[str] = Header(None)):
    if not config.CLEANUP_SECRET_TOKEN or authorization != f"Bearer {config.CLEANUP_SECRET_TOKEN}":
        raise HTTPException(status_code=401, detail="Unauthorized")
    result = OrderService().expire_pending_orders()
    return {"success": True, **result}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
