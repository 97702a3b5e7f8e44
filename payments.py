"""
Flitt payment gateway: request signing, request building, checkout
creation and callback handling.

The signature is a wire contract with the gateway: SHA-1 over the secret
key followed by the values of every non-empty parameter (except the
signature itself) in ASCII key order, joined with ``|``.
"""

import hashlib
import hmac
import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

import config
from errors import PaymentGatewayError, SignatureInputError

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "signature"
# the gateway adds this debug field to callbacks; it is not signed
UNSIGNED_FIELDS = (SIGNATURE_FIELD, "response_signature_string")

_DESC_RE = re.compile(r"[^a-zA-Z0-9 -]")


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def canonical_string(params: Mapping[str, Any], secret_key: str) -> str:
    if not secret_key:
        raise SignatureInputError("Payment secret key is not configured")
    keys = sorted(k for k, v in params.items() if k not in UNSIGNED_FIELDS and v)
    if not keys:
        raise SignatureInputError("Nothing to sign: every parameter is empty")
    return "|".join([secret_key] + [_scalar(params[k]) for k in keys])


def sign(params: Mapping[str, Any], secret_key: str) -> str:
    return hashlib.sha1(canonical_string(params, secret_key).encode("utf-8")).hexdigest()


def verify_signature(params: Mapping[str, Any], secret_key: str) -> bool:
    received = params.get(SIGNATURE_FIELD)
    if not received:
        return False
    return hmac.compare_digest(sign(params, secret_key), str(received).lower())


def to_minor_units(amount) -> int:
    """2.005 GEL -> 201 tetri, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_description(description: Optional[str], order_id: str) -> str:
    return _DESC_RE.sub("", description or f"Order {order_id}")


def build_payment_request(order_id: str, amount, description: Optional[str] = None,
                          customer_email: Optional[str] = None, secret_key: Optional[str] = None,
                          merchant_id: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    params: Dict[str, Any] = {
        "order_id": str(order_id),
        "merchant_id": merchant_id or config.FLITT_MERCHANT_ID,
        "order_desc": clean_description(description, order_id),
        "amount": to_minor_units(amount),
        "currency": config.PAYMENT_CURRENCY,
        "server_callback_url": config.PAYMENT_CALLBACK_URL,
        "response_url": config.PAYMENT_RESPONSE_URL,
    }
    if customer_email and customer_email.strip():
        params["sender_email"] = customer_email.strip()
    params[SIGNATURE_FIELD] = sign(params, config.FLITT_SECRET_KEY if secret_key is None else secret_key)
    return {"request": params}


class FlittClient:
    def __init__(self, api_url: Optional[str] = None, secret_key: Optional[str] = None,
                 merchant_id: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.api_url = api_url or config.FLITT_API_URL
        self.secret_key = config.FLITT_SECRET_KEY if secret_key is None else secret_key
        self.merchant_id = merchant_id or config.FLITT_MERCHANT_ID
        self.transport = transport

    def create_checkout(self, order_id: str, amount, description: Optional[str] = None,
                        customer_email: Optional[str] = None) -> Dict[str, Any]:
        body = build_payment_request(order_id, amount, description, customer_email,
                                     secret_key=self.secret_key, merchant_id=self.merchant_id)
        logger.info("Creating payment for order %s (%s minor units)", order_id, body["request"]["amount"])
        with httpx.Client(timeout=config.PAYMENT_TIMEOUT, transport=self.transport) as client:
            try:
                resp = client.post(self.api_url, json=body, headers={"Accept": "application/json"})
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Payment gateway call failed for %s: %s", order_id, e)
                raise PaymentGatewayError("Payment gateway is unreachable")

        result = data.get("response") or {}
        if result.get("response_status") != "success":
            logger.error("Payment gateway refused order %s: %s", order_id, result)
            raise PaymentGatewayError(
                result.get("error_message") or "Payment creation failed",
                code=result.get("error_code"),
                details=result,
            )
        return {
            "success": True,
            "checkoutUrl": result.get("checkout_url"),
            "paymentId": result.get("payment_id"),
        }


def handle_callback(payload: Mapping[str, Any], order_service, secret_key: Optional[str] = None) -> str:
    """
    Apply a gateway callback to the order it names. Returns the gateway
    order status. Callbacks with a bad signature are rejected.
    """
    secret_key = config.FLITT_SECRET_KEY if secret_key is None else secret_key
    if not verify_signature(payload, secret_key):
        raise SignatureInputError("Callback signature does not match")

    order_number = str(payload.get("order_id") or "")
    status = payload.get("order_status")
    order = order_service.get_by_number(order_number)
    if status == "approved":
        order_service.mark_payment(order.id, approved=True, payment_id=payload.get("payment_id"))
        logger.info("Payment approved for order %s", order_number)
    elif status == "declined":
        order_service.mark_payment(order.id, approved=False, payment_id=payload.get("payment_id"))
        logger.info("Payment declined for order %s", order_number)
    else:
        logger.info("Payment status for order %s: %s", order_number, status)
    return status
