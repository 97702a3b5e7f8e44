import httpx
import pytest

import config
from errors import PaymentGatewayError, SignatureInputError
from payments import (
    FlittClient,
    build_payment_request,
    canonical_string,
    clean_description,
    handle_callback,
    sign,
    to_minor_units,
    verify_signature,
)
from schemas import CartLine, CreateOrderRequest

CALLBACK = {
    "amount": 1000,
    "currency": "GEL",
    "order_id": "LS-2026-000001",
    "order_status": "approved",
    "payment_id": "pay-1",
}
CALLBACK_SIGNATURE = "5bca9905c3710b79be82ebe83d32c009a4eb9cb0"


@pytest.fixture
def gateway_config(monkeypatch):
    monkeypatch.setattr(config, "PAYMENT_CURRENCY", "GEL")
    monkeypatch.setattr(config, "PAYMENT_CALLBACK_URL", "https://lifestore.ge/api/payment/callback")
    monkeypatch.setattr(config, "PAYMENT_RESPONSE_URL", "https://lifestore.ge/payment/success")
    monkeypatch.setattr(config, "FLITT_MERCHANT_ID", "4055351")
    monkeypatch.setattr(config, "FLITT_SECRET_KEY", "test-secret")


def test_sign_sorts_keys():
    assert canonical_string({"b": "2", "a": "1"}, "secret") == "secret|1|2"
    assert sign({"b": "2", "a": "1"}, "secret") == "c03ff68332a1acc4916364aac1dbdfc713f98515"


def test_sign_ignores_insertion_order():
    assert sign({"a": "1", "b": "2"}, "secret") == sign({"b": "2", "a": "1"}, "secret")


def test_empty_and_signature_fields_do_not_change_digest():
    base = sign({"a": "1", "b": "2"}, "secret")
    assert sign({"a": "1", "b": "2", "c": "", "d": None, "signature": "abc"}, "secret") == base
    assert sign({"a": "1", "b": "2", "response_signature_string": "debug"}, "secret") == base


def test_scalars_are_rendered_for_the_wire():
    assert canonical_string({"amount": 10.0, "flag": True}, "k") == "k|10|true"


def test_signing_needs_secret_and_params():
    with pytest.raises(SignatureInputError):
        sign({"a": "1"}, "")
    with pytest.raises(SignatureInputError):
        sign({}, "secret")
    with pytest.raises(SignatureInputError):
        sign({"a": "", "signature": "x"}, "secret")


def test_verify_signature():
    payload = dict(CALLBACK, signature=CALLBACK_SIGNATURE)
    assert verify_signature(payload, "cb-secret")
    assert not verify_signature(dict(payload, amount=999), "cb-secret")
    assert not verify_signature(CALLBACK, "cb-secret")


def test_minor_units_round_half_up():
    assert to_minor_units(25.5) == 2550
    assert to_minor_units(2.005) == 201
    assert to_minor_units(0.1 + 0.2) == 30


def test_clean_description():
    assert clean_description("Order #12 (gift)!", "x") == "Order 12 gift"
    assert clean_description(None, "LS-2026-1") == "Order LS-2026-1"


def test_build_payment_request(gateway_config):
    body = build_payment_request("LS-2026-123456", 25.5)
    request = body["request"]
    assert request["amount"] == 2550
    assert request["order_desc"] == "Order LS-2026-123456"
    assert "sender_email" not in request
    assert request["signature"] == "cb1efaf4a144d35ab0295bf69a091063a886cd96"


def test_build_payment_request_with_email(gateway_config):
    request = build_payment_request("LS-2026-123456", 25.5, customer_email=" a@b.ge ")["request"]
    assert request["sender_email"] == "a@b.ge"
    assert verify_signature(request, "test-secret")


def flitt(handler):
    return FlittClient(api_url="https://gateway.test/checkout", secret_key="test-secret",
                       merchant_id="4055351", transport=httpx.MockTransport(handler))


def test_create_checkout_success(gateway_config):
    seen = {}

    def handler(request):
        seen["body"] = request.read()
        return httpx.Response(200, json={"response": {
            "response_status": "success",
            "checkout_url": "https://pay.test/c/1",
            "payment_id": "p-1",
        }})

    result = flitt(handler).create_checkout("LS-2026-123456", 25.5)
    assert result == {"success": True, "checkoutUrl": "https://pay.test/c/1", "paymentId": "p-1"}
    assert b'"amount":2550' in seen["body"].replace(b" ", b"")


def test_create_checkout_gateway_refusal(gateway_config):
    def handler(request):
        return httpx.Response(200, json={"response": {
            "response_status": "failure",
            "error_message": "Invalid merchant",
            "error_code": 1002,
        }})

    with pytest.raises(PaymentGatewayError) as exc:
        flitt(handler).create_checkout("LS-2026-123456", 25.5)
    assert exc.value.message == "Invalid merchant"
    assert exc.value.code == 1002


def test_create_checkout_http_error(gateway_config):
    with pytest.raises(PaymentGatewayError):
        flitt(lambda request: httpx.Response(500, text="boom")).create_checkout("LS-1", 1)


def place(order_service, product, customer, delivery, monkeypatch, number):
    monkeypatch.setattr("orders.generate_order_number", lambda: number)
    return order_service.place_order(CreateOrderRequest(
        items=[CartLine(product_id=product.id, quantity=1)],
        customer_info=customer, delivery_info=delivery, payment_method="card"))


def test_callback_marks_order_paid(order_service, simple_product, customer, home_delivery, monkeypatch):
    order = place(order_service, simple_product, customer, home_delivery, monkeypatch, "LS-2026-000001")
    payload = dict(CALLBACK, signature=CALLBACK_SIGNATURE)
    assert handle_callback(payload, order_service, secret_key="cb-secret") == "approved"
    paid = order_service.get(order.id)
    assert paid.payment_status == "paid"
    assert paid.payment_id == "pay-1"
    assert paid.paid_at is not None


def test_callback_with_bad_signature_changes_nothing(order_service, simple_product, customer,
                                                     home_delivery, monkeypatch):
    order = place(order_service, simple_product, customer, home_delivery, monkeypatch, "LS-2026-000001")
    payload = dict(CALLBACK, signature="0" * 40)
    with pytest.raises(SignatureInputError):
        handle_callback(payload, order_service, secret_key="cb-secret")
    assert order_service.get(order.id).payment_status == "pending"


def test_declined_callback_marks_failed(order_service, simple_product, customer, home_delivery, monkeypatch):
    order = place(order_service, simple_product, customer, home_delivery, monkeypatch, "LS-2026-000002")
    payload = {"order_id": "LS-2026-000002", "order_status": "declined", "payment_id": "pay-2"}
    payload["signature"] = sign(payload, "cb-secret")
    handle_callback(payload, order_service, secret_key="cb-secret")
    assert order_service.get(order.id).payment_status == "failed"
