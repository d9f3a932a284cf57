"""
Razorpay adapter: order creation over HTTP and signature checks.
"""

import hashlib
import hmac

import pytest
import requests

from core.exceptions import GatewayUnavailable
from services.payment_gateway import PaymentGateway, RazorpayGateway, to_minor_units


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if self.error:
            raise self.error
        return self.response


def make_gateway(http, key_id="rzp_test_key", key_secret="secret"):
    return RazorpayGateway(key_id, key_secret, "whsec", api_base="https://api.example.test/v1", timeout=3.0, http=http)


def test_to_minor_units():
    assert to_minor_units(1000) == 100000
    assert to_minor_units(499.99) == 49999


def test_create_order_posts_to_orders_endpoint():
    http = FakeHttp(FakeResponse(200, {"id": "order_abc", "amount": 100000, "currency": "INR", "receipt": "42"}))
    gateway = make_gateway(http)

    order = gateway.create_order(100000, receipt_id="42", currency="INR", notes={"gym_id": 1})

    assert order.id == "order_abc"
    assert order.amount == 100000
    assert order.currency == "INR"
    call = http.calls[0]
    assert call["url"] == "https://api.example.test/v1/orders"
    assert call["auth"] == ("rzp_test_key", "secret")
    assert call["timeout"] == 3.0
    assert call["json"]["receipt"] == "42"


def test_create_order_timeout_is_gateway_unavailable():
    gateway = make_gateway(FakeHttp(error=requests.Timeout("read timed out")))
    with pytest.raises(GatewayUnavailable) as exc:
        gateway.create_order(100, receipt_id="1", currency="INR")
    assert exc.value.retryable is True


def test_create_order_error_status_is_gateway_unavailable():
    gateway = make_gateway(FakeHttp(FakeResponse(500, {"error": "boom"}, text="boom")))
    with pytest.raises(GatewayUnavailable):
        gateway.create_order(100, receipt_id="1", currency="INR")


def test_create_order_rejects_malformed_response():
    gateway = make_gateway(FakeHttp(FakeResponse(200, ValueError("not json"))))
    with pytest.raises(GatewayUnavailable):
        gateway.create_order(100, receipt_id="1", currency="INR")

    gateway = make_gateway(FakeHttp(FakeResponse(200, {"amount": 100})))
    with pytest.raises(GatewayUnavailable):
        gateway.create_order(100, receipt_id="1", currency="INR")


def test_unconfigured_gateway_never_calls_out():
    http = FakeHttp(FakeResponse(200, {"id": "order_x"}))
    gateway = make_gateway(http, key_id=None, key_secret=None)
    with pytest.raises(GatewayUnavailable):
        gateway.create_order(100, receipt_id="1", currency="INR")
    assert http.calls == []


def test_verify_signature():
    gateway = make_gateway(FakeHttp())
    good = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert gateway.verify_signature("order_1", "pay_1", good) is True
    assert gateway.verify_signature("order_1", "pay_2", good) is False
    assert gateway.verify_signature("order_1", "pay_1", "") is False


def test_verify_webhook_signature():
    gateway = make_gateway(FakeHttp())
    body = b'{"event":"payment.captured"}'
    good = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()

    assert gateway.verify_webhook_signature(body, good) is True
    assert gateway.verify_webhook_signature(body + b" ", good) is False


def test_incomplete_adapter_cannot_be_built():
    class OrdersOnly(PaymentGateway):
        def create_order(self, amount_minor, receipt_id, currency, notes=None):
            raise AssertionError("never called")

    with pytest.raises(TypeError):
        OrdersOnly()
