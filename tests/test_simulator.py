import json

import httpx
import pytest

from order_tracking.simulator import OrderApiClient, run_delivery


class FakeOrderApi:
    """Minimal stand-in for the order API, enforcing the forward path only."""

    NEXT = {"pending": {"confirmed", "canceled"}, "confirmed": {"preparing", "canceled"},
            "preparing": {"in_transit", "canceled"}, "in_transit": {"delivered"}}

    def __init__(self, status="pending"):
        self.status = status
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.url.path != "/api/orders/5" and not request.url.path.startswith("/api/orders/5/"):
            return httpx.Response(404, json={"message": "Order not found"})
        if request.method == "GET":
            return httpx.Response(200, json={"id": 5, "status": self.status})
        target = json.loads(request.content)["status"]
        if target not in self.NEXT.get(self.status, set()):
            return httpx.Response(409, json={"message": "invalid", "from": self.status, "to": target})
        self.status = target
        return httpx.Response(200, json={"id": 5, "status": self.status})


def _client(api):
    return OrderApiClient("http://orders.test", transport=httpx.MockTransport(api.handler))


def test_run_delivery_full_pipeline():
    api = FakeOrderApi()
    sleeps = []

    applied = run_delivery(_client(api), 5, step_seconds=2, sleep=sleeps.append)

    assert applied == ["confirmed", "preparing", "in_transit", "delivered"]
    assert api.status == "delivered"
    assert sleeps == [2, 2, 2, 2]


def test_run_delivery_resumes_from_current_status():
    api = FakeOrderApi(status="preparing")

    applied = run_delivery(_client(api), 5, step_seconds=0, sleep=lambda s: None)

    assert applied == ["in_transit", "delivered"]


def test_run_delivery_cancel():
    api = FakeOrderApi(status="confirmed")

    applied = run_delivery(_client(api), 5, step_seconds=0, cancel=True, sleep=lambda s: None)

    assert applied == ["canceled"]
    assert api.status == "canceled"


def test_run_delivery_terminal_order_does_nothing():
    api = FakeOrderApi(status="canceled")

    assert run_delivery(_client(api), 5, sleep=lambda s: None) == []
    assert api.requests == [("GET", "/api/orders/5")]


def test_rejected_transition_raises():
    api = FakeOrderApi(status="in_transit")

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        run_delivery(_client(api), 5, cancel=True, sleep=lambda s: None)
    assert excinfo.value.response.status_code == 409


def test_unknown_order_raises():
    client = _client(FakeOrderApi())

    with pytest.raises(httpx.HTTPStatusError):
        client.get_order(6)
