import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from order_tracking.config import Settings
from order_tracking.errors import TransportError
from order_tracking.hub import NotificationHub
from order_tracking.lifecycle import LifecycleManager
from order_tracking.main import create_app
from order_tracking.models import NewOrderRequest
from order_tracking.sql_store import SqlOrderStore
from order_tracking.store import MemoryOrderStore

PARTNER_KEYS = {"nightcap-key": "The Nightcap Lounge", "velvet-key": "Velvet Room"}


def order_payload(**overrides):
    payload = {
        "userId": "42",
        "items": [{
            "id": 1,
            "name": "Old Fashioned",
            "price": 14,
            "barName": "The Nightcap Lounge",
            "imageUrl": "https://example.com/old-fashioned.jpg",
            "quantity": 2,
        }],
        "subtotal": 28,
        "deliveryFee": 4.99,
        "total": 32.99,
        "status": "pending",
        "deliveryAddress": "12 Harbour Street, Apt 4",
        "deliveryTime": "2024-05-01T19:30:00Z",
    }
    payload.update(overrides)
    return payload


class FakeConnection:
    """Records what the hub sends; optionally fails every send."""

    def __init__(self, connection_id, fail=False):
        self.connection_id = connection_id
        self.fail = fail
        self.sent = []

    async def send_text(self, text):
        if self.fail:
            raise TransportError(self.connection_id, "connection reset")
        self.sent.append(json.loads(text))


@pytest.fixture
def make_payload():
    return order_payload


@pytest.fixture
def make_connection():
    return FakeConnection


@pytest.fixture
def new_order():
    def build(**overrides):
        return NewOrderRequest(**order_payload(**overrides))
    return build


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        s = MemoryOrderStore()
    else:
        s = SqlOrderStore("sqlite://")
    yield s
    s.close()


@pytest.fixture
def memory_store():
    return MemoryOrderStore()


@pytest.fixture
def hub(memory_store):
    return NotificationHub(memory_store)


@pytest.fixture
def lifecycle(memory_store, hub):
    return LifecycleManager(memory_store, hub)


@pytest.fixture
def settings():
    return Settings(partner_keys=PARTNER_KEYS)


@pytest.fixture
def app(settings, memory_store):
    return create_app(settings=settings, store=memory_store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def fixed_now():
    return datetime(2024, 5, 1, 19, 0, tzinfo=timezone.utc)
