"""
hub.py — Realtime Notification Hub

Keeps track of which live connection follows which order and pushes
`orderUpdate` messages to them whenever an order changes status.

Delivery is fire-and-forget per connection: there is no acknowledgment, no
buffering for disconnected clients, and no server-side reconnect. A client
that reconnects must register again and receives the then-current order as its
first message.

Connection contract (duck-typed):
    connection_id (str)             — stable identity of the channel
    async send_text(text: str)      — raises TransportError on failure
"""

import asyncio
import logging
import threading
import uuid
from typing import Dict, List, Optional, Set, Tuple

from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool

from .errors import TransportError, ValidationError
from .models import Order, OrderStatus
from .protocol import RegisterMessage, encode_order_update, parse_client_message

log = logging.getLogger(__name__)

SubscriptionKey = Tuple[str, int]


class WebSocketConnection:
    """Adapts a Starlette/FastAPI WebSocket to the hub's connection contract."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.connection_id = uuid.uuid4().hex[:12]

    async def send_text(self, text: str) -> None:
        try:
            await self.websocket.send_text(text)
        except Exception as e:
            raise TransportError(self.connection_id, f"send failed: {e}") from e


class SubscriptionRegistry:
    """
    Maps (userId, orderId) pairs to the connections following them.

    A connection is bound to at most one pair; binding again replaces the old
    pair. Bindings are removed by connection id only, so a late close of one
    connection cannot drop another connection's subscription.
    """

    def __init__(self) -> None:
        self._by_key: Dict[SubscriptionKey, Dict[str, object]] = {}
        self._by_connection: Dict[str, SubscriptionKey] = {}
        self._lock = threading.RLock()

    def bind(self, connection, user_id: str, order_id: int) -> Optional[SubscriptionKey]:
        """Binds the connection to a pair and returns the pair it replaced, if any."""
        key = (user_id, order_id)
        with self._lock:
            previous = self._unbind(connection.connection_id)
            self._by_key.setdefault(key, {})[connection.connection_id] = connection
            self._by_connection[connection.connection_id] = key
            return previous

    def release(self, connection) -> Optional[SubscriptionKey]:
        with self._lock:
            return self._unbind(connection.connection_id)

    def _unbind(self, connection_id: str) -> Optional[SubscriptionKey]:
        key = self._by_connection.pop(connection_id, None)
        if key is None:
            return None
        bucket = self._by_key.get(key)
        if bucket is not None:
            bucket.pop(connection_id, None)
            if not bucket:
                del self._by_key[key]
        return key

    def connections_for(self, user_id: str, order_id: int) -> List[object]:
        with self._lock:
            return list(self._by_key.get((user_id, order_id), {}).values())

    def key_of(self, connection) -> Optional[SubscriptionKey]:
        with self._lock:
            return self._by_connection.get(connection.connection_id)

    def keys(self) -> Set[SubscriptionKey]:
        with self._lock:
            return set(self._by_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_connection)


class NotificationHub:
    """
    Pushes order state to subscribed connections.

    Args:
        store (OrderStore): Read to send current state to fresh subscribers.
        registry (SubscriptionRegistry): Injected for tests; a new one by default.
    """

    def __init__(self, store, registry: Optional[SubscriptionRegistry] = None):
        self.store = store
        self.registry = registry or SubscriptionRegistry()

    async def handle_message(self, connection, raw: str) -> None:
        """
        Processes one inbound frame from a client.

        Invalid frames are logged and dropped; the connection stays open.
        """
        try:
            message = parse_client_message(raw)
        except ValidationError as e:
            log.warning(f"[Conn: {connection.connection_id}] Ignoring message: {e.message}")
            return
        await self.register(connection, message)

    async def register(self, connection, message: RegisterMessage) -> None:
        """
        Binds a connection to (userId, orderId).

        If the order exists, belongs to that user and has moved past 'pending',
        its current state is sent right away so late subscribers do not wait for
        the next change. Orders that do not exist are accepted silently.
        """
        replaced = self.registry.bind(connection, message.userId, message.orderId)
        log_prefix = f"[Order: {message.orderId}][Conn: {connection.connection_id}]"
        if replaced:
            log.info(f"{log_prefix} Registration replaces {replaced}.")
        log.info(f"{log_prefix} Registered for user {message.userId}.")

        order = await run_in_threadpool(self.store.get_order, message.orderId)
        if order is None:
            log.warning(f"{log_prefix} Registered for unknown order; no updates will arrive.")
            return
        if order.userId != message.userId or order.status == OrderStatus.PENDING:
            return
        await self._send(connection, encode_order_update(order))

    def disconnect(self, connection) -> None:
        key = self.registry.release(connection)
        if key:
            log.info(f"[Order: {key[1]}][Conn: {connection.connection_id}] Subscription removed.")

    async def broadcast(self, order: Order) -> int:
        """
        Sends the order to every connection following (order.userId, order.id).

        A failed send only affects its own connection, which is released.

        Returns:
            int: Number of connections the update was delivered to.
        """
        targets = self.registry.connections_for(order.userId, order.id)
        if not targets:
            return 0
        text = encode_order_update(order)
        results = await asyncio.gather(
            *(self._send(conn, text) for conn in targets),
            return_exceptions=True,
        )
        delivered = sum(1 for r in results if r is True)
        log.info(f"[Order: {order.id}] Status '{order.status.value}' pushed to {delivered}/{len(targets)} connection(s).")
        return delivered

    async def _send(self, connection, text: str) -> bool:
        try:
            await connection.send_text(text)
            return True
        except TransportError as e:
            log.error(f"{e.message}. Dropping subscription.")
        except Exception as e:
            log.error(f"[Conn: {connection.connection_id}] Unexpected send error: {e}. Dropping subscription.")
        self.registry.release(connection)
        return False

    def subscriber_count(self) -> int:
        return len(self.registry)
