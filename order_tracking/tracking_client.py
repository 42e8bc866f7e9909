"""
tracking_client.py — Consumer-side Tracking Adapter

The contract a tracking UI relies on: open a channel, register for one order,
receive `orderUpdate` messages, and reconnect by hand after a failure. The
hub never reconnects on its own, so the retry policy lives here, with the
caller.

The adapter is transport-agnostic. `connect` is a zero-argument callable that
returns a context manager yielding a session with `send_json`, `receive_json`
and `close` (Starlette's test websocket session has exactly this shape).
"""

import logging
from typing import Any, Callable, ContextManager, Dict, Optional

from .errors import TransportError

log = logging.getLogger(__name__)

CONNECTING = "connecting"
OPEN = "open"
CLOSED = "closed"
ERROR = "error"


class TrackingClient:
    """
    Follows one order over a realtime session.

    Attributes:
        state (str): 'connecting', 'open', 'closed' or 'error'.
        order (dict | None): Last order received.
        error (str | None): Description of the last transport failure.
    """

    def __init__(self, connect: Callable[[], ContextManager[Any]], user_id: str, order_id: int):
        self._connect = connect
        self.user_id = user_id
        self.order_id = order_id
        self.state = CLOSED
        self.order: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self._cm = None
        self._session = None

    def open(self) -> None:
        """Opens a fresh session and registers for the order."""
        self.state = CONNECTING
        try:
            self._cm = self._connect()
            self._session = self._cm.__enter__()
            self._session.send_json({"type": "register", "userId": self.user_id, "orderId": self.order_id})
        except Exception as e:
            self.close()
            self._fail(e)
        self.state = OPEN
        self.error = None
        log.info(f"[Order: {self.order_id}] Tracking session open.")

    def next_update(self) -> Dict[str, Any]:
        """
        Blocks until the next `orderUpdate` arrives and returns its order.

        Messages of other types are skipped.

        Raises:
            TransportError: If the session is not open or receiving fails.
        """
        if self.state != OPEN:
            raise TransportError(f"order-{self.order_id}", f"session is {self.state}")
        while True:
            try:
                message = self._session.receive_json()
            except Exception as e:
                self._fail(e)
            if isinstance(message, dict) and message.get("type") == "orderUpdate" and message.get("order"):
                self.order = message["order"]
                return self.order

    def reconnect(self) -> None:
        """Manual retry: drops the old session, opens a new one, registers again."""
        log.info(f"[Order: {self.order_id}] Reconnecting tracking session.")
        self.close()
        self.open()

    def close(self) -> None:
        if self._cm is not None:
            try:
                self._cm.__exit__(None, None, None)
            except Exception as e:
                log.debug(f"[Order: {self.order_id}] Ignoring error while closing: {e}")
        self._cm = None
        self._session = None
        self.state = CLOSED

    def _fail(self, exc: Exception):
        self.state = ERROR
        self.error = f"Connection error: {exc}"
        log.warning(f"[Order: {self.order_id}] {self.error}")
        raise TransportError(f"order-{self.order_id}", str(exc)) from exc

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
