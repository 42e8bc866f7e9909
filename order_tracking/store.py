"""
store.py — Order Store

The single source of truth for orders. Callers depend on the `OrderStore`
contract only, so the in-memory implementation below and the SQL
implementation in `sql_store.py` can be swapped without touching them.

The store assumes pre-validated creation input (validation happens in the
REST layer) and does not check transition legality; that is the job of the
lifecycle manager layered on top. It does reject unknown status strings, so
nothing outside `OrderStatus` is ever persisted.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import NewOrderRequest, Order, OrderStatus, StatusChange, parse_status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStore(ABC):
    """Persistence contract for orders and their status audit trail."""

    name = "abstract"

    @abstractmethod
    def create_order(self, data: NewOrderRequest) -> Order:
        """Assigns `id` and `createdAt`, persists the order in 'pending' and returns it."""

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[Order]:
        """Returns the order or None."""

    @abstractmethod
    def get_orders_by_user(self, user_id: str) -> List[Order]:
        """Returns all orders of one user in creation order."""

    @abstractmethod
    def list_orders(self) -> List[Order]:
        """Returns every order in creation order."""

    @abstractmethod
    def update_order_status(self, order_id: int, status) -> Optional[Order]:
        """
        Writes a new status without checking transition rules.

        Returns:
            Order | None: The updated order, or None if it does not exist.

        Raises:
            ValidationError: If `status` is not a known OrderStatus.
        """

    @abstractmethod
    def update_status_with_change(self, change: StatusChange) -> Optional[Order]:
        """
        Writes `change.toStatus` and appends `change` to the audit trail as one
        atomic step: either both are stored or neither is.

        Returns:
            Order | None: The updated order, or None if it does not exist.
        """

    @abstractmethod
    def add_status_change(self, change: StatusChange) -> None:
        """Appends one record to the order's audit trail."""

    @abstractmethod
    def get_status_history(self, order_id: int) -> List[StatusChange]:
        """Returns the audit trail of one order, oldest first."""

    def close(self) -> None:
        """Releases backend resources."""


class MemoryOrderStore(OrderStore):
    """
    Dict-backed store.

    All access happens under one re-entrant lock, so concurrent status updates
    for the same id are applied one after another, also when calls arrive from
    worker threads. Returned orders are copies;
    mutating them does not change stored state.
    """

    name = "memory"

    def __init__(self) -> None:
        self._orders: Dict[int, Order] = {}
        self._history: Dict[int, List[StatusChange]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def create_order(self, data: NewOrderRequest) -> Order:
        with self._lock:
            order_id = next(self._ids)
            order = Order(
                id=order_id,
                createdAt=utc_now(),
                **data.model_dump(exclude={"status"}),
                status=OrderStatus.PENDING,
            )
            self._orders[order_id] = order
            self._history[order_id] = []
            return order.model_copy(deep=True)

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def get_orders_by_user(self, user_id: str) -> List[Order]:
        with self._lock:
            return [o.model_copy(deep=True) for o in self._orders.values() if o.userId == user_id]

    def list_orders(self) -> List[Order]:
        with self._lock:
            return [o.model_copy(deep=True) for o in self._orders.values()]

    def update_order_status(self, order_id: int, status) -> Optional[Order]:
        status = parse_status(status)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return None
            updated = order.model_copy(update={"status": status})
            self._orders[order_id] = updated
            return updated.model_copy(deep=True)

    def update_status_with_change(self, change: StatusChange) -> Optional[Order]:
        status = parse_status(change.toStatus)
        with self._lock:
            order = self._orders.get(change.orderId)
            if order is None:
                return None
            updated = order.model_copy(update={"status": status})
            self._history.setdefault(change.orderId, []).append(change)
            self._orders[change.orderId] = updated
            return updated.model_copy(deep=True)

    def add_status_change(self, change: StatusChange) -> None:
        with self._lock:
            self._history.setdefault(change.orderId, []).append(change)

    def get_status_history(self, order_id: int) -> List[StatusChange]:
        with self._lock:
            return list(self._history.get(order_id, []))


def create_store(settings) -> OrderStore:
    """
    Picks the store implementation for the given settings.

    An empty `database_url` selects the in-memory store; anything else is
    handed to SQLAlchemy.
    """
    if not settings.database_url:
        return MemoryOrderStore()
    from .sql_store import SqlOrderStore
    return SqlOrderStore(settings.database_url)
