"""
lifecycle.py — Order Lifecycle Manager

Owns the order status state machine:

    pending → confirmed → preparing → in_transit → delivered
       └──────────┴───────────┴──→ canceled

Every accepted change is written to the store, recorded in the order's audit
trail and pushed to subscribers through the notification hub. Changes for one
order are serialized with a per-order lock, so they are applied and broadcast
in the order they were accepted.

The partner override (`force_status`) is the only write that skips the table;
it is audited separately.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from fastapi.concurrency import run_in_threadpool

from .errors import AuthorizationError, InvalidTransitionError, NotFoundError
from .models import Order, OrderStatus, StatusChange, TrackingView, parse_status
from .store import utc_now

log = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.CANCELED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)

# Pipeline order used for listing next steps
STATUS_ORDER = list(OrderStatus)

PROGRESS = {
    OrderStatus.PENDING: 10,
    OrderStatus.CONFIRMED: 25,
    OrderStatus.PREPARING: 50,
    OrderStatus.IN_TRANSIT: 75,
    OrderStatus.DELIVERED: 100,
    OrderStatus.CANCELED: 0,
}

PREPARING_ETA = timedelta(minutes=30)
IN_TRANSIT_ETA = timedelta(minutes=15)
DEFAULT_ETA = timedelta(minutes=45)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def allowed_transitions(status: OrderStatus):
    targets = VALID_TRANSITIONS[status]
    return [s for s in STATUS_ORDER if s in targets]


def format_clock(moment: datetime) -> str:
    """Renders a time like '7:05 PM'."""
    return moment.strftime("%I:%M %p").lstrip("0")


def estimate_delivery(order: Order, now: Optional[datetime] = None) -> str:
    """
    Derives the live ETA text shown while tracking.

    This is a presentation value and never stored; the order's own
    `deliveryTime` stays the target chosen at checkout.
    """
    if order.status == OrderStatus.DELIVERED:
        return "Delivered"
    if order.status == OrderStatus.PREPARING:
        return format_clock(order.createdAt + PREPARING_ETA)
    if order.status == OrderStatus.IN_TRANSIT:
        return format_clock((now or utc_now()) + IN_TRANSIT_ETA)
    return format_clock(order.createdAt + DEFAULT_ETA)


def progress(status: OrderStatus) -> int:
    return PROGRESS[status]


class LifecycleManager:
    """
    Applies status changes to orders.

    Store calls block, so the async paths run them in the threadpool and keep
    the event loop free for other connections.

    Args:
        store (OrderStore): Where orders live.
        hub (NotificationHub): Receives every accepted change for broadcasting.
    """

    def __init__(self, store, hub):
        self.store = store
        self.hub = hub
        # An entry lives only while some coroutine holds or waits for it
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, order_id: int) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        return lock

    def get_order(self, order_id: int) -> Order:
        order = self.store.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    async def transition(self, order_id: int, target, actor: Optional[str] = None) -> Order:
        """
        Moves an order to `target` if the state machine allows it.

        Args:
            order_id (int): Order to change.
            target (OrderStatus | str): Requested status.
            actor (str | None): Who asked, kept in the audit trail.

        Returns:
            Order: The updated order.

        Raises:
            ValidationError: If `target` is not a known status.
            NotFoundError: If the order does not exist.
            InvalidTransitionError: If the change is not in the transition table.
                The order is left untouched.
        """
        target = parse_status(target)
        lock = self._lock_for(order_id)
        async with lock:
            order = await run_in_threadpool(self.get_order, order_id)
            if not can_transition(order.status, target):
                log.warning(f"[Order: {order_id}] Rejected transition {order.status.value} → {target.value}.")
                raise InvalidTransitionError(order_id, order.status.value, target.value)
            return await self._apply(order, target, source="lifecycle", actor=actor)

    async def force_status(
            self,
            order_id: int,
            target,
            actor: str,
            reason: Optional[str] = None,
            bar_name: Optional[str] = None,
    ) -> Order:
        """
        Privileged partner override: sets any known status without checking the
        transition table. The change is audited with the actor and reason.
        Setting the status an order already has changes nothing.

        Args:
            bar_name (str | None): When given, the order must contain at least
                one item from this bar.

        Raises:
            AuthorizationError: If the order has no item from `bar_name`.
        """
        target = parse_status(target)
        lock = self._lock_for(order_id)
        async with lock:
            order = await run_in_threadpool(self.get_order, order_id)
            if bar_name is not None and not order.has_bar(bar_name):
                log.warning(f"[Order: {order_id}] Override by {actor} refused: no items from {bar_name}.")
                raise AuthorizationError("Not authorized to update this order")
            if order.status == target:
                return order
            log.warning(
                f"[Order: {order_id}] Override by {actor}: {order.status.value} → {target.value}"
                f" (reason: {reason or 'none given'})."
            )
            return await self._apply(order, target, source="override", actor=actor, reason=reason)

    async def _apply(self, order: Order, target: OrderStatus, source: str, actor=None, reason=None) -> Order:
        change = StatusChange(
            orderId=order.id,
            fromStatus=order.status,
            toStatus=target,
            source=source,
            actor=actor,
            reason=reason,
            changedAt=utc_now(),
        )
        updated = await run_in_threadpool(self.store.update_status_with_change, change)
        if updated is None:
            raise NotFoundError("Order", order.id)
        eta = estimate_delivery(updated)
        log.info(f"[Order: {order.id}] Status {order.status.value} → {target.value}. ETA: {eta}.")
        await self.hub.broadcast(updated)
        return updated

    def tracking_view(self, order_id: int, now: Optional[datetime] = None) -> TrackingView:
        """
        Raises:
            NotFoundError: If the order does not exist.
        """
        order = self.get_order(order_id)
        return TrackingView(
            order=order,
            estimatedDelivery=estimate_delivery(order, now),
            progress=progress(order.status),
            nextStatuses=allowed_transitions(order.status),
        )
