"""
sql_store.py — Relational Order Store (SQLAlchemy)

Implements the `OrderStore` contract on top of any database SQLAlchemy
supports. Line items are kept as a JSON column on the order row; status
changes go to their own audit table.
"""

import logging
from datetime import timezone
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import NewOrderRequest, Order, OrderStatus, StatusChange, parse_status
from .store import OrderStore, utc_now

log = logging.getLogger(__name__)

Base = declarative_base()


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    items = Column(JSON, nullable=False)
    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False)
    total = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    delivery_address = Column(Text, nullable=False)
    delivery_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class StatusChangeRow(Base):
    __tablename__ = "order_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    source = Column(String(20), nullable=False)
    actor = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False)


def _as_utc(value):
    # SQLite hands back naive datetimes; everything is written in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        userId=row.user_id,
        items=row.items,
        subtotal=row.subtotal,
        deliveryFee=row.delivery_fee,
        total=row.total,
        status=OrderStatus(row.status),
        deliveryAddress=row.delivery_address,
        deliveryTime=_as_utc(row.delivery_time),
        createdAt=_as_utc(row.created_at),
    )


def _to_change(row: StatusChangeRow) -> StatusChange:
    return StatusChange(
        orderId=row.order_id,
        fromStatus=OrderStatus(row.from_status),
        toStatus=OrderStatus(row.to_status),
        source=row.source,
        actor=row.actor,
        reason=row.reason,
        changedAt=_as_utc(row.changed_at),
    )


def _to_change_row(change: StatusChange) -> StatusChangeRow:
    return StatusChangeRow(
        order_id=change.orderId,
        from_status=change.fromStatus.value,
        to_status=change.toStatus.value,
        source=change.source,
        actor=change.actor,
        reason=change.reason,
        changed_at=change.changedAt,
    )


class SqlOrderStore(OrderStore):
    """
    Store backed by a relational database.

    Each call runs in its own session and transaction. Status updates lock the
    order row (`SELECT ... FOR UPDATE` where the backend supports it) so
    concurrent writers for one id are serialized by the database.

    All calls block on database I/O. Async callers run them in the threadpool.
    """

    name = "sql"

    def __init__(self, database_url: str):
        connect_args = {}
        engine_kwargs = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        log.info(f"SQL order store ready ({self.engine.url.get_backend_name()}).")

    def create_order(self, data: NewOrderRequest) -> Order:
        row = OrderRow(
            user_id=data.userId,
            items=[item.model_dump() for item in data.items],
            subtotal=data.subtotal,
            delivery_fee=data.deliveryFee,
            total=data.total,
            status=OrderStatus.PENDING.value,
            delivery_address=data.deliveryAddress,
            delivery_time=data.deliveryTime,
            created_at=utc_now(),
        )
        with self.Session.begin() as session:
            session.add(row)
            session.flush()
            return _to_order(row)

    def get_order(self, order_id: int) -> Optional[Order]:
        with self.Session() as session:
            row = session.get(OrderRow, order_id)
            return _to_order(row) if row else None

    def get_orders_by_user(self, user_id: str) -> List[Order]:
        with self.Session() as session:
            rows = session.scalars(
                select(OrderRow).where(OrderRow.user_id == user_id).order_by(OrderRow.id)
            ).all()
            return [_to_order(r) for r in rows]

    def list_orders(self) -> List[Order]:
        with self.Session() as session:
            rows = session.scalars(select(OrderRow).order_by(OrderRow.id)).all()
            return [_to_order(r) for r in rows]

    def update_order_status(self, order_id: int, status) -> Optional[Order]:
        status = parse_status(status)
        with self.Session.begin() as session:
            row = session.scalars(
                select(OrderRow).where(OrderRow.id == order_id).with_for_update()
            ).first()
            if row is None:
                return None
            row.status = status.value
            session.flush()
            return _to_order(row)

    def update_status_with_change(self, change: StatusChange) -> Optional[Order]:
        status = parse_status(change.toStatus)
        with self.Session.begin() as session:
            row = session.scalars(
                select(OrderRow).where(OrderRow.id == change.orderId).with_for_update()
            ).first()
            if row is None:
                return None
            row.status = status.value
            session.add(_to_change_row(change))
            session.flush()
            return _to_order(row)

    def add_status_change(self, change: StatusChange) -> None:
        with self.Session.begin() as session:
            session.add(_to_change_row(change))

    def get_status_history(self, order_id: int) -> List[StatusChange]:
        with self.Session() as session:
            rows = session.scalars(
                select(StatusChangeRow)
                .where(StatusChangeRow.order_id == order_id)
                .order_by(StatusChangeRow.id)
            ).all()
            return [_to_change(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()
