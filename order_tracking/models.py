"""
models.py — Data Models for Order Tracking

This module defines the data structures used for order creation, storage and
tracking. It uses Pydantic models to ensure type safety and automatic
validation of incoming data. Field names are camelCase because they are the
JSON wire format shared with the web client.

Models:
    - OrderStatus: Closed set of order states.
    - OrderItem: A single cocktail line item in an order.
    - NewOrderRequest: The order creation payload.
    - Order: A persisted order.
    - Partner: A bar partner allowed to override order status.
    - StatusChange: One audit record for a status mutation.
    - StatusUpdateRequest / PartnerStatusUpdate: Status change payloads.
    - TrackingView: Order plus derived tracking information.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ValidationError

# Allowed rounding slack when checking total = subtotal + deliveryFee
MONEY_TOLERANCE = 0.005


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELED = "canceled"


def parse_status(value) -> OrderStatus:
    """
    Converts a raw status value into an OrderStatus.

    Raises:
        ValidationError: If the value is not one of the known statuses.
    """
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValidationError(
            "Invalid status",
            [{"field": "status", "message": f"'{value}' is not one of: {allowed}"}],
        )


class OrderItem(BaseModel):
    """
    Represents a single cocktail in an order.

    Attributes:
        id (int): Cocktail identifier from the catalog.
        name (str): Display name of the cocktail.
        price (float): Unit price in currency units.
        barName (str): Name of the partner bar preparing the cocktail.
        imageUrl (str): Picture shown in the order summary.
        quantity (int): Number of units. Must be at least one.
    """
    id: int
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    barName: str
    imageUrl: str = ""
    quantity: int = Field(..., ge=1)


class NewOrderRequest(BaseModel):
    """
    Represents a new order placed at checkout.

    Tax, if any, is already folded into `subtotal` by the caller.

    Attributes:
        userId (str): Opaque customer identifier.
        items (List[OrderItem]): Ordered line items, at least one.
        subtotal (float): Sum of the line items.
        deliveryFee (float): Delivery charge.
        total (float): Must equal subtotal + deliveryFee.
        status (OrderStatus): Optional, must be 'pending' when given.
        deliveryAddress (str): Free-text delivery address.
        deliveryTime (datetime): Target delivery time chosen at checkout.
    """
    userId: str = Field(..., min_length=1)
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float = Field(..., gt=0)
    deliveryFee: float = Field(..., gt=0)
    total: float = Field(..., gt=0)
    status: OrderStatus = OrderStatus.PENDING
    deliveryAddress: str
    deliveryTime: datetime

    @field_validator("deliveryAddress")
    @classmethod
    def address_not_blank(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("deliveryAddress must not be blank")
        return value

    @field_validator("deliveryTime")
    @classmethod
    def delivery_time_utc(cls, value):
        # Naive times are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("status")
    @classmethod
    def status_is_initial(cls, value):
        if value != OrderStatus.PENDING:
            raise ValueError("new orders must start as 'pending'")
        return value

    @model_validator(mode="after")
    def total_matches(self):
        if abs(self.subtotal + self.deliveryFee - self.total) > MONEY_TOLERANCE:
            raise ValueError("total must equal subtotal + deliveryFee")
        return self


class Order(BaseModel):
    """A persisted order. Only `status` changes after creation."""
    id: int
    userId: str
    items: List[OrderItem]
    subtotal: float
    deliveryFee: float
    total: float
    status: OrderStatus
    deliveryAddress: str
    deliveryTime: datetime
    createdAt: datetime

    def has_bar(self, bar_name: str) -> bool:
        return any(item.barName == bar_name for item in self.items)


class Partner(BaseModel):
    """A bar partner, resolved from its API key."""
    barName: str

    @property
    def actor(self) -> str:
        return f"partner:{self.barName}"


class StatusChange(BaseModel):
    """
    Audit record for one status mutation.

    `source` is 'lifecycle' for validated transitions and 'override' for the
    partner force-update.
    """
    orderId: int
    fromStatus: OrderStatus
    toStatus: OrderStatus
    source: Literal["lifecycle", "override"]
    actor: Optional[str] = None
    reason: Optional[str] = None
    changedAt: datetime


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None


class PartnerStatusUpdate(BaseModel):
    status: Optional[str] = None
    reason: Optional[str] = None


class TrackingView(BaseModel):
    """
    What the tracking page shows for one order.

    Attributes:
        order (Order): Current order state.
        estimatedDelivery (str): Live ETA text, e.g. '7:45 PM' or 'Delivered'.
        progress (int): Progress bar percentage.
        nextStatuses (List[OrderStatus]): Statuses the order may move to next.
    """
    order: Order
    estimatedDelivery: str
    progress: int
    nextStatuses: List[OrderStatus]
