"""
protocol.py — Realtime Tracking Wire Messages

JSON text messages exchanged on the `/ws` channel:

    Client → Hub:  {"type": "register", "userId": "<str>", "orderId": <int>}
    Hub → Client:  {"type": "orderUpdate", "order": <Order>}

These shapes are shared with the existing web client and must not change.
"""

import json
from typing import Literal

from pydantic import BaseModel, field_validator

from .errors import ValidationError
from .models import Order


class RegisterMessage(BaseModel):
    """A client's request to follow one order."""
    type: Literal["register"]
    userId: str
    orderId: int

    @field_validator("userId", mode="before")
    @classmethod
    def user_id_as_text(cls, value):
        # Some clients send numeric user ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class OrderUpdateMessage(BaseModel):
    """Current state of an order, pushed to subscribers."""
    type: Literal["orderUpdate"] = "orderUpdate"
    order: Order


def parse_client_message(raw: str) -> RegisterMessage:
    """
    Decodes one inbound text frame.

    Raises:
        ValidationError: If the frame is not JSON or not a valid register message.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Message is not valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Message must be a JSON object")
    if data.get("type") != "register":
        raise ValidationError(f"Unsupported message type: {data.get('type')!r}")
    try:
        return RegisterMessage.model_validate(data)
    except ValueError as e:
        raise ValidationError("Invalid register message", [{"field": "body", "message": str(e)}])


def encode_order_update(order: Order) -> str:
    return OrderUpdateMessage(order=order).model_dump_json()
