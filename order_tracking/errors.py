"""
errors.py — Error Taxonomy of the Order Tracking Service

Store and lifecycle errors propagate to the REST layer, which maps them to
HTTP responses (see `main.py`). Transport errors stay inside the notification
hub and only ever affect a single connection.
"""


class OrderServiceError(Exception):
    """Base class for all errors raised by this service."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"message": self.message}


class ValidationError(OrderServiceError):
    """
    Malformed or missing input.

    Attributes:
        errors (list[dict]): Field-level details, each with 'field' and 'message'.
    """

    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self):
        return {"message": self.message, "errors": self.errors}


class NotFoundError(OrderServiceError):
    """A referenced order (or other resource) does not exist."""

    status_code = 404

    def __init__(self, resource, key):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.key = key


class InvalidTransitionError(OrderServiceError):
    """The requested status change is not permitted from the current status."""

    status_code = 409

    def __init__(self, order_id, current, target):
        super().__init__(f"Cannot change order {order_id} from '{current}' to '{target}'")
        self.order_id = order_id
        self.current = current
        self.target = target

    def to_dict(self):
        return {"message": self.message, "from": self.current, "to": self.target}


class AuthorizationError(OrderServiceError):
    """The caller is not allowed to use a privileged operation."""

    status_code = 403


class TransportError(OrderServiceError):
    """Sending to or receiving from one realtime connection failed."""

    def __init__(self, connection_id, message):
        super().__init__(f"[Conn: {connection_id}] {message}")
        self.connection_id = connection_id
