"""
main.py — FastAPI Entry Point for the Order Tracking Service

This module provides the REST API and the realtime tracking channel for
cocktail delivery orders.

Responsibilities:
    • Create and look up orders
    • Change order status through the lifecycle manager
    • Offer partners an audited status override and an order listing per bar
    • Serve the `/ws` tracking channel backed by the notification hub
    • Provide system health information
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import load_settings
from .errors import AuthorizationError, OrderServiceError, ValidationError
from .hub import NotificationHub, WebSocketConnection
from .lifecycle import LifecycleManager
from .logging_config import get_logger, setup_logging
from .models import NewOrderRequest, Order, Partner, PartnerStatusUpdate, StatusChange, StatusUpdateRequest, TrackingView
from .store import OrderStore, create_store

log = get_logger(__name__)


def create_app(settings=None, store: Optional[OrderStore] = None) -> FastAPI:
    """
    Builds the application with its own store, hub and lifecycle manager.

    Args:
        settings (Settings | None): Defaults to the environment.
        store (OrderStore | None): Defaults to the store selected by `settings`.

    Returns:
        FastAPI: The configured application. Components are reachable on
        `app.state.store`, `app.state.hub` and `app.state.lifecycle`.
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_file)

    store = store or create_store(settings)
    hub = NotificationHub(store)
    lifecycle = LifecycleManager(store, hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Order tracking service starting ({store.name} store)...")
        yield
        log.info("Order tracking service shutting down.")
        store.close()

    app = FastAPI(title="Mixtr Order Tracking", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.hub = hub
    app.state.lifecycle = lifecycle

    register_error_handlers(app)
    register_routes(app)
    return app


# Dependencies
def get_store(request: Request) -> OrderStore:
    return request.app.state.store


def get_lifecycle(request: Request) -> LifecycleManager:
    return request.app.state.lifecycle


def require_partner(request: Request, x_partner_key: Optional[str] = Header(None)) -> Partner:
    """
    Resolves the partner behind `X-Partner-Key`.

    Returns:
        Partner: The bar the key belongs to.

    Raises:
        AuthorizationError: If the key is missing or unknown.
    """
    bar_name = request.app.state.settings.partner_keys.get(x_partner_key) if x_partner_key else None
    if bar_name is None:
        raise AuthorizationError("Partner key missing or invalid")
    return Partner(barName=bar_name)


def register_error_handlers(app: FastAPI) -> None:
    """Maps service errors to HTTP responses."""

    @app.exception_handler(OrderServiceError)
    async def service_error_handler(request: Request, exc: OrderServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err["loc"][1:]) or "body", "message": err["msg"]}
            for err in exc.errors()
        ]
        log.info(f"Rejected request to {request.url.path}: {errors}")
        return JSONResponse(status_code=400, content={"message": "Invalid request data", "errors": errors})


def register_routes(app: FastAPI) -> None:

    # Routes that only touch the store are plain `def`, so FastAPI runs their
    # blocking store calls in its threadpool.
    @app.post("/api/orders", status_code=201, response_model=Order)
    def create_order(order: NewOrderRequest, store: OrderStore = Depends(get_store)):
        """
        Receives a new order from checkout and stores it as 'pending'.

        No notification is sent; nobody can be subscribed to a brand-new order.
        """
        created = store.create_order(order)
        log.info(f"[Order: {created.id}] Created for user {created.userId} ({len(created.items)} item(s), total {created.total:.2f}).")
        return created

    @app.get("/api/orders/{order_id}", response_model=Order)
    def get_order(order_id: int, lifecycle: LifecycleManager = Depends(get_lifecycle)):
        return lifecycle.get_order(order_id)

    @app.get("/api/user/{user_id}/orders", response_model=List[Order])
    def get_orders_by_user(user_id: str, store: OrderStore = Depends(get_store)):
        return store.get_orders_by_user(user_id)

    @app.patch("/api/orders/{order_id}/status", response_model=Order)
    async def update_order_status(
            order_id: int,
            body: StatusUpdateRequest,
            lifecycle: LifecycleManager = Depends(get_lifecycle),
    ):
        """
        Changes the status of an order through the state machine.

        Returns 400 if no status is given or it is unknown, 404 if the order
        does not exist and 409 if the transition is not allowed.
        """
        if not body.status:
            raise ValidationError("Status is required", [{"field": "status", "message": "field required"}])
        return await lifecycle.transition(order_id, body.status)

    @app.get("/api/orders/{order_id}/tracking", response_model=TrackingView)
    def get_tracking(order_id: int, lifecycle: LifecycleManager = Depends(get_lifecycle)):
        return lifecycle.tracking_view(order_id)

    @app.get("/api/orders/{order_id}/history", response_model=List[StatusChange])
    def get_history(order_id: int, lifecycle: LifecycleManager = Depends(get_lifecycle)):
        lifecycle.get_order(order_id)
        return lifecycle.store.get_status_history(order_id)

    @app.get("/api/partner/orders", response_model=List[Order])
    def get_partner_orders(
            barName: Optional[str] = None,
            store: OrderStore = Depends(get_store),
            partner: Partner = Depends(require_partner),
    ):
        """
        Orders containing at least one cocktail from the partner's own bar.

        `barName` may be given but must name that bar; 403 otherwise.
        """
        if barName is not None and barName != partner.barName:
            raise AuthorizationError("Not authorized to view orders of another bar")
        return [o for o in store.list_orders() if o.has_bar(partner.barName)]

    @app.patch("/api/partner/orders/{order_id}/status", response_model=Order)
    async def force_order_status(
            order_id: int,
            body: PartnerStatusUpdate,
            lifecycle: LifecycleManager = Depends(get_lifecycle),
            partner: Partner = Depends(require_partner),
    ):
        """
        Privileged override: sets any status, skipping the transition table.
        Only orders with an item from the partner's bar may be changed (403
        otherwise). Every use is recorded in the order history with source
        'override' and the partner as actor.
        """
        if not body.status:
            raise ValidationError("Status is required", [{"field": "status", "message": "field required"}])
        return await lifecycle.force_status(
            order_id, body.status, actor=partner.actor, reason=body.reason, bar_name=partner.barName,
        )

    @app.get("/health")
    def health_check(request: Request):
        """
        Simple health check endpoint for monitoring systems and container
        orchestrators.
        """
        return {
            "status": "ok",
            "store": request.app.state.store.name,
            "connections": request.app.state.hub.subscriber_count(),
        }

    @app.websocket("/ws")
    async def tracking_socket(websocket: WebSocket):
        """
        Realtime tracking channel.

        The client sends `register` after the connection opens; updates for
        that order are pushed until the connection closes.
        """
        hub: NotificationHub = websocket.app.state.hub
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        log.info(f"[Conn: {connection.connection_id}] Tracking connection opened.")
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    log.warning(f"[Conn: {connection.connection_id}] Ignoring binary frame.")
                    continue
                await hub.handle_message(connection, raw)
        except WebSocketDisconnect:
            log.info(f"[Conn: {connection.connection_id}] Tracking connection closed by client.")
        finally:
            hub.disconnect(connection)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
