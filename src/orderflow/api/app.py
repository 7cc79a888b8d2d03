"""
HTTP API.

Every response uses the same envelope: ``{"success": true, "data": ...}``
on success and ``{"success": false, "message": ..., "errors": [...]}`` on
failure. The caller's identity arrives in the ``X-Actor-Id`` header;
authenticating it is the job of the gateway in front of this service.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from fastapi import FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderflow.api.schemas import (
    AddNoteRequest,
    CancelOrderRequest,
    CreateOrderRequest,
    UpdateStatusRequest,
)
from orderflow.config import OrderflowConfig
from orderflow.container import Services, build_services
from orderflow.exceptions import (
    Forbidden,
    GatewayUnavailable,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    OptimisticLockError,
    OrderflowError,
    ReservationConflict,
    SignatureMismatch,
    ValidationFailure,
)
from orderflow.orders.models import OrderStatus
from orderflow.payments.models import PaymentCallback

logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"

_STATUS_CODES: list[tuple[type[OrderflowError], int]] = [
    (ValidationFailure, 400),
    (SignatureMismatch, 400),
    (InsufficientStock, 409),
    (InvalidTransition, 409),
    (OptimisticLockError, 409),
    (ReservationConflict, 409),
    (Forbidden, 403),
    (NotFound, 404),
    (GatewayUnavailable, 503),
]


def _ok(data: Any, message: str | None = None, status_code: int = 200) -> JSONResponse:
    content: dict[str, Any] = {"success": True, "data": jsonable_encoder(data)}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def _error(
    status_code: int,
    message: str,
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if errors:
        content["errors"] = jsonable_encoder(errors)
    return JSONResponse(status_code=status_code, content=content)


def _error_details(exc: OrderflowError) -> list[dict[str, Any]] | None:
    if isinstance(exc, ValidationFailure):
        return exc.errors
    if isinstance(exc, InsufficientStock):
        return [exc.to_error()]
    if isinstance(exc, InvalidTransition):
        return [{"field": "status", "current": exc.current, "allowed": exc.allowed}]
    if isinstance(exc, SignatureMismatch):
        return [{"field": "signature", "step": exc.step}]
    if isinstance(exc, Forbidden):
        return [{"field": "X-Actor-Id", "action": exc.action}]
    return None


def _require_actor(actor_id: str | None) -> str:
    if not actor_id:
        raise ValidationFailure(
            "X-Actor-Id header is required",
            [{"field": "X-Actor-Id", "message": "missing"}],
        )
    return actor_id


def _services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services | None = None, config: OrderflowConfig | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    With ``services`` the app serves those components and leaves their
    lifecycle to the caller; without, it builds them from ``config`` (or
    the environment) on startup and closes them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if services is not None:
            yield
            return
        built = await build_services(config or OrderflowConfig.from_env())
        app.state.services = built
        try:
            yield
        finally:
            await built.close()

    app = FastAPI(title="orderflow", lifespan=lifespan)
    # Injected services are usable without running the lifespan (test clients)
    if services is not None:
        app.state.services = services

    @app.exception_handler(OrderflowError)
    async def handle_orderflow_error(request: Request, exc: OrderflowError) -> JSONResponse:
        for error_type, status_code in _STATUS_CODES:
            if isinstance(exc, error_type):
                return _error(status_code, str(exc), _error_details(exc))
        logger.error("Unhandled orderflow error", exc_info=exc)
        return _error(500, "Internal server error")

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]),
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return _error(400, "Validation failed", errors)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    @app.post("/orders")
    async def create_order(
        body: CreateOrderRequest,
        request: Request,
        x_actor_id: str | None = Header(default=None),
    ) -> JSONResponse:
        customer_id = _require_actor(x_actor_id)
        placed = await _services(request).order_service.create_order(
            customer_id=customer_id,
            items=body.items,
            shipping_address=body.shipping_address,
            billing_address=body.billing_address,
            payment_method=body.payment_method,
            notes=body.notes,
            actor_id=customer_id,
        )
        message = "Order created successfully"
        if placed.payment_error:
            message = "Order created; payment could not be started, retry payment"
        return _ok(placed.model_dump(mode="json"), message, status_code=201)

    @app.get("/orders/stats")
    async def order_stats(request: Request) -> JSONResponse:
        stats = await _services(request).order_service.order_stats()
        return _ok({status.value: value.model_dump(mode="json") for status, value in stats.items()})

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, request: Request) -> JSONResponse:
        order = await _services(request).order_service.get_order(order_id)
        return _ok(order.model_dump(mode="json"))

    @app.patch("/orders/{order_id}/cancel")
    async def cancel_order(
        order_id: str,
        request: Request,
        body: CancelOrderRequest | None = None,
        x_actor_id: str | None = Header(default=None),
    ) -> JSONResponse:
        reason = body.reason if body else CancelOrderRequest().reason
        order = await _services(request).order_service.cancel_order(
            order_id, _require_actor(x_actor_id), reason
        )
        return _ok(order.model_dump(mode="json"), "Order cancelled successfully")

    @app.patch("/orders/{order_id}/status")
    async def update_status(
        order_id: str,
        body: UpdateStatusRequest,
        request: Request,
        x_actor_id: str | None = Header(default=None),
    ) -> JSONResponse:
        order = await _services(request).order_service.update_status(
            order_id,
            body.status,
            _require_actor(x_actor_id),
            body.comment,
            body.tracking,
        )
        return _ok(order.model_dump(mode="json"), "Order status updated successfully")

    @app.post("/orders/{order_id}/payment-intent")
    async def retry_payment_intent(order_id: str, request: Request) -> JSONResponse:
        intent = await _services(request).order_service.retry_payment_intent(order_id)
        return _ok(intent.model_dump(mode="json"))

    @app.post("/orders/{order_id}/notes")
    async def add_note(
        order_id: str,
        body: AddNoteRequest,
        request: Request,
        x_actor_id: str | None = Header(default=None),
    ) -> JSONResponse:
        order = await _services(request).order_service.add_note(
            order_id, body.audience, body.text, _require_actor(x_actor_id)
        )
        return _ok(order.model_dump(mode="json"), "Note added")

    @app.get("/customers/{customer_id}/orders")
    async def customer_orders(
        customer_id: str,
        request: Request,
        status: OrderStatus | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ) -> JSONResponse:
        result = await _services(request).order_service.list_customer_orders(
            customer_id, status, page, limit
        )
        return _ok({**result.model_dump(mode="json"), "pages": result.pages})

    @app.get("/sellers/{seller_id}/orders")
    async def seller_orders(
        seller_id: str,
        request: Request,
        status: OrderStatus | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ) -> JSONResponse:
        result = await _services(request).order_service.list_seller_orders(
            seller_id, status, page, limit
        )
        return _ok({**result.model_dump(mode="json"), "pages": result.pages})

    @app.get("/sellers/{seller_id}/sales")
    async def seller_sales(seller_id: str, request: Request) -> JSONResponse:
        sales = await _services(request).order_service.seller_sales(seller_id)
        return _ok(sales.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @app.post("/payments/verify")
    async def verify_payment(
        body: PaymentCallback,
        request: Request,
        x_actor_id: str | None = Header(default=None),
    ) -> JSONResponse:
        order = await _services(request).payments.verify(body, actor_id=x_actor_id)
        return _ok(order.model_dump(mode="json"), "Payment verified successfully")

    @app.post("/payments/webhook")
    async def payment_webhook(request: Request) -> JSONResponse:
        raw_body = await request.body()
        signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
        result = await _services(request).payments.handle_webhook(raw_body, signature)
        return _ok(result.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    @app.post("/maintenance/expire-orders")
    async def expire_orders(request: Request) -> JSONResponse:
        expired: list[UUID] = await _services(request).order_service.expire_stale_orders()
        return _ok({"orders": [str(order_id) for order_id in expired], "count": len(expired)})

    return app
