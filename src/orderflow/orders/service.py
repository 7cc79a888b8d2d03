"""
Order Service.

The workflow layer over the order aggregate. Placing an order reserves
stock before anything is persisted and gives the stock back if the
order cannot be saved; the gateway is only contacted once the order
exists, so a gateway outage leaves a pending order the buyer can retry
and the expiry sweep can clean up.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from orderflow.catalog import Catalog
from orderflow.config import OrderflowConfig
from orderflow.exceptions import (
    Forbidden,
    GatewayUnavailable,
    NotFound,
    OrderflowError,
    ValidationFailure,
)
from orderflow.inventory.reservations import Reservation, ReservationManager
from orderflow.observability import Tracer, create_tracer
from orderflow.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_CUSTOMER_ID,
    ATTR_LINE_COUNT,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_PAYMENT_METHOD,
)
from orderflow.orders.aggregate import OrderState
from orderflow.orders.models import (
    LineItem,
    OrderStatus,
    PaymentMethod,
    PostalAddress,
    RefundStatus,
    ReservationState,
)
from orderflow.orders.numbering import unique_order_number
from orderflow.orders.pricing import PricingPolicy, compute_pricing
from orderflow.orders.repository import OrderRepository
from orderflow.orders.state_machine import ensure_transition
from orderflow.payments.coordinator import PaymentCoordinator
from orderflow.payments.models import GatewayIntent
from orderflow.projections.directory import OrderDirectory, OrderSummary, Page, StatusStats
from orderflow.projections.sales import SellerSales, SellerSalesProjection

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class OrderLineRequest(BaseModel):
    """A line as the buyer submits it: no prices, those come from the catalog."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    product_id: str = Field(min_length=1, alias="productId")
    quantity: int = Field(ge=1)
    variant_selector: dict[str, str] | None = Field(default=None, alias="variantSelector")


class TrackingUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    carrier: str = ""
    tracking_number: str = Field(default="", alias="trackingNumber")
    tracking_url: str = Field(default="", alias="trackingUrl")
    estimated_delivery: datetime | None = Field(default=None, alias="estimatedDelivery")


class PlacedOrder(BaseModel):
    """
    Result of placing an order.

    ``payment_error`` is set when the order was saved but no payment
    intent could be opened; the order stays pending.
    """

    order: OrderState
    payment_intent: GatewayIntent | None = None
    payment_error: str | None = None


class OrderService:
    """
    Example:
        >>> placed = await service.create_order(
        ...     customer_id="C1",
        ...     items=[OrderLineRequest(product_id="P1", quantity=2)],
        ...     shipping_address=address,
        ...     payment_method=PaymentMethod.UPI,
        ... )
        >>> placed.order.status
        <OrderStatus.PENDING: 'pending'>
    """

    def __init__(
        self,
        *,
        orders: OrderRepository,
        reservations: ReservationManager,
        payments: PaymentCoordinator,
        catalog: Catalog,
        directory: OrderDirectory,
        sales: SellerSalesProjection,
        config: OrderflowConfig,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._orders = orders
        self._reservations = reservations
        self._payments = payments
        self._catalog = catalog
        self._directory = directory
        self._sales = sales
        self._config = config
        self._pricing = PricingPolicy(
            free_shipping_threshold=config.free_shipping_threshold,
            shipping_fee=config.shipping_fee,
            tax_rate=config.tax_rate,
        )

    # -------------------------------------------------------------------------
    # Placing orders
    # -------------------------------------------------------------------------

    async def create_order(
        self,
        customer_id: str,
        items: list[OrderLineRequest],
        shipping_address: PostalAddress,
        payment_method: PaymentMethod,
        billing_address: PostalAddress | None = None,
        discount: Decimal = Decimal("0"),
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> PlacedOrder:
        """
        Place an order.

        Raises:
            ValidationFailure: Empty order, unknown or unavailable product,
                bad discount, or an online total outside the allowed range
            InsufficientStock: A line cannot be reserved; nothing is held
            CatalogUnavailable: The catalog could not be reached
        """
        if not items:
            raise ValidationFailure(
                "Order must contain at least one item",
                [{"field": "items", "message": "must not be empty"}],
            )

        with self._tracer.span(
            "orderflow.orders.create",
            {
                ATTR_CUSTOMER_ID: customer_id,
                ATTR_LINE_COUNT: len(items),
                ATTR_PAYMENT_METHOD: payment_method.value,
            },
        ):
            line_items = await self._price_lines(items)
            pricing = compute_pricing(line_items, discount, self._pricing)
            if payment_method.is_online:
                self._payments.validate_amount(pricing.total)

            await self._directory.catch_up()
            order_number = unique_order_number(
                lambda number: self._directory.find_by_number(number) is not None
            )
            reservation = await self._reservations.reserve(
                order_number,
                [(item.product_id, item.quantity) for item in line_items],
            )

            order_id = uuid4()
            order = self._orders.create_new(order_id)
            try:
                order.place(
                    order_number=order_number,
                    customer_id=customer_id,
                    items=line_items,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                    pricing=pricing,
                    payment_method=payment_method,
                    reservation=reservation,
                    currency=self._config.currency,
                    customer_notes=notes or "",
                )
                await self._orders.save(order)
            except Exception:
                logger.error(
                    "Could not persist order %s; releasing its reservation",
                    order_number,
                    exc_info=True,
                    extra={"order_number": order_number, "customer_id": customer_id},
                )
                await self._release_quietly(reservation)
                raise

            logger.info(
                "Placed order %s for customer %s (%s, total %s)",
                order_number,
                customer_id,
                payment_method.value,
                pricing.total,
                extra={
                    "order_id": str(order_id),
                    "order_number": order_number,
                    "customer_id": customer_id,
                    "total": str(pricing.total),
                },
            )

            if not payment_method.is_online:
                return PlacedOrder(order=await self.get_order(order_id))

            intent: GatewayIntent | None = None
            payment_error: str | None = None
            try:
                intent = await self._payments.initiate(order_id)
            except GatewayUnavailable as e:
                logger.warning(
                    "Order %s saved without a payment intent: %s",
                    order_number,
                    e,
                    extra={"order_id": str(order_id), "operation": e.operation},
                )
                payment_error = str(e)

            return PlacedOrder(
                order=await self.get_order(order_id),
                payment_intent=intent,
                payment_error=payment_error,
            )

    async def retry_payment_intent(self, order_id: UUID | str) -> GatewayIntent:
        """
        Open (or return the open) payment intent of a pending order.

        Raises:
            GatewayUnavailable: If the gateway is still unreachable
        """
        return await self._payments.initiate(await self.resolve(order_id))

    async def _price_lines(self, items: list[OrderLineRequest]) -> list[LineItem]:
        line_items: list[LineItem] = []
        errors: list[dict[str, Any]] = []
        for index, line in enumerate(items):
            product = await self._catalog.get_product(line.product_id)
            if product is None:
                errors.append(
                    {
                        "field": f"items[{index}]",
                        "productId": line.product_id,
                        "message": "Product not found",
                    }
                )
                continue
            if not product.is_purchasable:
                errors.append(
                    {
                        "field": f"items[{index}]",
                        "productId": line.product_id,
                        "message": "Product is not available for purchase",
                    }
                )
                continue
            line_items.append(
                LineItem(
                    product_id=product.product_id,
                    seller_id=product.seller_id,
                    name=product.name,
                    quantity=line.quantity,
                    unit_price=product.price,
                    variant_selector=line.variant_selector,
                )
            )
        if errors:
            raise ValidationFailure("Some products are unavailable", errors)
        return line_items

    # -------------------------------------------------------------------------
    # Reading orders
    # -------------------------------------------------------------------------

    async def resolve(self, order_ref: UUID | str) -> UUID:
        """
        Turn an order id or order number into the order's id.

        Raises:
            NotFound: If no order matches
        """
        if isinstance(order_ref, UUID):
            return order_ref
        await self._directory.catch_up()
        order_id = self._directory.find_by_number(order_ref)
        if order_id is not None:
            return order_id
        try:
            return UUID(order_ref)
        except ValueError:
            raise NotFound("Order", order_ref) from None

    async def get_order(self, order_id: UUID | str) -> OrderState:
        """
        Raises:
            NotFound: If the order does not exist
        """
        order = await self._orders.load(await self.resolve(order_id))
        assert order.state is not None
        return order.state

    async def list_customer_orders(
        self,
        customer_id: str,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[OrderSummary]:
        await self._directory.catch_up()
        return self._directory.customer_orders(customer_id, status, page, limit)

    async def list_seller_orders(
        self,
        seller_id: str,
        status: OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page[OrderSummary]:
        await self._directory.catch_up()
        return self._directory.seller_orders(seller_id, status, page, limit)

    async def order_stats(self) -> dict[OrderStatus, StatusStats]:
        await self._directory.catch_up()
        return self._directory.stats()

    async def seller_sales(self, seller_id: str) -> SellerSales:
        await self._sales.catch_up()
        return self._sales.for_seller(seller_id)

    # -------------------------------------------------------------------------
    # Changing orders
    # -------------------------------------------------------------------------

    def is_admin(self, actor_id: str | None) -> bool:
        return actor_id is not None and actor_id in self._config.admin_actors

    async def cancel_order(
        self,
        order_id: UUID | str,
        actor_id: str | None,
        reason: str = "Cancelled by customer",
    ) -> OrderState:
        """
        Cancel an order before it ships, give its stock back and refund it.

        Only the buyer who placed the order or an admin may cancel it.

        Raises:
            NotFound: If the order does not exist
            Forbidden: If ``actor_id`` is neither the buyer nor an admin
            InvalidTransition: If the order has already shipped or closed
        """
        state = await self.get_order(order_id)
        if actor_id != state.customer_id and not self.is_admin(actor_id):
            raise Forbidden(actor_id, "cancel", state.order_number)
        return await self._cancel(state.order_id, actor_id, reason)

    async def _cancel(self, resolved: UUID, actor_id: str | None, reason: str) -> OrderState:
        with self._tracer.span(
            "orderflow.orders.cancel",
            {ATTR_ORDER_ID: str(resolved), ATTR_ACTOR_ID: actor_id or ""},
        ):
            await self._orders.update(resolved, lambda o: o.cancel(reason, actor_id))
            await self._release_reservation(resolved)
            await self._refund_if_due(resolved, actor_id)

        logger.info(
            "Cancelled order %s: %s",
            resolved,
            reason,
            extra={"order_id": str(resolved), "actor_id": actor_id, "reason": reason},
        )
        return await self.get_order(resolved)

    async def update_status(
        self,
        order_id: UUID | str,
        status: OrderStatus,
        actor_id: str | None,
        comment: str = "",
        tracking: TrackingUpdate | None = None,
    ) -> OrderState:
        """
        Apply a fulfillment update from a seller or admin.

        A seller may only update orders holding at least one of their lines.

        Raises:
            NotFound: If the order does not exist
            Forbidden: If ``actor_id`` sells nothing in the order and is not an admin
            InvalidTransition: If the order cannot move to ``status``
        """
        current = await self.get_order(order_id)
        if actor_id not in current.seller_ids and not self.is_admin(actor_id):
            raise Forbidden(actor_id, "update_status", current.order_number)
        resolved = current.order_id
        if status is OrderStatus.CANCELLED:
            return await self._cancel(resolved, actor_id, comment or "Cancelled by seller")

        with self._tracer.span(
            "orderflow.orders.update_status",
            {ATTR_ORDER_ID: str(resolved), ATTR_ORDER_STATUS: status.value},
        ):
            if status is OrderStatus.CONFIRMED:
                await self._orders.update(resolved, lambda o: o.confirm(actor_id, comment))
            elif status is OrderStatus.PROCESSING:
                await self._orders.update(resolved, lambda o: o.start_processing(actor_id, comment))
            elif status is OrderStatus.SHIPPED:
                info = tracking or TrackingUpdate()
                await self._orders.update(
                    resolved,
                    lambda o: o.ship(
                        actor_id,
                        comment,
                        carrier=info.carrier,
                        tracking_number=info.tracking_number,
                        tracking_url=info.tracking_url,
                        estimated_delivery=info.estimated_delivery,
                    ),
                )
            elif status is OrderStatus.DELIVERED:
                await self._orders.update(resolved, lambda o: o.deliver(actor_id, comment))
                await self._finalize_reservation(resolved)
            elif status is OrderStatus.RETURNED:
                await self._orders.update(
                    resolved, lambda o: o.mark_returned(comment, actor_id)
                )
                await self._refund_if_due(resolved, actor_id)
            else:
                ensure_transition(current.order_number, current.status, status)

        return await self.get_order(resolved)

    async def add_note(
        self,
        order_id: UUID | str,
        audience: Literal["customer", "admin"],
        text: str,
        actor_id: str | None = None,
    ) -> OrderState:
        resolved = await self.resolve(order_id)
        await self._orders.update(resolved, lambda o: o.add_note(audience, text, actor_id))
        return await self.get_order(resolved)

    # -------------------------------------------------------------------------
    # Expiry and reconciliation
    # -------------------------------------------------------------------------

    async def expire_stale_orders(self, now: datetime | None = None) -> list[UUID]:
        """
        Cancel orders left waiting for payment and give their stock back.

        Also releases holds of cancelled orders and finalizes holds of
        delivered orders that an earlier failure left open. Safe to run
        repeatedly and from several processes.

        Returns:
            Ids of the orders whose reservation was released or finalized
        """
        now = now or datetime.now(UTC)
        touched: list[UUID] = []

        await self._directory.catch_up()
        stale = self._directory.stale_orders(
            now,
            self._config.pending_order_expiry,
            self._config.payment_failure_grace,
        )
        for order_id in stale:
            try:
                order = await self._orders.load(order_id)
                state = order.state
                assert state is not None
                if state.status is OrderStatus.PENDING:
                    reason = (
                        "Payment failed"
                        if state.payment.failed_at is not None
                        else "Payment not completed in time"
                    )
                    _, expired = await self._orders.update(
                        order_id, lambda o, r=reason: o.expire(r, SYSTEM_ACTOR)
                    )
                    if not expired:
                        continue
                if await self._release_reservation(order_id):
                    touched.append(order_id)
            except OrderflowError:
                logger.error(
                    "Could not expire order %s",
                    order_id,
                    exc_info=True,
                    extra={"order_id": str(order_id)},
                )

        for order_id in self._directory.unfinalized_orders():
            try:
                if await self._finalize_reservation(order_id):
                    touched.append(order_id)
            except OrderflowError:
                logger.error(
                    "Could not finalize reservation of order %s",
                    order_id,
                    exc_info=True,
                    extra={"order_id": str(order_id)},
                )

        if touched:
            logger.info(
                "Expiry sweep released or finalized %d order(s)",
                len(touched),
                extra={"orders": [str(order_id) for order_id in touched]},
            )
        return touched

    async def _release_reservation(self, order_id: UUID) -> bool:
        order = await self._orders.load(order_id)
        state = order.state
        assert state is not None
        if state.reservation_state is not ReservationState.HELD:
            return False
        units = await self._reservations.release(state.reservation)
        await self._orders.update(order_id, lambda o: o.mark_reservation_released(units))
        return True

    async def _finalize_reservation(self, order_id: UUID) -> bool:
        order = await self._orders.load(order_id)
        state = order.state
        assert state is not None
        if state.reservation_state is not ReservationState.HELD:
            return False
        units = await self._reservations.finalize(state.reservation)
        await self._orders.update(order_id, lambda o: o.mark_reservation_finalized(units))
        return True

    async def _refund_if_due(self, order_id: UUID, actor_id: str | None) -> None:
        state = await self.get_order(order_id)
        if state.refund_status in (RefundStatus.PENDING, RefundStatus.FAILED):
            await self._payments.refund(order_id, actor_id)

    async def _release_quietly(self, reservation: Reservation) -> None:
        try:
            await self._reservations.release(reservation)
        except Exception:
            logger.error(
                "Failed to release reservation %s after a failed order save",
                reservation.reservation_id,
                exc_info=True,
                extra={"reservation_id": reservation.reservation_id},
            )
