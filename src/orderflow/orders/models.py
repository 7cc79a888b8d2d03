"""Value objects of the order aggregate."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    COD = "cod"

    @property
    def is_online(self) -> bool:
        """True for methods settled through the payment gateway."""
        return self is not PaymentMethod.COD


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReservationState(str, Enum):
    HELD = "held"
    RELEASED = "released"
    FINALIZED = "finalized"


class LineItem(BaseModel):
    """One purchased product. Prices come from the catalog, never from the client."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    seller_id: str
    name: str = ""
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    variant_selector: dict[str, str] | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class PostalAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    line1: str = Field(min_length=1)
    line2: str = ""
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = "India"


class PriceBreakdown(BaseModel):
    """
    Amounts computed once when the order is placed.

    ``total = subtotal + shipping + tax - discount`` always holds.
    """

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Field(ge=0)
    shipping: Decimal = Field(ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(ge=0)
    total: Decimal = Field(ge=0)

    @model_validator(mode="after")
    def _total_adds_up(self) -> "PriceBreakdown":
        expected = self.subtotal + self.shipping + self.tax - self.discount
        if self.total != expected:
            raise ValueError(f"total {self.total} does not equal computed amount {expected}")
        return self


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    gateway_order_ref: str | None = None
    gateway_payment_ref: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    refund_ref: str | None = None


class StatusEntry(BaseModel):
    """One entry of the append-only status history."""

    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    comment: str = ""
    actor: str | None = None
    timestamp: datetime


class Cancellation(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str
    actor: str | None = None
    timestamp: datetime
    refund_status: RefundStatus = RefundStatus.NOT_REQUIRED


class TrackingInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    carrier: str = ""
    tracking_number: str = ""
    tracking_url: str = ""
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None


class OrderNotes(BaseModel):
    model_config = ConfigDict(frozen=True)

    customer: str = ""
    admin: str = ""
