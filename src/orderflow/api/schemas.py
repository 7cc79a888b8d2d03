"""Request bodies of the HTTP API. camelCase and snake_case keys are both accepted."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from orderflow.orders.models import OrderStatus, PaymentMethod, PostalAddress
from orderflow.orders.service import OrderLineRequest, TrackingUpdate


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateOrderRequest(RequestModel):
    items: list[OrderLineRequest] = Field(min_length=1)
    shipping_address: PostalAddress
    billing_address: PostalAddress | None = None
    payment_method: PaymentMethod
    notes: str | None = None


class CancelOrderRequest(RequestModel):
    reason: str = "Cancelled by customer"


class UpdateStatusRequest(RequestModel):
    status: OrderStatus
    comment: str = ""
    tracking: TrackingUpdate | None = None


class AddNoteRequest(RequestModel):
    audience: Literal["customer", "admin"] = "customer"
    text: str = Field(min_length=1)
