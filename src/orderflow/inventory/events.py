"""Events recorded on an inventory ledger stream."""

from pydantic import Field

from orderflow.events.base import DomainEvent
from orderflow.events.registry import register_event

LEDGER_AGGREGATE_TYPE = "InventoryLedger"


class LedgerEvent(DomainEvent):
    aggregate_type: str = LEDGER_AGGREGATE_TYPE
    product_id: str


@register_event
class StockReceived(LedgerEvent):
    """Units added to the product's total and available counts."""

    quantity: int = Field(gt=0)


@register_event
class StockWrittenOff(LedgerEvent):
    """Available units removed from stock (damaged, lost, delisted)."""

    quantity: int = Field(gt=0)
    reason: str = ""


@register_event
class StockReserved(LedgerEvent):
    """Units moved from available to reserved under a named hold."""

    reservation_id: str
    quantity: int = Field(gt=0)


@register_event
class StockReleased(LedgerEvent):
    """A hold returned to available stock."""

    reservation_id: str
    quantity: int = Field(gt=0)


@register_event
class StockFinalized(LedgerEvent):
    """A hold moved out of reserved into sold. Irreversible."""

    reservation_id: str
    quantity: int = Field(gt=0)
