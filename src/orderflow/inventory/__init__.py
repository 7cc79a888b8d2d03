"""Inventory ledgers and the reservation manager."""

from orderflow.inventory.events import (
    StockFinalized,
    StockReceived,
    StockReleased,
    StockReserved,
    StockWrittenOff,
)
from orderflow.inventory.ledger import InventoryLedger, StockLevels, ledger_id_for
from orderflow.inventory.reservations import Reservation, ReservationManager

__all__ = [
    "InventoryLedger",
    "Reservation",
    "ReservationManager",
    "StockFinalized",
    "StockLevels",
    "StockReceived",
    "StockReleased",
    "StockReserved",
    "StockWrittenOff",
    "ledger_id_for",
]
