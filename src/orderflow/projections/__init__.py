"""Read models built from order events."""

from orderflow.projections.base import DeclarativeProjection
from orderflow.projections.directory import OrderDirectory, OrderSummary, Page, StatusStats
from orderflow.projections.sales import SellerSales, SellerSalesProjection

__all__ = [
    "DeclarativeProjection",
    "OrderDirectory",
    "OrderSummary",
    "Page",
    "SellerSales",
    "SellerSalesProjection",
    "StatusStats",
]
