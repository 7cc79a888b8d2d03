"""
Shared test fixtures for orderflow.

Usage:
    from tests.fixtures import make_address, make_services, PRODUCTS
"""

from tests.fixtures.builders import (
    INITIAL_STOCK,
    PRODUCTS,
    make_address,
    make_config,
    make_line,
    make_services,
    place_order,
    placed_order,
)

__all__ = [
    "INITIAL_STOCK",
    "PRODUCTS",
    "make_address",
    "make_config",
    "make_line",
    "make_services",
    "place_order",
    "placed_order",
]
