"""Aggregate base classes and repository."""

from orderflow.aggregates.base import AggregateRoot, DeclarativeAggregate
from orderflow.aggregates.repository import AggregateRepository

__all__ = [
    "AggregateRepository",
    "AggregateRoot",
    "DeclarativeAggregate",
]
