"""Common type definitions for orderflow."""

from typing import TypeVar

from pydantic import BaseModel

# Type variable for aggregate state
TState = TypeVar("TState", bound=BaseModel)
