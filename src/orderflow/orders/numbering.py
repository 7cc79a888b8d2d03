"""Human-readable order numbers: ``ORD`` + ``YYYYMMDD`` + 6 random characters."""

import re
import secrets
import string
from collections.abc import Callable
from datetime import UTC, datetime

ORDER_NUMBER_PREFIX = "ORD"
_ALPHABET = string.ascii_uppercase + string.digits
_SUFFIX_LENGTH = 6
ORDER_NUMBER_PATTERN = re.compile(r"^ORD\d{8}[A-Z0-9]{6}$")


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}{now:%Y%m%d}{suffix}"


def unique_order_number(
    is_taken: Callable[[str], bool], now: datetime | None = None, max_attempts: int = 10
) -> str:
    """
    Generate an order number that ``is_taken`` does not already know.

    Raises:
        RuntimeError: If every attempt collided
    """
    for _ in range(max_attempts):
        number = generate_order_number(now)
        if not is_taken(number):
            return number
    raise RuntimeError(f"Could not generate a unique order number in {max_attempts} attempts")


def is_order_number(value: str) -> bool:
    return bool(ORDER_NUMBER_PATTERN.match(value))
