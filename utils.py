# utils.py
# Utility functions supporting the trading simulation:
# - Unique id generation for orders and transactions
# - Millisecond timestamps
# - Side / order-kind vocabulary shared by every module
# - Decimal conversion for cash amounts

import itertools    # For the per-process sequence counter
import time         # For timestamps
import uuid         # For ids that stay unique across sessions sharing a store
from decimal import Decimal
from enum import Enum

from errors import InvalidSide

# Monotonic counter mixed into ids so two ids minted in the same ms still sort
_id_seq = itertools.count(1)


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


def get_next_id(prefix=""):
    """Return a new unique id string."""
    return f"{prefix}{current_timestamp_ms():x}-{next(_id_seq):x}-{uuid.uuid4().hex[:8]}"


def current_timestamp_ms():
    """Return the current wall-clock time in integer milliseconds."""
    return time.time_ns() // 1_000_000


def coerce_side(value) -> Side:
    """Accept a Side, 'BUY'/'SELL' or the short forms 'B'/'S' (any case)."""
    if isinstance(value, Side):
        return value
    text = str(value).strip().upper()
    if text in ("B", "BUY"):
        return Side.BUY
    if text in ("S", "SELL"):
        return Side.SELL
    raise InvalidSide(value)


def to_money(value) -> Decimal:
    """
    Convert a price or amount to Decimal without picking up binary float noise.
    Floats go through their shortest repr, so 12.5 becomes Decimal('12.5').
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)
