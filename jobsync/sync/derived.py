"""Pure derived-field calculations for fact rows.

No I/O here; everything takes plain values so it can be unit tested
directly and reused by both the live and backfill paths.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, TypeVar

from jobsync.source.documents import RateEntry
from jobsync.sync.constants import CUBIC_METERS_TO_TONNES, TANDEM_TONNES_PER_LOAD

R = TypeVar("R", bound=RateEntry)

_CENTS = Decimal("0.01")
_SECONDS_PER_HOUR = Decimal(3600)


def quantize(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[Decimal]:
    """Absolute duration in hours, or None when either bound is missing."""
    if start is None or end is None:
        return None
    seconds = Decimal(str(abs((end - start).total_seconds())))
    return quantize(seconds / _SECONDS_PER_HOUR)


def to_tonnes(
    quantity: Decimal, unit: Optional[str], vehicle_type: Optional[str] = None
) -> Optional[Decimal]:
    """Normalise a shipped quantity to tonnes.

    Returns None for units that do not convert; those rows are excluded
    from tonnage aggregation rather than counted as zero.
    """
    normalized = (unit or "").strip().lower()
    if normalized == "tonnes":
        return quantity
    if normalized == "loads":
        if vehicle_type and "tandem" in vehicle_type.lower():
            return quantity * TANDEM_TONNES_PER_LOAD
        return None
    if normalized == "m3":
        return quantity * CUBIC_METERS_TO_TONNES
    return None


def select_rate_for_date(rates: Iterable[R], on: datetime) -> Optional[R]:
    """Latest rate entry effective on or before ``on``."""
    best: Optional[R] = None
    for entry in rates:
        if entry.date <= on and (best is None or entry.date >= best.date):
            best = entry
    return best


def invoice_type(internal: bool, accrual: bool) -> str:
    if accrual:
        return "accrual"
    if internal:
        return "internal"
    return "external"


def is_quantity_rate(rate_type: Optional[str]) -> bool:
    return (rate_type or "").lower() == "quantity"


def trucking_cost(
    rate: Decimal,
    rate_type: Optional[str],
    quantity: Decimal,
    hours: Optional[Decimal],
) -> Decimal:
    """``quantity x rate`` for quantity-based rates, ``hours x rate`` otherwise."""
    if is_quantity_rate(rate_type):
        return quantize(quantity * rate)
    return quantize((hours or Decimal(0)) * rate)
