"""Shared helpers for the forecasting analytics.

Money stays in :class:`~decimal.Decimal` from parsing through summation;
floats only appear for probabilities, ratios and day counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

ZERO = Decimal("0")
SECONDS_PER_DAY = 86_400
# amounts are stored as Numeric(15, 2); more integer digits than that is corrupt data
MAX_AMOUNT_DIGITS = 15


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` window."""
    start: datetime
    end: datetime

    @property
    def days(self) -> float:
        """Length of the window in fractional days (may be <= 0)."""
        return days_between(self.start, self.end)

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        moment = as_utc(moment)
        return as_utc(self.start) <= moment <= as_utc(self.end)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(val: datetime | None) -> datetime | None:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if val is None:
        return None
    if val.tzinfo is None:
        return val.replace(tzinfo=timezone.utc)
    return val.astimezone(timezone.utc)


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from *start* to *end* (negative if end is earlier)."""
    return (as_utc(end) - as_utc(start)).total_seconds() / SECONDS_PER_DAY


def safe_decimal(val) -> Decimal:
    """Parse a stored amount; missing or malformed amounts count as zero."""
    if val is None or isinstance(val, bool):
        return ZERO
    if isinstance(val, Decimal):
        parsed = val
    else:
        try:
            parsed = Decimal(str(val).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not parsed.is_finite() or parsed.adjusted() >= MAX_AMOUNT_DIGITS:
        return ZERO
    return parsed


def parse_probability(val) -> float | None:
    """Convert a 0-100 override into a 0-1 probability.

    Returns None when no usable override is present, so callers fall back
    to the stage default.  Out-of-range values are clamped.
    """
    if val is None or isinstance(val, bool):
        return None
    try:
        pct = float(val)
    except (TypeError, ValueError, OverflowError):
        return None
    if pct != pct:  # NaN
        return None
    return max(0.0, min(pct / 100.0, 1.0))


def weighted(amount: Decimal, factor: float) -> Decimal:
    """Scale a money amount by a probability/ratio without leaving Decimal."""
    return amount * Decimal(repr(float(factor)))


def ratio(numerator: float, denominator: float) -> float:
    """Division that yields 0.0 for an empty denominator."""
    return numerator / denominator if denominator else 0.0
