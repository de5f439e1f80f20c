"""
Usage forecasting.

Converts pill count and usage rate into days-remaining and depletion-date
estimates.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

from refill_guard.storage.models import InventoryState

# Returned instead of dividing by a zero usage rate: "cannot run out"
DAYS_REMAINING_SENTINEL = 999

CRITICAL_SUPPLY_DAYS = 7
LOW_SUPPLY_DAYS = 14


class SupplyLevel(Enum):
    """Coarse supply status for display."""
    CRITICAL = "critical"
    LOW = "low"
    OK = "ok"


@dataclass(frozen=True)
class Forecast:
    """All forecast figures for one evaluation instant."""
    days_remaining: int
    depletion_date: datetime
    days_remaining_from_last_refill: int
    supply_level: SupplyLevel
    supply_progress: float


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of whole days from start to end, truncated toward zero."""
    if end >= start:
        return (end - start).days
    return -((start - end).days)


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def estimated_days_remaining(state: InventoryState) -> int:
    """Forecast how many days the current pill count lasts.

    Halves round away from zero, so 7.5 days becomes 8. A usage rate of
    zero means the rate is unknown and yields DAYS_REMAINING_SENTINEL.
    """
    if state.daily_usage_rate <= 0:
        return DAYS_REMAINING_SENTINEL
    return _round_half_up(state.current_pill_count / state.daily_usage_rate)


def estimated_depletion_date(state: InventoryState, now: datetime) -> datetime:
    return now + timedelta(days=estimated_days_remaining(state))


def days_remaining_from_last_refill(state: InventoryState, now: datetime) -> int:
    """Forecast anchored at the most recent receipt instead of the live count.

    Total supply at the last refill minus the days elapsed since. Negative
    values mean the refill ran out that many days ago. Falls back to
    estimated_days_remaining when no receipt with a pill count exists.
    """
    if state.daily_usage_rate <= 0:
        return DAYS_REMAINING_SENTINEL

    event = state.last_received_event
    if event is None or event.pill_count is None:
        return estimated_days_remaining(state)

    supply_days = _round_half_up(event.pill_count / state.daily_usage_rate)
    return supply_days - whole_days_between(event.timestamp, now)


def supply_level(state: InventoryState) -> SupplyLevel:
    days = estimated_days_remaining(state)
    if days <= CRITICAL_SUPPLY_DAYS:
        return SupplyLevel.CRITICAL
    if days <= LOW_SUPPLY_DAYS:
        return SupplyLevel.LOW
    return SupplyLevel.OK


def supply_progress(state: InventoryState) -> float:
    """Fraction of the last refill still on hand, clamped to [0, 1].

    Returns 0.5 when there is no refill history to compare against.
    """
    event = state.last_received_event
    if event is None or not event.pill_count:
        return 0.5
    progress = state.current_pill_count / event.pill_count
    return max(0.0, min(1.0, progress))


def build_forecast(state: InventoryState, now: datetime) -> Forecast:
    return Forecast(
        days_remaining=estimated_days_remaining(state),
        depletion_date=estimated_depletion_date(state, now),
        days_remaining_from_last_refill=days_remaining_from_last_refill(state, now),
        supply_level=supply_level(state),
        supply_progress=supply_progress(state),
    )
