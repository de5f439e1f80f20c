"""
Inventory commands.

The only ways to change an InventoryState. Each command is pure and
returns a new state; persisting it is the caller's job.
"""

import logging
from dataclasses import replace
from datetime import datetime

from refill_guard.config.loader import SettingsState
from refill_guard.storage.models import InventoryState, RefillEvent, RefillEventKind

logger = logging.getLogger(__name__)

RESET_USAGE_RATE = 1.0


class InvalidPillCountError(ValueError):
    """Raised when a refill is logged with a pill count that is not positive."""
    def __init__(self, pill_count: int):
        super().__init__(f"Refill pill count must be > 0, got {pill_count}")
        self.pill_count = pill_count


def log_medication_taken(state: InventoryState) -> InventoryState:
    """Take one pill. The count never drops below zero and no refill event is logged."""
    if state.current_pill_count <= 0:
        logger.debug("Dose logged with empty inventory, count stays at 0")
        return state
    return replace(state, current_pill_count=state.current_pill_count - 1)


def log_dose_undone(state: InventoryState) -> InventoryState:
    """Hand back the pill of a dose that was logged by mistake."""
    return replace(state, current_pill_count=state.current_pill_count + 1)


def log_refill_requested(state: InventoryState, now: datetime) -> InventoryState:
    """Append a Requested event.

    Calling this while a request is already outstanding returns the state
    unchanged, so there is never more than one open request.
    """
    if state.is_waiting_for_refill:
        logger.info("Refill already requested on %s, ignoring", state.refill_request_date)
        return state
    event = RefillEvent(timestamp=now, kind=RefillEventKind.REQUESTED)
    return state.with_event(event)


def log_refill_received(
    state: InventoryState,
    pill_count: int,
    usage_rate_source: float,
    now: datetime
) -> InventoryState:
    """Append a Received event and reset the count to the delivered total.

    The usage rate mirrors the configured daily target passed in as
    usage_rate_source; it is not derived from consumption history.

    Args:
        state: Current inventory
        pill_count: Absolute pill count after the refill
        usage_rate_source: Daily pill target to adopt as the usage rate
        now: Timestamp for the new event

    Returns:
        The updated InventoryState

    Raises:
        InvalidPillCountError: If pill_count is not positive; nothing is recorded
    """
    if isinstance(pill_count, bool) or not isinstance(pill_count, int) or pill_count <= 0:
        raise InvalidPillCountError(pill_count)
    if usage_rate_source < 0:
        raise ValueError("usage_rate_source cannot be negative")

    event = RefillEvent(timestamp=now, kind=RefillEventKind.RECEIVED, pill_count=pill_count)
    return state.with_event(
        event,
        current_pill_count=pill_count,
        daily_usage_rate=float(usage_rate_source)
    )


def reset_inventory() -> InventoryState:
    """The zero state: no pills, no history, one pill a day."""
    return InventoryState(current_pill_count=0, refill_events=(), daily_usage_rate=RESET_USAGE_RATE)


def effective_usage_rate(state: InventoryState, settings: SettingsState) -> InventoryState:
    """Adopt the daily target as the usage rate when none has been set yet."""
    if state.daily_usage_rate > 0:
        return state
    return replace(state, daily_usage_rate=float(settings.daily_pill_target))
