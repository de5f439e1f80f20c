"""
Reminder decision engine.

Decides which refill reminders apply to an inventory at a given instant.

The waiting flag partitions the state space:
1. Idle - inventory-low and time-elapsed are evaluated independently
2. Waiting - only the follow-up applies, the idle reminders are suppressed

The three reminder kinds are therefore never in conflict and never need
ranking or merging.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Optional

from .forecast import estimated_days_remaining, whole_days_between
from refill_guard.config.loader import SettingsState
from refill_guard.storage.models import InventoryState, RefillPhase

# Follow-up escalation policy
FOLLOW_UP_GRACE_DAYS = 3
FOLLOW_UP_NAG_INTERVAL = timedelta(days=1)


class ReminderKind(Enum):
    """Reminder kinds; values are the stable notification keys."""
    INVENTORY_LOW = "inventory-reminder"
    TIME_ELAPSED = "time-reminder"
    FOLLOW_UP = "follow-up-reminder"


IDLE_REMINDERS = frozenset({ReminderKind.INVENTORY_LOW, ReminderKind.TIME_ELAPSED})


@dataclass(frozen=True)
class ReminderDecision:
    """Outcome of one decision cycle."""
    phase: RefillPhase
    reminders_enabled: bool
    kinds: FrozenSet[ReminderKind]
    days_remaining: int
    days_since_refill: int
    follow_up_at: Optional[datetime] = None

    def __contains__(self, kind: ReminderKind) -> bool:
        return kind in self.kinds


def days_since_last_refill(state: InventoryState, now: datetime) -> int:
    return whole_days_between(state.last_refill_date(now), now)


def should_show_inventory_reminder(
    state: InventoryState,
    settings: SettingsState,
    now: datetime
) -> bool:
    """True when the forecast supply is at or below the configured threshold."""
    if not settings.refill_reminders_enabled:
        return False
    if state.is_waiting_for_refill:
        return False
    return estimated_days_remaining(state) <= settings.inventory_reminder_threshold_days


def should_show_time_reminder(
    state: InventoryState,
    settings: SettingsState,
    now: datetime
) -> bool:
    """True when at least the configured number of days passed since the last refill."""
    if not settings.refill_reminders_enabled:
        return False
    if state.is_waiting_for_refill:
        return False
    return days_since_last_refill(state, now) >= settings.time_reminder_threshold_days


def is_follow_up_eligible(state: InventoryState) -> bool:
    return state.is_waiting_for_refill


def next_follow_up_time(state: InventoryState, now: datetime) -> Optional[datetime]:
    """When the next follow-up should fire, or None when not waiting.

    Within the grace period the follow-up is pinned to the request date
    plus the grace days. From then on it fires one day from now, so every
    re-evaluation pushes the nag forward by a day.
    """
    request_date = state.refill_request_date
    if request_date is None:
        return None

    days_since_request = whole_days_between(request_date, now)
    if days_since_request >= FOLLOW_UP_GRACE_DAYS:
        return now + FOLLOW_UP_NAG_INTERVAL
    return request_date + timedelta(days=FOLLOW_UP_GRACE_DAYS)


def evaluate_reminders(
    state: InventoryState,
    settings: SettingsState,
    now: datetime
) -> ReminderDecision:
    """Evaluate every reminder kind against one injected instant.

    Args:
        state: Inventory snapshot
        settings: Settings snapshot
        now: The single "now" used for every comparison in this cycle

    Returns:
        ReminderDecision with the applicable kinds (empty when disabled)
    """
    kinds = set()
    follow_up_at = None

    if settings.refill_reminders_enabled:
        if is_follow_up_eligible(state):
            kinds.add(ReminderKind.FOLLOW_UP)
            follow_up_at = next_follow_up_time(state, now)
        else:
            if should_show_inventory_reminder(state, settings, now):
                kinds.add(ReminderKind.INVENTORY_LOW)
            if should_show_time_reminder(state, settings, now):
                kinds.add(ReminderKind.TIME_ELAPSED)

    return ReminderDecision(
        phase=state.phase,
        reminders_enabled=settings.refill_reminders_enabled,
        kinds=frozenset(kinds),
        days_remaining=estimated_days_remaining(state),
        days_since_refill=days_since_last_refill(state, now),
        follow_up_at=follow_up_at
    )
