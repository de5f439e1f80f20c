"""
Reminder scheduling.

Translates reminder decisions into keyed schedule/cancel instructions for
a notifier.

Channels:
1. inventory-reminder - idle only, fires soon while supply is low
2. time-reminder - idle only, fires soon once the refill is old
3. follow-up-reminder - waiting only, fires per the escalation policy

A failure on one channel is reported and never blocks the others.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from .decision import (
    IDLE_REMINDERS,
    ReminderDecision,
    ReminderKind,
    evaluate_reminders,
)
from refill_guard.config.loader import SettingsState
from refill_guard.notify.base import NotificationSpec, Notifier, NotifyError
from refill_guard.storage.models import InventoryState

logger = logging.getLogger(__name__)

# Local alerts have no network latency to budget for
DEFAULT_SOON = timedelta(minutes=1)

REMINDER_TITLE = "Medication Refill Reminder"
FOLLOW_UP_TITLE = "Medication Refill Follow-Up"
FOLLOW_UP_BODY = "Have you received your medication refill yet?"

ALL_KEYS = frozenset(kind.value for kind in ReminderKind)
IDLE_KEYS = frozenset(kind.value for kind in IDLE_REMINDERS)


@dataclass
class SchedulingReport:
    """What one scheduling pass did."""
    scheduled: List[NotificationSpec] = field(default_factory=list)
    cancelled: Set[str] = field(default_factory=set)
    failures: Dict[str, str] = field(default_factory=dict)
    decision: Optional[ReminderDecision] = None

    @property
    def scheduled_keys(self) -> Set[str]:
        return {spec.key for spec in self.scheduled}

    def merge(self, other: "SchedulingReport") -> "SchedulingReport":
        self.scheduled.extend(other.scheduled)
        self.cancelled |= other.cancelled
        self.failures.update(other.failures)
        if other.decision is not None:
            self.decision = other.decision
        return self


def inventory_reminder_body(days_remaining: int) -> str:
    return (
        "Your medication supply is running low. "
        f"You have approximately {days_remaining} days remaining."
    )


def time_reminder_body(days_since_refill: int) -> str:
    return f"It's been {days_since_refill} days since your last refill."


class ReminderScheduler:
    """Keeps the notifier's pending reminders in line with the inventory state.

    Args:
        notifier: Delivery channel receiving schedule/cancel instructions
        soon: Delay for the near-immediate idle reminders
    """

    def __init__(self, notifier: Notifier, soon: timedelta = DEFAULT_SOON):
        self.notifier = notifier
        self.soon = soon

    def check_and_schedule(
        self,
        state: InventoryState,
        settings: SettingsState,
        now: datetime
    ) -> SchedulingReport:
        """Run one evaluation cycle.

        Args:
            state: Inventory snapshot
            settings: Settings snapshot
            now: Single instant used for every time comparison

        Returns:
            SchedulingReport listing scheduled specs, cancelled keys and failures
        """
        report = SchedulingReport()
        decision = evaluate_reminders(state, settings, now)
        report.decision = decision

        if not decision.reminders_enabled:
            self._cancel(ALL_KEYS, report)
            return report

        if ReminderKind.FOLLOW_UP in decision:
            self._cancel(IDLE_KEYS, report)
            self._schedule_follow_up(decision, report)
            return report

        pending = self._pending(report)

        if ReminderKind.INVENTORY_LOW in decision:
            self._schedule(NotificationSpec(
                key=ReminderKind.INVENTORY_LOW.value,
                fire_at=now + self.soon,
                title=REMINDER_TITLE,
                body=inventory_reminder_body(decision.days_remaining)
            ), report, pending)
        elif ReminderKind.INVENTORY_LOW.value in pending:
            self._cancel({ReminderKind.INVENTORY_LOW.value}, report)

        if ReminderKind.TIME_ELAPSED in decision:
            self._schedule(NotificationSpec(
                key=ReminderKind.TIME_ELAPSED.value,
                fire_at=now + self.soon,
                title=REMINDER_TITLE,
                body=time_reminder_body(decision.days_since_refill)
            ), report, pending)
        elif ReminderKind.TIME_ELAPSED.value in pending:
            self._cancel({ReminderKind.TIME_ELAPSED.value}, report)

        # A follow-up left over from a request that has since been fulfilled
        if ReminderKind.FOLLOW_UP.value in pending:
            self._cancel({ReminderKind.FOLLOW_UP.value}, report)

        return report

    def on_refill_requested(
        self,
        state: InventoryState,
        settings: SettingsState,
        now: datetime
    ) -> SchedulingReport:
        """Leave the idle phase: drop idle reminders and start the follow-up."""
        report = SchedulingReport()
        self._cancel(IDLE_KEYS, report)
        return report.merge(self.check_and_schedule(state, settings, now))

    def on_refill_received(
        self,
        state: InventoryState,
        settings: SettingsState,
        now: datetime
    ) -> SchedulingReport:
        """The baseline just reset: drop everything, then re-evaluate."""
        report = SchedulingReport()
        self._cancel(ALL_KEYS, report)
        return report.merge(self.check_and_schedule(state, settings, now))

    def cancel_all(self) -> SchedulingReport:
        report = SchedulingReport()
        self._cancel(ALL_KEYS, report)
        return report

    def _schedule_follow_up(self, decision: ReminderDecision, report: SchedulingReport) -> None:
        if decision.follow_up_at is None:
            return
        self._schedule(NotificationSpec(
            key=ReminderKind.FOLLOW_UP.value,
            fire_at=decision.follow_up_at,
            title=FOLLOW_UP_TITLE,
            body=FOLLOW_UP_BODY
        ), report)

    def _pending(self, report: SchedulingReport) -> Set[str]:
        """Pending keys; every key counts as pending when they cannot be listed."""
        try:
            return set(self.notifier.list_pending())
        except NotifyError as e:
            logger.warning("Failed to list pending notifications: %s", e)
            report.failures[e.key] = str(e)
            return set(ALL_KEYS)

    def _schedule(
        self,
        spec: NotificationSpec,
        report: SchedulingReport,
        pending: Optional[Set[str]] = None
    ) -> None:
        """Replace any pending instance of the key with the new spec."""
        if pending is None:
            pending = self._pending(report)
        try:
            if spec.key in pending:
                self.notifier.cancel([spec.key])
            self.notifier.schedule(spec.key, spec.fire_at, spec.title, spec.body)
        except NotifyError as e:
            logger.warning("Failed to schedule %s: %s", spec.key, e)
            report.failures[spec.key] = str(e)
            return
        logger.info("Scheduled %s for %s", spec.key, spec.fire_at.isoformat())
        report.scheduled.append(spec)

    def _cancel(self, keys: Iterable[str], report: SchedulingReport) -> None:
        """Cancel each key on its own so one failure leaves the rest cancelled."""
        for key in sorted(keys):
            try:
                self.notifier.cancel([key])
            except NotifyError as e:
                logger.warning("Failed to cancel %s: %s", key, e)
                report.failures[key] = str(e)
                continue
            report.cancelled.add(key)
            logger.debug("Cancelled %s", key)
