"""
Medication tracker service.

Command interface over the inventory: every command mutates, persists
and reschedules reminders, then returns the new state and what was
scheduled. Nothing observes the state implicitly.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .doses import (
    DailyProgress,
    DayHistory,
    check_dose_time,
    daily_progress,
    group_by_day,
    start_of_day,
    undoable_dose,
)
from .forecast import Forecast, build_forecast
from .inventory import (
    effective_usage_rate,
    log_dose_undone,
    log_medication_taken,
    log_refill_received,
    log_refill_requested,
    reset_inventory,
)
from .scheduler import ReminderScheduler, SchedulingReport
from refill_guard.config.loader import SettingsState
from refill_guard.storage.models import DoseLog, InventoryState
from refill_guard.storage.repository import InventoryRepository

logger = logging.getLogger(__name__)

# Action identifiers attached to refill notifications
ACTION_REQUEST_REFILL = "REQUEST_REFILL"
ACTION_RECEIVED_REFILL = "RECEIVED_REFILL"


@dataclass(frozen=True)
class TrackerResult:
    """Outcome of a tracker command.

    changed reports whether the inventory itself changed; dose is the
    dose logged or undone by the command, if any.
    """
    state: InventoryState
    report: SchedulingReport
    changed: bool = True
    dose: Optional[DoseLog] = None


class MedicationTracker:
    """Single owner of the inventory for one installation.

    Persistence is synchronous: a command's new state only replaces the
    current one after the repository accepted it. A StorageError leaves
    the tracker on its previous state and is propagated to the caller.

    Args:
        repository: Persistence collaborator
        scheduler: Reminder scheduler wrapping the notifier
        settings: Settings snapshot used for every decision
        state: Initial state; loaded from the repository when omitted
    """

    def __init__(
        self,
        repository: InventoryRepository,
        scheduler: ReminderScheduler,
        settings: SettingsState,
        state: Optional[InventoryState] = None
    ):
        self.repository = repository
        self.scheduler = scheduler
        self.settings = settings

        repository.initialize_schema()
        if state is None:
            loaded = repository.load()
            state = effective_usage_rate(loaded, settings)
            if state is not loaded:
                logger.info("No usage rate stored, using daily target %d", settings.daily_pill_target)
                repository.save(state)
        self._state = state

    @property
    def state(self) -> InventoryState:
        return self._state

    def forecast(self, now: datetime) -> Forecast:
        return build_forecast(self._state, now)

    def today(self, now: datetime) -> DailyProgress:
        """Doses taken today against the daily pill target."""
        doses = self.repository.get_doses(since=start_of_day(now))
        return daily_progress(doses, self.settings.daily_pill_target, now)

    def dose_history(self, since: Optional[datetime] = None) -> List[DayHistory]:
        """Logged doses grouped by day, newest day first."""
        doses = self.repository.get_doses(since=since)
        return group_by_day(doses, self.settings.daily_pill_target)

    def take_dose(self, now: datetime, taken_at: Optional[datetime] = None) -> TrackerResult:
        """Log one dose taken and re-evaluate idle reminders.

        The dose is recorded even when the inventory is already empty.

        Args:
            now: Current time
            taken_at: When the dose was taken, for doses logged late

        Raises:
            ValueError: If taken_at is in the future
            StorageError: If the dose could not be persisted
        """
        taken_at = check_dose_time(now if taken_at is None else taken_at, now)
        new_state = log_medication_taken(self._state)
        changed = new_state is not self._state
        dose = DoseLog(timestamp=taken_at, pill_drawn=changed)
        self._commit(new_state, added_dose=dose)
        report = self.scheduler.check_and_schedule(self._state, self.settings, now)
        return TrackerResult(self._state, report, changed, dose)

    def undo_last_dose(self, now: datetime) -> TrackerResult:
        """Remove the most recent dose if it was logged within the undo window.

        Raises:
            UndoNotAllowedError: If there is no dose or it is too old to undo
            StorageError: If the change could not be persisted
        """
        dose = undoable_dose(self.repository.get_doses(limit=1), now)
        new_state = log_dose_undone(self._state) if dose.pill_drawn else self._state
        changed = new_state is not self._state
        self._commit(new_state, removed_dose=dose)
        logger.info("Undid dose logged at %s", dose.timestamp.isoformat())
        report = self.scheduler.check_and_schedule(self._state, self.settings, now)
        return TrackerResult(self._state, report, changed, dose)

    def request_refill(self, now: datetime) -> TrackerResult:
        """Log a refill request and switch to follow-up reminders."""
        changed = self._commit(log_refill_requested(self._state, now))
        if changed:
            logger.info("Refill requested at %s", now.isoformat())
        report = self.scheduler.on_refill_requested(self._state, self.settings, now)
        return TrackerResult(self._state, report, changed)

    def receive_refill(self, pill_count: int, now: datetime) -> TrackerResult:
        """Log a received refill.

        Raises:
            InvalidPillCountError: If pill_count is not positive
            StorageError: If the new state could not be persisted
        """
        new_state = log_refill_received(
            self._state,
            pill_count,
            usage_rate_source=self.settings.daily_pill_target,
            now=now
        )
        self._commit(new_state)
        logger.info("Refill received: %d pills", pill_count)
        report = self.scheduler.on_refill_received(self._state, self.settings, now)
        return TrackerResult(self._state, report)

    def evaluate(self, now: datetime) -> TrackerResult:
        """Re-run the reminder decision without changing the inventory."""
        report = self.scheduler.check_and_schedule(self._state, self.settings, now)
        return TrackerResult(self._state, report, changed=False)

    def reset(self) -> TrackerResult:
        """Wipe the inventory back to the zero state and cancel all reminders.

        The dose log is history and survives a reset.
        """
        new_state = reset_inventory()
        self.repository.reset(new_state)
        self._state = new_state
        logger.info("Inventory reset")
        return TrackerResult(self._state, self.scheduler.cancel_all())

    def handle_notification_action(self, action_id: str, now: datetime) -> TrackerResult:
        """Apply an action the user picked on a refill notification.

        Raises:
            ValueError: For the received action, which needs a pill count
                from the user, and for unknown actions
        """
        if action_id == ACTION_REQUEST_REFILL:
            return self.request_refill(now)
        if action_id == ACTION_RECEIVED_REFILL:
            raise ValueError("Received refill needs a pill count; prompt the user for it")
        raise ValueError(f"Unknown notification action: {action_id}")

    def _commit(
        self,
        new_state: InventoryState,
        added_dose: Optional[DoseLog] = None,
        removed_dose: Optional[DoseLog] = None
    ) -> bool:
        if new_state is self._state and added_dose is None and removed_dose is None:
            return False
        self.repository.save(new_state, added_dose=added_dose, removed_dose=removed_dose)
        self._state = new_state
        return True
