"""
Dose log queries.

Measures logged doses against the daily pill target: today's progress,
per-day history with adherence, and which dose may still be undone.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Sequence, Tuple

from refill_guard.storage.models import DoseLog

# Only a dose logged this recently can be taken back
UNDO_WINDOW = timedelta(minutes=5)


class UndoNotAllowedError(ValueError):
    """Raised when there is no dose that may be undone."""


@dataclass(frozen=True)
class DailyProgress:
    """Doses taken on one day against the daily target."""
    day: date
    taken: int
    target: int

    @property
    def remaining(self) -> int:
        return max(self.target - self.taken, 0)

    @property
    def extra(self) -> int:
        return max(self.taken - self.target, 0)

    @property
    def on_target(self) -> bool:
        return self.taken >= self.target


@dataclass(frozen=True)
class DayHistory:
    """All doses of one calendar day, newest first."""
    day: date
    doses: Tuple[DoseLog, ...]
    target: int

    @property
    def count(self) -> int:
        return len(self.doses)

    @property
    def on_target(self) -> bool:
        return self.count >= self.target


@dataclass(frozen=True)
class Adherence:
    """Share of logged days on which the target was met."""
    total_days: int
    days_on_target: int

    @property
    def percentage(self) -> int:
        if self.total_days == 0:
            return 0
        return int(self.days_on_target / self.total_days * 100)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def check_dose_time(taken_at: datetime, now: datetime) -> datetime:
    """Reject doses logged in the future.

    Raises:
        ValueError: If taken_at is later than now
    """
    if taken_at > now:
        raise ValueError(f"Dose time {taken_at:%Y-%m-%d %H:%M} is in the future")
    return taken_at


def daily_progress(doses: Sequence[DoseLog], target: int, now: datetime) -> DailyProgress:
    """Count the doses taken on now's calendar day."""
    today = now.date()
    taken = sum(1 for dose in doses if dose.timestamp.date() == today)
    return DailyProgress(day=today, taken=taken, target=target)


def group_by_day(doses: Sequence[DoseLog], target: int) -> List[DayHistory]:
    """Group doses by calendar day, newest day first."""
    grouped: Dict[date, List[DoseLog]] = {}
    for dose in doses:
        grouped.setdefault(dose.timestamp.date(), []).append(dose)

    history = []
    for day in sorted(grouped, reverse=True):
        day_doses = sorted(grouped[day], key=lambda d: d.timestamp, reverse=True)
        history.append(DayHistory(day=day, doses=tuple(day_doses), target=target))
    return history


def adherence(history: Sequence[DayHistory]) -> Adherence:
    return Adherence(
        total_days=len(history),
        days_on_target=sum(1 for day in history if day.on_target)
    )


def undoable_dose(doses: Sequence[DoseLog], now: datetime) -> DoseLog:
    """Pick the dose an undo would remove.

    Args:
        doses: Logged doses, newest first as the repository returns them
        now: Current time

    Returns:
        The most recent dose

    Raises:
        UndoNotAllowedError: If nothing is logged or the most recent dose
            is older than UNDO_WINDOW
    """
    if not doses:
        raise UndoNotAllowedError("No doses logged")
    # max keeps the first of equal timestamps, which is the newest here
    latest = max(doses, key=lambda d: d.timestamp)
    if now - latest.timestamp > UNDO_WINDOW:
        minutes = int(UNDO_WINDOW.total_seconds() // 60)
        raise UndoNotAllowedError(
            f"Only a dose logged in the last {minutes} minutes can be undone; "
            f"the last dose was logged at {latest.timestamp:%Y-%m-%d %H:%M}"
        )
    return latest
