"""
Data models for storage layer.

Defines the refill event ledger, the dose log and the inventory state
derived from the ledger.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class RefillEventKind(Enum):
    """Kinds of entries in the refill ledger."""
    REQUESTED = "Requested"
    RECEIVED = "Received"


class RefillPhase(Enum):
    """Refill state machine phase, always derived from the ledger."""
    IDLE = "idle"
    WAITING = "waiting"


def _new_event_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class RefillEvent:
    """Immutable record of a refill request or receipt.

    Append-only events; once written they are never modified.
    pill_count is the absolute count after a receipt, not a delta.
    """
    timestamp: datetime
    kind: RefillEventKind
    pill_count: Optional[int] = None
    id: str = field(default_factory=_new_event_id)

    def __post_init__(self):
        """Validate pill_count against the event kind."""
        if self.kind == RefillEventKind.REQUESTED and self.pill_count is not None:
            raise ValueError("pill_count is only allowed on Received events")
        if self.pill_count is not None and self.pill_count < 0:
            raise ValueError("pill_count cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "pill_count": self.pill_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RefillEvent":
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            kind=RefillEventKind(data["kind"]),
            pill_count=data.get("pill_count"),
        )


@dataclass(frozen=True)
class DoseLog:
    """Immutable record of one dose taken.

    pill_drawn is False when the dose was logged against an empty
    inventory, so undoing it must not hand a pill back.
    """
    timestamp: datetime
    pill_drawn: bool = True
    id: str = field(default_factory=_new_event_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "pill_drawn": self.pill_drawn,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DoseLog":
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            pill_drawn=bool(data.get("pill_drawn", True)),
        )


@dataclass(frozen=True)
class InventoryState:
    """Snapshot of the medication inventory.

    The refill ledger is the single source of truth for the waiting
    state: nothing stores it separately. Every query orders by timestamp;
    events sharing a timestamp are ordered by their position in the ledger,
    so the later-appended one counts as the newer.
    """
    current_pill_count: int = 0
    refill_events: Tuple[RefillEvent, ...] = ()
    daily_usage_rate: float = 0.0

    def __post_init__(self):
        """Validate counts and rates are non-negative."""
        if self.current_pill_count < 0:
            raise ValueError("current_pill_count cannot be negative")
        if self.daily_usage_rate < 0:
            raise ValueError("daily_usage_rate cannot be negative")
        # Accept any iterable of events but always store a tuple
        if not isinstance(self.refill_events, tuple):
            object.__setattr__(self, "refill_events", tuple(self.refill_events))

    def _ordered(self, kind: Optional[RefillEventKind] = None) -> List[RefillEvent]:
        """Events oldest first, ties broken by ledger position."""
        indexed = [
            (event.timestamp, position, event)
            for position, event in enumerate(self.refill_events)
            if kind is None or event.kind == kind
        ]
        indexed.sort(key=lambda item: item[:2])
        return [event for _, _, event in indexed]

    @property
    def latest_event(self) -> Optional[RefillEvent]:
        """Most recent event by timestamp, or None for an empty ledger."""
        ordered = self._ordered()
        return ordered[-1] if ordered else None

    @property
    def last_received_event(self) -> Optional[RefillEvent]:
        """Most recent Received event by timestamp."""
        ordered = self._ordered(RefillEventKind.RECEIVED)
        return ordered[-1] if ordered else None

    @property
    def is_waiting_for_refill(self) -> bool:
        latest = self.latest_event
        return latest is not None and latest.kind == RefillEventKind.REQUESTED

    @property
    def refill_request_date(self) -> Optional[datetime]:
        """Timestamp of the outstanding request, if the latest event is one."""
        if not self.is_waiting_for_refill:
            return None
        return self.latest_event.timestamp

    @property
    def phase(self) -> RefillPhase:
        return RefillPhase.WAITING if self.is_waiting_for_refill else RefillPhase.IDLE

    def last_refill_date(self, now: datetime) -> datetime:
        """Timestamp of the last receipt, defaulting to now when there is none."""
        event = self.last_received_event
        return event.timestamp if event is not None else now

    def events_by_time(self, newest_first: bool = True) -> Tuple[RefillEvent, ...]:
        ordered = self._ordered()
        if newest_first:
            ordered.reverse()
        return tuple(ordered)

    def with_event(self, event: RefillEvent, **changes: Any) -> "InventoryState":
        """Return a copy with the event appended and other fields replaced."""
        return replace(self, refill_events=self.refill_events + (event,), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_pill_count": self.current_pill_count,
            "daily_usage_rate": self.daily_usage_rate,
            "refill_events": [e.to_dict() for e in self.refill_events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventoryState":
        return cls(
            current_pill_count=int(data.get("current_pill_count", 0)),
            daily_usage_rate=float(data.get("daily_usage_rate", 0.0)),
            refill_events=tuple(RefillEvent.from_dict(e) for e in data.get("refill_events", [])),
        )
