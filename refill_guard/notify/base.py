"""
Notifier contract.

The scheduler only ever needs to know whether a key is pending, never
what a pending notification says.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, Set


class NotifyError(Exception):
    """Raised when a notification could not be scheduled, cancelled or listed.

    Non-fatal: the caller reports it and carries on with other channels.
    """
    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


@dataclass(frozen=True)
class NotificationSpec:
    """A notification to deliver at a future wall-clock time."""
    key: str
    fire_at: datetime
    title: str
    body: str


class Notifier(Protocol):
    """Delivery channel for local alerts, keyed by a stable identifier."""

    def schedule(self, key: str, fire_at: datetime, title: str, body: str) -> None:
        """Schedule a notification; a pending one with the same key is replaced.

        Raises:
            NotifyError: If this notification could not be scheduled
        """
        ...

    def cancel(self, keys: Iterable[str]) -> None:
        """Cancel pending notifications; unknown keys are ignored.

        Raises:
            NotifyError: If the keys could not be cancelled
        """
        ...

    def list_pending(self) -> Set[str]:
        """Keys that currently have a pending notification.

        Raises:
            NotifyError: If the pending notifications could not be read
        """
        ...
