"""
In-memory notifier.

Keeps pending notifications in a dict. Used by tests and by callers that
deliver alerts themselves within one process.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from .base import NotificationSpec, NotifyError


class InMemoryNotifier:
    """Dict-backed notifier that records every cancel request.

    Args:
        failing_keys: Keys whose scheduling raises NotifyError, to simulate
            a channel the user revoked permission for
        failing_cancel_keys: Keys whose cancellation raises NotifyError
    """

    def __init__(
        self,
        failing_keys: Optional[Iterable[str]] = None,
        failing_cancel_keys: Optional[Iterable[str]] = None
    ):
        self.pending: Dict[str, NotificationSpec] = {}
        self.cancelled: List[str] = []
        self.failing_keys: Set[str] = set(failing_keys or ())
        self.failing_cancel_keys: Set[str] = set(failing_cancel_keys or ())

    def schedule(self, key: str, fire_at: datetime, title: str, body: str) -> None:
        if key in self.failing_keys:
            raise NotifyError(key, "notification permission denied")
        self.pending[key] = NotificationSpec(key=key, fire_at=fire_at, title=title, body=body)

    def cancel(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        for key in keys:
            if key in self.failing_cancel_keys:
                raise NotifyError(key, "could not remove pending notification")
        for key in keys:
            self.cancelled.append(key)
            self.pending.pop(key, None)

    def list_pending(self) -> Set[str]:
        return set(self.pending)
