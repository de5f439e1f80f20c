"""
Notifier collaborators for Refill Guard.

Receive keyed schedule/cancel instructions from the reminder scheduler.
"""

from .base import NotificationSpec, Notifier, NotifyError
from .memory import InMemoryNotifier
from .outbox import OutboxNotifier

__all__ = ["NotificationSpec", "Notifier", "NotifyError", "InMemoryNotifier", "OutboxNotifier"]
