"""
SQLite notification outbox.

Stores pending notifications keyed by channel so an external delivery
agent can pick them up. The key is the primary key, so re-scheduling
replaces the pending row and never stacks a second one.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, List, Set

from .base import NotificationSpec, NotifyError
from refill_guard.storage.db import DEFAULT_DB_PATH, get_connection

logger = logging.getLogger(__name__)

# Key reported for failures that are not tied to a single notification
OUTBOX_KEY = "outbox"


class OutboxNotifier:
    """Notifier that writes pending notifications to a SQLite table.

    Every sqlite3 error surfaces as NotifyError so a broken outbox is
    reported per channel like any other delivery failure.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def _connect(self, key: str) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path)
        except sqlite3.Error as e:
            raise NotifyError(key, f"could not open outbox {self.db_path}: {e}") from e

    def initialize_schema(self) -> None:
        conn = self._connect(OUTBOX_KEY)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_notification (
                    key TEXT PRIMARY KEY,
                    fire_at TEXT NOT NULL,
                    title TEXT NOT NULL,
                    body TEXT NOT NULL
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise NotifyError(OUTBOX_KEY, f"could not create outbox table: {e}") from e
        finally:
            conn.close()

    def schedule(self, key: str, fire_at: datetime, title: str, body: str) -> None:
        """Insert or replace the pending notification for a key.

        Raises:
            NotifyError: If the outbox could not be written
        """
        conn = self._connect(key)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO pending_notification (key, fire_at, title, body)
                VALUES (?, ?, ?, ?)
            """, (key, fire_at.isoformat(), title, body))
            conn.commit()
        except sqlite3.Error as e:
            raise NotifyError(key, str(e)) from e
        finally:
            conn.close()

    def cancel(self, keys: Iterable[str]) -> None:
        """Delete pending notifications for the keys.

        Raises:
            NotifyError: If the rows could not be deleted
        """
        keys = list(keys)
        if not keys:
            return
        failed_key = ", ".join(keys)
        conn = self._connect(failed_key)
        try:
            placeholders = ", ".join("?" for _ in keys)
            conn.execute(f"DELETE FROM pending_notification WHERE key IN ({placeholders})", keys)
            conn.commit()
        except sqlite3.OperationalError as e:
            # Nothing can be pending before the table exists
            if "no such table" not in str(e).lower():
                raise NotifyError(failed_key, f"could not cancel: {e}") from e
            logger.debug("Outbox table missing, nothing to cancel")
        except sqlite3.Error as e:
            raise NotifyError(failed_key, f"could not cancel: {e}") from e
        finally:
            conn.close()

    def list_pending(self) -> Set[str]:
        return {spec.key for spec in self.pending()}

    def pending(self) -> List[NotificationSpec]:
        """Pending notifications ordered by fire time.

        Raises:
            NotifyError: If the outbox could not be read
        """
        conn = self._connect(OUTBOX_KEY)
        try:
            cursor = conn.execute(
                "SELECT key, fire_at, title, body FROM pending_notification ORDER BY fire_at"
            )
            return [
                NotificationSpec(
                    key=row[0],
                    fire_at=datetime.fromisoformat(row[1]),
                    title=row[2],
                    body=row[3]
                )
                for row in cursor.fetchall()
            ]
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return []
            raise NotifyError(OUTBOX_KEY, f"could not read outbox: {e}") from e
        except sqlite3.Error as e:
            raise NotifyError(OUTBOX_KEY, f"could not read outbox: {e}") from e
        finally:
            conn.close()
