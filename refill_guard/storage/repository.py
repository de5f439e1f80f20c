"""
Repository pattern for data access.

Persists the inventory snapshot, its append-only refill ledger and the
dose log.
"""

import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import DoseLog, InventoryState, RefillEvent, RefillEventKind

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the inventory could not be read from or written to disk.

    Recoverable: the caller's in-memory state stays authoritative for the
    current session, but is not durable until a later save succeeds.
    """


class InventoryRepository:
    """Repository for loading and saving the medication inventory.

    The scalar fields live in a single-row table; refill events live in an
    append-only ledger. Saving never updates or deletes a ledger row, it
    only inserts events that are not stored yet. Each ledger row carries an
    insertion sequence so events sharing a timestamp reload in the order
    they were appended.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self.db_path}: {e}") from e

    def initialize_schema(self) -> None:
        """Create the inventory tables if they don't exist.

        Raises:
            StorageError: If the schema could not be created
        """
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS inventory_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    current_pill_count INTEGER NOT NULL CHECK (current_pill_count >= 0),
                    daily_usage_rate REAL NOT NULL CHECK (daily_usage_rate >= 0)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS refill_event (
                    seq INTEGER PRIMARY KEY,
                    id TEXT NOT NULL UNIQUE,
                    timestamp TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    pill_count INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS dose_log (
                    seq INTEGER PRIMARY KEY,
                    id TEXT NOT NULL UNIQUE,
                    timestamp TEXT NOT NULL,
                    pill_drawn INTEGER NOT NULL
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not initialize schema: {e}") from e
        finally:
            conn.close()

    def load(self) -> InventoryState:
        """Load the persisted inventory.

        A database that has never been initialized or saved yields the empty
        state rather than an error, matching a first launch.

        Returns:
            The stored InventoryState

        Raises:
            StorageError: If the stored data could not be read
        """
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT current_pill_count, daily_usage_rate FROM inventory_state WHERE id = 1"
            ).fetchone()
            events = self._fetch_events(conn)
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                logger.debug("No inventory tables in %s, starting empty", self.db_path)
                return InventoryState()
            raise StorageError(f"Could not load inventory: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Could not load inventory: {e}") from e
        finally:
            conn.close()

        if row is None:
            return InventoryState(refill_events=tuple(events))
        return InventoryState(
            current_pill_count=row[0],
            daily_usage_rate=float(row[1]),
            refill_events=tuple(events)
        )

    def save(
        self,
        state: InventoryState,
        added_dose: Optional[DoseLog] = None,
        removed_dose: Optional[DoseLog] = None
    ) -> None:
        """Persist the inventory atomically.

        The scalar row is upserted and new ledger events are inserted in a
        single transaction. Existing events are left untouched. A dose
        added or removed alongside commits or rolls back with the state.

        Args:
            state: Inventory snapshot to persist
            added_dose: Dose to append to the dose log
            removed_dose: Dose to delete from the dose log (undo)

        Raises:
            StorageError: If the write failed; nothing is committed
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN TRANSACTION")
            self._write_state(conn, state)
            if added_dose is not None:
                conn.execute(
                    "INSERT INTO dose_log (id, timestamp, pill_drawn) VALUES (?, ?, ?)",
                    (added_dose.id, added_dose.timestamp.isoformat(), int(added_dose.pill_drawn))
                )
            if removed_dose is not None:
                conn.execute("DELETE FROM dose_log WHERE id = ?", (removed_dose.id,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Could not save inventory: {e}") from e
        finally:
            conn.close()
        logger.debug(
            "Saved inventory: %d pills, %d events",
            state.current_pill_count, len(state.refill_events)
        )

    def reset(self, state: InventoryState) -> None:
        """Replace all stored inventory data with the given state.

        This is the only operation that removes ledger rows. The delete and
        the write of the new state share one transaction, so a failure
        leaves the previous data in place. The dose log is kept.

        Raises:
            StorageError: If the reset failed; nothing is committed
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("DELETE FROM refill_event")
            conn.execute("DELETE FROM inventory_state")
            self._write_state(conn, state)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Could not reset inventory: {e}") from e
        finally:
            conn.close()
        logger.info("Inventory data reset in %s", self.db_path)

    def get_recent_events(self, limit: Optional[int] = None) -> List[RefillEvent]:
        """Get refill events ordered by timestamp (newest first).

        Args:
            limit: Optional maximum number of events to return

        Returns:
            List of refill events
        """
        conn = self._connect()
        try:
            return self._fetch_events(conn, newest_first=True, limit=limit)
        except sqlite3.Error as e:
            raise StorageError(f"Could not read refill events: {e}") from e
        finally:
            conn.close()

    def get_doses(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[DoseLog]:
        """Get logged doses ordered by timestamp (newest first).

        Args:
            since: Only return doses taken at or after this time
            limit: Optional maximum number of doses to return

        Returns:
            List of doses; empty when the dose log does not exist yet
        """
        query = "SELECT id, timestamp, pill_drawn FROM dose_log"
        params = []
        if since is not None:
            query += " WHERE timestamp >= ?"
            params.append(since.isoformat())
        query += " ORDER BY timestamp DESC, seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return []
            raise StorageError(f"Could not read dose log: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Could not read dose log: {e}") from e
        finally:
            conn.close()

        return [
            DoseLog(id=row[0], timestamp=datetime.fromisoformat(row[1]), pill_drawn=bool(row[2]))
            for row in rows
        ]

    @staticmethod
    def _write_state(conn: sqlite3.Connection, state: InventoryState) -> None:
        conn.execute("""
            INSERT INTO inventory_state (id, current_pill_count, daily_usage_rate)
            VALUES (1, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                current_pill_count = excluded.current_pill_count,
                daily_usage_rate = excluded.daily_usage_rate
        """, (state.current_pill_count, state.daily_usage_rate))
        # Tuple order is append order, which seq preserves
        for event in state.refill_events:
            conn.execute("""
                INSERT OR IGNORE INTO refill_event (id, timestamp, kind, pill_count)
                VALUES (?, ?, ?, ?)
            """, (
                event.id,
                event.timestamp.isoformat(),
                event.kind.value,
                event.pill_count
            ))

    @staticmethod
    def _fetch_events(
        conn: sqlite3.Connection,
        newest_first: bool = False,
        limit: Optional[int] = None
    ) -> List[RefillEvent]:
        direction = "DESC" if newest_first else "ASC"
        query = (
            "SELECT id, timestamp, kind, pill_count FROM refill_event "
            f"ORDER BY timestamp {direction}, seq {direction}"
        )
        params = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = conn.execute(query, params)
        events = []
        for row in cursor.fetchall():
            events.append(RefillEvent(
                id=row[0],
                timestamp=datetime.fromisoformat(row[1]),
                kind=RefillEventKind(row[2]),
                pill_count=row[3]
            ))
        return events
