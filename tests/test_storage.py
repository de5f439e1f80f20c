"""
Unit tests for storage layer.

Tests schema creation, inventory persistence, the dose log and the
notification outbox.
"""

import os
import tempfile
from datetime import datetime, timedelta
from unittest.mock import patch

import sqlite3
import pytest

from refill_guard.notify.base import NotifyError
from refill_guard.notify.outbox import OutboxNotifier
from refill_guard.storage.db import get_connection
from refill_guard.storage.models import DoseLog, InventoryState, RefillEvent, RefillEventKind
from refill_guard.storage.repository import InventoryRepository, StorageError

NOW = datetime(2025, 3, 13, 9, 0, 0)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield os.path.join(temp_dir, "test.db")


@pytest.fixture
def repository(db_path):
    repo = InventoryRepository(db_path)
    repo.initialize_schema()
    return repo


@pytest.fixture
def outbox(db_path):
    notifier = OutboxNotifier(db_path)
    notifier.initialize_schema()
    return notifier


def sample_state():
    return InventoryState(
        current_pill_count=42,
        daily_usage_rate=2.0,
        refill_events=(
            RefillEvent(timestamp=NOW - timedelta(days=30), kind=RefillEventKind.RECEIVED, pill_count=90),
            RefillEvent(timestamp=NOW - timedelta(days=2), kind=RefillEventKind.REQUESTED),
        )
    )


def failing_connect(fragment):
    """Patch target making every statement containing fragment fail."""
    real_connect = sqlite3.connect

    class FailingConnection:
        """Connection that fails on matching statements."""
        def __init__(self, conn):
            self._conn = conn

        def execute(self, sql, *args):
            if fragment in sql:
                raise sqlite3.OperationalError("disk I/O error")
            return self._conn.execute(sql, *args)

        def __getattr__(self, name):
            return getattr(self._conn, name)

    return patch(
        "refill_guard.storage.db.sqlite3.connect",
        side_effect=lambda *a, **k: FailingConnection(real_connect(*a, **k))
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self, db_path, repository):
        """Verify tables are created correctly."""
        conn = get_connection(db_path)
        try:
            cursor = conn.execute("""
                SELECT name FROM sqlite_master
                WHERE type='table' ORDER BY name
            """)
            tables = [row[0] for row in cursor.fetchall()]
            assert tables == ["dose_log", "inventory_state", "refill_event"]

            cursor = conn.execute("PRAGMA table_info(refill_event)")
            column_names = [col[1] for col in cursor.fetchall()]
            assert column_names == ['seq', 'id', 'timestamp', 'kind', 'pill_count']

            cursor = conn.execute("PRAGMA table_info(dose_log)")
            column_names = [col[1] for col in cursor.fetchall()]
            assert column_names == ['seq', 'id', 'timestamp', 'pill_drawn']
        finally:
            conn.close()

    def test_schema_creation_is_idempotent(self, repository):
        """Test that creating the schema twice is harmless."""
        repository.initialize_schema()
        repository.initialize_schema()

    def test_nested_path_is_created(self):
        """Test that missing parent directories are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "nested", "dir", "test.db")
            InventoryRepository(db_path).initialize_schema()
            assert os.path.exists(db_path)

    def test_unopenable_path_raises_storage_error(self):
        """Test that a path under a regular file raises StorageError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            blocker = os.path.join(temp_dir, "blocker")
            with open(blocker, "w") as f:
                f.write("not a directory")

            with pytest.raises(StorageError, match="Could not open database"):
                InventoryRepository(os.path.join(blocker, "test.db")).initialize_schema()


class TestInventoryPersistence:
    """Test loading and saving the inventory."""

    def test_uninitialized_database_loads_empty(self, db_path):
        """Test that a fresh database loads as the empty state."""
        assert InventoryRepository(db_path).load() == InventoryState()

    def test_initialized_but_unsaved_loads_empty(self, repository):
        """Test that empty tables load as the empty state."""
        assert repository.load() == InventoryState()

    def test_round_trip(self, repository):
        """Test that counts, rate and events survive a save and load."""
        state = sample_state()

        repository.save(state)
        loaded = repository.load()

        assert loaded.current_pill_count == 42
        assert loaded.daily_usage_rate == 2.0
        assert set(loaded.refill_events) == set(state.refill_events)
        by_kind = {e.kind: e for e in loaded.refill_events}
        assert by_kind[RefillEventKind.RECEIVED].pill_count == 90
        assert by_kind[RefillEventKind.REQUESTED].pill_count is None
        assert loaded.is_waiting_for_refill

    def test_saving_twice_does_not_duplicate_events(self, repository):
        """Test that events already stored are not inserted again."""
        state = sample_state()
        repository.save(state)
        repository.save(state)

        assert len(repository.load().refill_events) == 2

    def test_scalar_fields_update(self, repository):
        """Test that count and rate are overwritten on save."""
        repository.save(sample_state())
        repository.save(InventoryState(current_pill_count=7, daily_usage_rate=3.0,
                                       refill_events=sample_state().refill_events))

        loaded = repository.load()
        assert loaded.current_pill_count == 7
        assert loaded.daily_usage_rate == 3.0

    def test_recent_events_newest_first(self, repository):
        """Test that recent events come back newest first."""
        repository.save(sample_state())
        events = repository.get_recent_events()
        assert [e.kind for e in events] == [RefillEventKind.REQUESTED, RefillEventKind.RECEIVED]
        assert len(repository.get_recent_events(limit=1)) == 1

    def test_equal_timestamps_reload_in_append_order(self, repository):
        """A request saved after a same-instant receipt is still newest after reload."""
        receipt = RefillEvent(timestamp=NOW, kind=RefillEventKind.RECEIVED, pill_count=30)
        repository.save(InventoryState(current_pill_count=30, refill_events=(receipt,)))
        request = RefillEvent(timestamp=NOW, kind=RefillEventKind.REQUESTED)
        repository.save(InventoryState(current_pill_count=30, refill_events=(receipt, request)))

        loaded = repository.load()

        assert loaded.refill_events == (receipt, request)
        assert loaded.is_waiting_for_refill
        assert repository.get_recent_events() == [request, receipt]
        assert repository.get_recent_events(limit=1) == [request]

    def test_equal_timestamps_receipt_saved_last_ends_wait(self, repository):
        """A receipt saved after a same-instant request ends the wait after reload."""
        request = RefillEvent(timestamp=NOW, kind=RefillEventKind.REQUESTED)
        receipt = RefillEvent(timestamp=NOW, kind=RefillEventKind.RECEIVED, pill_count=30)
        repository.save(InventoryState(current_pill_count=30, refill_events=(request, receipt)))

        assert not repository.load().is_waiting_for_refill

    def test_save_without_schema_raises_storage_error(self, db_path):
        """Test that saving before initialization raises StorageError."""
        with pytest.raises(StorageError, match="Could not save inventory"):
            InventoryRepository(db_path).save(sample_state())

    def test_failed_save_commits_nothing(self, repository):
        """Test that a failed ledger insert rolls back the scalar update."""
        repository.save(InventoryState(current_pill_count=5, daily_usage_rate=1.0))

        with failing_connect("INSERT OR IGNORE INTO refill_event"):
            with pytest.raises(StorageError):
                repository.save(sample_state())

        assert repository.load() == InventoryState(current_pill_count=5, daily_usage_rate=1.0)


class TestReset:
    """Test replacing all stored inventory data."""

    def test_reset_replaces_state_and_ledger(self, repository):
        """Test that a reset leaves only the new state."""
        repository.save(sample_state())

        repository.reset(InventoryState())

        assert repository.load() == InventoryState()
        assert repository.get_recent_events() == []

    def test_reset_keeps_dose_log(self, repository):
        """Test that the dose log survives a reset."""
        dose = DoseLog(timestamp=NOW)
        repository.save(sample_state(), added_dose=dose)

        repository.reset(InventoryState())

        assert repository.get_doses() == [dose]

    def test_failed_reset_keeps_previous_data(self, repository):
        """Test that the delete is rolled back when writing the new state fails."""
        repository.save(sample_state())

        with failing_connect("INSERT INTO inventory_state"):
            with pytest.raises(StorageError, match="Could not reset inventory"):
                repository.reset(InventoryState())

        loaded = repository.load()
        assert loaded.current_pill_count == 42
        assert len(loaded.refill_events) == 2


class TestDoseLog:
    """Test dose log persistence."""

    def test_added_dose_is_stored(self, repository):
        """Test that a dose saved with the state can be read back."""
        dose = DoseLog(timestamp=NOW, pill_drawn=False)

        repository.save(InventoryState(), added_dose=dose)

        assert repository.get_doses() == [dose]

    def test_doses_newest_first(self, repository):
        """Test dose ordering, with same-instant doses by append order."""
        older = DoseLog(timestamp=NOW - timedelta(hours=4))
        first = DoseLog(timestamp=NOW)
        second = DoseLog(timestamp=NOW)
        for dose in (first, older, second):
            repository.save(InventoryState(), added_dose=dose)

        assert repository.get_doses() == [second, first, older]
        assert repository.get_doses(limit=1) == [second]

    def test_doses_since(self, repository):
        """Test that since filters out earlier doses."""
        yesterday = DoseLog(timestamp=NOW - timedelta(days=1))
        today = DoseLog(timestamp=NOW)
        repository.save(InventoryState(), added_dose=yesterday)
        repository.save(InventoryState(), added_dose=today)

        assert repository.get_doses(since=NOW.replace(hour=0)) == [today]

    def test_removed_dose_is_deleted(self, repository):
        """Test that a removed dose is gone after the save."""
        dose = DoseLog(timestamp=NOW)
        repository.save(InventoryState(current_pill_count=9), added_dose=dose)

        repository.save(InventoryState(current_pill_count=10), removed_dose=dose)

        assert repository.get_doses() == []
        assert repository.load().current_pill_count == 10

    def test_uninitialized_dose_log_is_empty(self, db_path):
        """Test that a fresh database has no doses."""
        assert InventoryRepository(db_path).get_doses() == []


class TestOutboxNotifier:
    """Test the SQLite notification outbox."""

    def test_schedule_and_list(self, outbox):
        """Test that a scheduled notification is listed with its content."""
        outbox.schedule("follow-up-reminder", NOW, "Title", "Body")

        assert outbox.list_pending() == {"follow-up-reminder"}
        spec = outbox.pending()[0]
        assert spec.fire_at == NOW
        assert spec.title == "Title"
        assert spec.body == "Body"

    def test_same_key_replaces(self, outbox):
        """Test that rescheduling a key replaces the pending row."""
        outbox.schedule("inventory-reminder", NOW, "Title", "old")
        outbox.schedule("inventory-reminder", NOW + timedelta(days=1), "Title", "new")

        specs = outbox.pending()
        assert len(specs) == 1
        assert specs[0].body == "new"

    def test_cancel(self, outbox):
        """Test that cancel removes known keys and ignores unknown ones."""
        outbox.schedule("inventory-reminder", NOW, "t", "b")
        outbox.schedule("time-reminder", NOW, "t", "b")

        outbox.cancel(["inventory-reminder", "unknown"])

        assert outbox.list_pending() == {"time-reminder"}

    def test_missing_table(self, db_path):
        """Test that a missing outbox table means nothing is pending."""
        outbox = OutboxNotifier(db_path)
        outbox.cancel(["time-reminder"])
        assert outbox.pending() == []

    def test_schedule_failure_raises_notify_error(self, db_path):
        """Test that a failed write surfaces as NotifyError for the key."""
        outbox = OutboxNotifier(db_path)
        with pytest.raises(NotifyError) as excinfo:
            outbox.schedule("time-reminder", NOW, "t", "b")
        assert excinfo.value.key == "time-reminder"

    def test_cancel_failure_raises_notify_error(self, db_path, outbox):
        """Test that a failed delete surfaces as NotifyError for the key."""
        outbox.schedule("time-reminder", NOW, "t", "b")
        conn = get_connection(db_path)
        try:
            conn.execute("""
                CREATE TRIGGER keep_pending BEFORE DELETE ON pending_notification
                BEGIN SELECT RAISE(ABORT, 'locked'); END
            """)
            conn.commit()
        finally:
            conn.close()

        with pytest.raises(NotifyError) as excinfo:
            outbox.cancel(["time-reminder"])

        assert excinfo.value.key == "time-reminder"
        assert "locked" in str(excinfo.value)
        assert outbox.list_pending() == {"time-reminder"}

    def test_unreadable_outbox_raises_notify_error(self):
        """Test that an outbox that cannot be opened raises NotifyError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            outbox = OutboxNotifier(temp_dir)

            with pytest.raises(NotifyError) as excinfo:
                outbox.pending()

            assert excinfo.value.key == "outbox"
