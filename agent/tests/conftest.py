"""Shared test fixtures for the agent test suite.

Provides an in-memory key-value store, a fake notification plugin, a
controllable clock and factory helpers so reminder tests run without Redis
or a device.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from unittest.mock import AsyncMock

import pytest

from modules.reminders.main import build_engine
from modules.reminders.models import PendingNotification, Schedule, TreatmentFrequency, TreatmentType
from modules.reminders.plugin import ReminderPlugin
from modules.reminders.schedules import ScheduleCache
from shared.config import Settings
from shared.redis import KeyValueStore

# ---------------------------------------------------------------------------
# Key-value store
# ---------------------------------------------------------------------------


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store; set ``fail_reads``/``fail_writes`` to simulate I/O errors."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.data[key] = value

    async def remove(self, key: str) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        self.data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return [k for k in self.data if k.startswith(prefix)]


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.publish = AsyncMock()
    return redis


# ---------------------------------------------------------------------------
# Notification plugin
# ---------------------------------------------------------------------------


class FakeReminderPlugin(ReminderPlugin):
    """Records scheduled notifications; every scheduled one stays pending."""

    def __init__(self, initialized: bool = True):
        self.initialized = initialized
        self.scheduled: dict[int, dict] = {}
        self.canceled: list[int] = []
        self.group_summaries: dict[str, dict] = {}
        self.fail_schedule_ids: set[int] = set()
        self.fail_cancel_ids: set[int] = set()
        self.fail_list_pending = False

    @property
    def is_initialized(self) -> bool:
        return self.initialized

    async def schedule_at(
        self,
        notification_id,
        title,
        body,
        instant,
        channel_id,
        payload=None,
        group_key=None,
    ):
        if notification_id in self.fail_schedule_ids:
            raise RuntimeError(f"cannot schedule {notification_id}")
        self.scheduled[notification_id] = {
            "title": title,
            "body": body,
            "instant": instant,
            "channel_id": channel_id,
            "payload": payload,
            "group_key": group_key,
        }

    async def cancel(self, notification_id):
        if notification_id in self.fail_cancel_ids:
            raise RuntimeError(f"cannot cancel {notification_id}")
        self.canceled.append(notification_id)
        self.scheduled.pop(notification_id, None)

    async def cancel_all(self):
        self.canceled.extend(self.scheduled)
        self.scheduled.clear()

    async def list_pending(self):
        if self.fail_list_pending:
            raise RuntimeError("plugin unavailable")
        return [PendingNotification(id=i, payload=n["payload"]) for i, n in self.scheduled.items()]

    async def show_group_summary(self, summary_id, pet_id, medication_count, fluid_count, group_key):
        self.group_summaries[pet_id] = {
            "summary_id": summary_id,
            "medication": medication_count,
            "fluid": fluid_count,
            "group_key": group_key,
        }

    async def cancel_group_summary(self, pet_id):
        self.group_summaries.pop(pet_id, None)

    def add_foreign(self, notification_id: int, payload: str | None) -> None:
        """Register a pending notification the engine did not schedule."""
        self.scheduled[notification_id] = {
            "title": "",
            "body": "",
            "instant": None,
            "channel_id": "",
            "payload": payload,
            "group_key": None,
        }


@pytest.fixture
def plugin():
    return FakeReminderPlugin()


# ---------------------------------------------------------------------------
# Clock and diagnostics
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock whose current time tests can move."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0) -> None:
        self.now = self.now.replace(hour=hour, minute=minute)


@pytest.fixture
def clock():
    # Wednesday
    return FakeClock(datetime(2026, 10, 14, 7, 0, tzinfo=timezone.utc))


class DiagnosticsRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def named(self, name: str) -> list:
        return [e for e in self.events if e.name == name]


@pytest.fixture
def diagnostics_sink():
    return DiagnosticsRecorder()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_schedule():
    """Factory for creating Schedule instances."""

    def _make(
        schedule_id: str = "sched-1",
        treatment_type: TreatmentType = TreatmentType.MEDICATION,
        times: tuple[str, ...] = ("08:00",),
        frequency: TreatmentFrequency = TreatmentFrequency.ONCE_DAILY,
        is_active: bool = True,
        created_at: datetime | None = None,
    ) -> Schedule:
        return Schedule(
            id=schedule_id,
            treatment_type=treatment_type,
            frequency=frequency,
            reminder_times=[time.fromisoformat(t) for t in times],
            is_active=is_active,
            created_at=created_at or datetime(2026, 10, 1, tzinfo=timezone.utc),
            medication_name="Benazepril",
            target_dosage=2.5,
            medication_unit="mg",
        )

    return _make


@pytest.fixture
def schedule_cache():
    return ScheduleCache()


@pytest.fixture
def engine(plugin, schedule_cache, kv_store, diagnostics_sink, clock):
    """A fully wired engine over in-memory fakes, in UTC."""
    return build_engine(
        plugin,
        schedule_cache,
        kv_store,
        diagnostics_sink=diagnostics_sink,
        settings=Settings(reminder_timezone="UTC"),
        clock=clock,
    )
