"""Tests for the settings store and the schedule cache."""

from __future__ import annotations

import pytest

from modules.reminders.models import NotificationSettings
from modules.reminders.settings_store import NotificationSettingsStore


# ---------------------------------------------------------------------------
# NotificationSettingsStore
# ---------------------------------------------------------------------------


class TestNotificationSettingsStore:
    @pytest.mark.asyncio
    async def test_missing_returns_defaults(self, kv_store):
        store = NotificationSettingsStore(kv_store)
        assert await store.load("u") == NotificationSettings()

    @pytest.mark.asyncio
    async def test_save_and_load(self, kv_store):
        store = NotificationSettingsStore(kv_store)
        await store.save("u", NotificationSettings(weekly_summary_enabled=False))

        assert '"weeklySummaryEnabled": false' in kv_store.data["notif_settings_u"]
        assert not (await store.load("u")).weekly_summary_enabled

    @pytest.mark.asyncio
    async def test_invalid_json_returns_defaults(self, kv_store):
        kv_store.data["notif_settings_u"] = "{oops"
        assert await NotificationSettingsStore(kv_store).load("u") == NotificationSettings()

    @pytest.mark.asyncio
    async def test_bad_end_of_day_time_keeps_other_toggles(self, kv_store):
        kv_store.data["notif_settings_u"] = '{"enableNotifications": false, "endOfDayTime": "25:00"}'

        settings = await NotificationSettingsStore(kv_store).load("u")

        assert not settings.enable_notifications
        assert settings.end_of_day_time == "22:00"

    @pytest.mark.asyncio
    async def test_bad_end_of_day_time_still_disables_scheduling(
        self, engine, kv_store, schedule_cache, make_schedule, plugin
    ):
        kv_store.data["notif_settings_user-1"] = '{"enableNotifications": false, "endOfDayTime": "25:00"}'
        schedule_cache.replace("user-1", "pet-1", [make_schedule()])

        result = await engine.service.schedule_all_for_today("user-1", "pet-1")

        assert result.disabled
        assert plugin.scheduled == {}

    @pytest.mark.asyncio
    async def test_read_failure_returns_defaults(self, kv_store):
        kv_store.fail_reads = True
        assert await NotificationSettingsStore(kv_store).load("u") == NotificationSettings()

    @pytest.mark.asyncio
    async def test_clear(self, kv_store):
        store = NotificationSettingsStore(kv_store)
        await store.save("u", NotificationSettings())
        await store.clear("u")
        assert kv_store.data == {}


# ---------------------------------------------------------------------------
# ScheduleCache
# ---------------------------------------------------------------------------


class TestScheduleCache:
    @pytest.mark.asyncio
    async def test_empty_is_none(self, schedule_cache):
        assert await schedule_cache.cached_schedules("u", "p") is None

    @pytest.mark.asyncio
    async def test_scoped_per_pet(self, schedule_cache, make_schedule):
        schedule_cache.replace("u", "p", [make_schedule("a")])
        schedule_cache.upsert("u", "p", make_schedule("b"))
        schedule_cache.upsert("u", "other", make_schedule("c"))

        ids = [s.id for s in await schedule_cache.cached_schedules("u", "p")]

        assert sorted(ids) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self, schedule_cache, make_schedule):
        schedule_cache.upsert("u", "p", make_schedule("a", times=("08:00",)))
        schedule_cache.upsert("u", "p", make_schedule("a", times=("09:00",)))

        [schedule] = await schedule_cache.cached_schedules("u", "p")

        assert schedule.reminder_times[0].hour == 9

    @pytest.mark.asyncio
    async def test_remove_last_schedule_empties_cache(self, schedule_cache, make_schedule):
        schedule_cache.replace("u", "p", [make_schedule("a")])
        schedule_cache.remove("u", "p", "a")
        assert await schedule_cache.cached_schedules("u", "p") is None
