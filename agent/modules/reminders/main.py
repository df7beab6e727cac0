"""Reminder engine wiring and app lifecycle hooks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from modules.reminders.index_store import Clock, NotificationIndexStore
from modules.reminders.models import ReconcileReport
from modules.reminders.plugin import ReminderPlugin
from modules.reminders.reconciler import Reconciler
from modules.reminders.schedules import ScheduleSource
from modules.reminders.service import ReminderPolicy, ReminderService
from modules.reminders.settings_store import NotificationSettingsStore
from shared.config import Settings, get_settings
from shared.diagnostics import DiagnosticsReporter, DiagnosticsSink, RedisDiagnosticsSink
from shared.redis import KeyValueStore, RedisKeyValueStore, get_redis

logger = structlog.get_logger()


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
    )


@dataclass
class ReminderEngine:
    """All reminder components for one process, built once at startup."""

    settings: Settings
    plugin: ReminderPlugin
    index_store: NotificationIndexStore
    settings_store: NotificationSettingsStore
    service: ReminderService
    reconciler: Reconciler

    async def on_app_start(self, user_id: str, pet_id: str) -> ReconcileReport:
        report = await self.reconciler.reconcile(user_id, pet_id)
        if not report.rebuilt:
            report.schedule_result = await self.service.schedule_all_for_today(user_id, pet_id)
        report.weekly_summary = await self.service.schedule_weekly_summary(user_id, pet_id)
        logger.info("reminders_app_start", pet_id=pet_id, rebuilt=report.rebuilt)
        return report

    async def on_app_resume(self, user_id: str, pet_id: str) -> ReconcileReport:
        return await self.reconciler.reconcile(user_id, pet_id)

    async def on_date_rollover(self, user_id: str, pet_id: str) -> ReconcileReport:
        purged = await self.index_store.purge_stale(self.index_store.today())
        logger.info("reminders_date_rollover", pet_id=pet_id, purged=purged)
        return await self.reconciler.reconcile(user_id, pet_id, force=True)

    async def on_logout(self, user_id: str, pet_id: str) -> int:
        """Cancel everything for the pet. Notification settings are kept."""
        return await self.service.cancel_all_for_today(user_id, pet_id)


def build_engine(
    plugin: ReminderPlugin,
    schedules: ScheduleSource,
    kv_store: KeyValueStore,
    diagnostics_sink: DiagnosticsSink | None = None,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> ReminderEngine:
    settings = settings or get_settings()
    tz = ZoneInfo(settings.reminder_timezone)
    clock = clock or (lambda: datetime.now(tz))
    reporter = DiagnosticsReporter(diagnostics_sink)

    index_store = NotificationIndexStore(
        kv_store,
        plugin=plugin,
        diagnostics_reporter=reporter,
        clock=clock,
        tz=tz,
    )
    settings_store = NotificationSettingsStore(kv_store)
    service = ReminderService(
        plugin,
        index_store,
        schedules,
        settings_store,
        diagnostics_reporter=reporter,
        policy=ReminderPolicy.from_settings(settings),
        clock=clock,
        tz=tz,
    )
    return ReminderEngine(
        settings=settings,
        plugin=plugin,
        index_store=index_store,
        settings_store=settings_store,
        service=service,
        reconciler=Reconciler(service),
    )


async def create_redis_engine(plugin: ReminderPlugin, schedules: ScheduleSource) -> ReminderEngine:
    """Build an engine persisting to Redis and publishing diagnostics there."""
    configure_logging()
    settings = get_settings()
    redis_client = await get_redis()
    engine = build_engine(
        plugin,
        schedules,
        RedisKeyValueStore(redis_client),
        diagnostics_sink=RedisDiagnosticsSink(redis_client, settings.diagnostics_channel),
        settings=settings,
    )
    logger.info("reminder_engine_ready", timezone=settings.reminder_timezone)
    return engine
