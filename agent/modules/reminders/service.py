"""Reminder orchestrator.

Turns cached treatment schedules into OS notifications for today. Each
(schedule, slot) is classified against the grace period, handed to the plugin,
and only then recorded in the notification index, followed by its follow-up
reminder. Notification IDs are deterministic, so running any operation twice
converges to the same plugin and index state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo

import structlog

from modules.reminders.content import (
    WEEKLY_SUMMARY_CONTENT,
    WEEKLY_SUMMARY_PAYLOAD,
    group_key_for,
    reminder_content,
)
from modules.reminders.exceptions import PluginNotInitializedError
from modules.reminders.index_store import Clock, NotificationIndexStore, categorize_by_type
from modules.reminders.models import (
    NotificationKind,
    Outcome,
    ReconcileReport,
    ReminderPayload,
    Schedule,
    ScheduledNotificationEntry,
    ScheduleResult,
    SnoozeResult,
    TreatmentType,
    UnparseablePayload,
    WeeklySummaryResult,
    parse_payload,
)
from modules.reminders.notification_ids import (
    generate_notification_id,
    generate_weekly_summary_id,
    group_summary_id,
)
from modules.reminders.plugin import ReminderPlugin, require_initialized
from modules.reminders.reconciler import Reconciler
from modules.reminders.schedules import ScheduleSource
from modules.reminders.settings_store import NotificationSettingsStore
from modules.reminders.timing import (
    SchedulingDecision,
    classify,
    followup_instant,
    next_weekly_summary_instant,
    slot_instant,
    snooze_instant,
    within_rolling_window,
)
from shared import diagnostics
from shared.config import Settings
from shared.diagnostics import DiagnosticsReporter

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReminderPolicy:
    """Scheduling knobs, derived from :class:`shared.config.Settings`."""

    grace: timedelta = timedelta(minutes=30)
    followup_offset_hours: int = 2
    snooze_minutes: int = 15
    max_per_pet: int = 50
    warning_threshold: int = 40
    rolling_window_hours: int = 24
    weekly_summary_lookahead_weeks: int = 4

    @classmethod
    def from_settings(cls, settings: Settings) -> ReminderPolicy:
        return cls(
            grace=timedelta(minutes=settings.grace_period_minutes),
            followup_offset_hours=settings.followup_offset_hours,
            snooze_minutes=settings.snooze_minutes,
            max_per_pet=settings.max_notifications_per_pet,
            warning_threshold=settings.limit_warning_threshold,
            rolling_window_hours=settings.rolling_window_hours,
            weekly_summary_lookahead_weeks=settings.weekly_summary_lookahead_weeks,
        )


class ReminderService:
    """Schedules, cancels and snoozes treatment reminders for one device."""

    def __init__(
        self,
        plugin: ReminderPlugin,
        index_store: NotificationIndexStore,
        schedules: ScheduleSource,
        settings_store: NotificationSettingsStore,
        diagnostics_reporter: DiagnosticsReporter | None = None,
        policy: ReminderPolicy | None = None,
        clock: Clock | None = None,
        tz: tzinfo = timezone.utc,
    ):
        self.plugin = plugin
        self.index = index_store
        self.schedules = schedules
        self.settings_store = settings_store
        self.diagnostics = diagnostics_reporter or DiagnosticsReporter()
        self.policy = policy or ReminderPolicy()
        self.tz = tz
        self._clock = clock or (lambda: datetime.now(tz))

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    # ------------------------------------------------------------------
    # Daily scheduling
    # ------------------------------------------------------------------

    async def schedule_all_for_today(self, user_id: str, pet_id: str) -> ScheduleResult:
        """Schedule every active schedule with a reminder today.

        Reads the schedule cache only. A failing schedule is recorded in
        ``errors`` and does not stop the others.
        """
        require_initialized(self.plugin)

        settings = await self.settings_store.load(user_id)
        if not settings.enable_notifications:
            logger.info("reminders_disabled", user_id=user_id, pet_id=pet_id)
            return ScheduleResult(disabled=True)

        schedules = await self.schedules.cached_schedules(user_id, pet_id)
        if not schedules:
            logger.info("reminders_cache_empty", user_id=user_id, pet_id=pet_id)
            return ScheduleResult(cache_empty=True)

        now = self.now()
        result = ScheduleResult()
        for schedule in schedules:
            if not schedule.has_reminder_on(now.date()):
                continue
            try:
                result.merge(await self._schedule_slots(user_id, pet_id, schedule, now))
            except PluginNotInitializedError:
                raise
            except Exception as e:
                logger.error(
                    "schedule_failed",
                    pet_id=pet_id,
                    schedule_id=schedule.id,
                    error=str(e),
                )
                result.errors.append(f"{schedule.id}: {e}")
                await self.diagnostics.report(
                    diagnostics.SCHEDULING_ERROR,
                    user_id=user_id,
                    pet_id=pet_id,
                    schedule_id=schedule.id,
                    operation="schedule_all_for_today",
                )

        await self._refresh_group_summary(user_id, pet_id)
        logger.info(
            "reminders_scheduled",
            pet_id=pet_id,
            scheduled=result.scheduled,
            immediate=result.immediate,
            missed=result.missed,
            skipped_due_to_limit=result.skipped_due_to_limit,
            errors=len(result.errors),
        )
        return result

    async def schedule_for_schedule(self, user_id: str, pet_id: str, schedule: Schedule) -> ScheduleResult:
        """Cancel and re-create today's reminders for a single schedule."""
        require_initialized(self.plugin)
        await self.cancel_for_schedule(user_id, pet_id, schedule.id)

        settings = await self.settings_store.load(user_id)
        if not settings.enable_notifications:
            return ScheduleResult(disabled=True)

        now = self.now()
        if not schedule.has_reminder_on(now.date()):
            return ScheduleResult(skipped=True)

        result = await self._schedule_slots(user_id, pet_id, schedule, now)
        await self._refresh_group_summary(user_id, pet_id)
        return result

    async def _schedule_slots(
        self,
        user_id: str,
        pet_id: str,
        schedule: Schedule,
        now: datetime,
    ) -> ScheduleResult:
        result = ScheduleResult()
        today = now.date()

        count = await self.index.get_count_for_pet(user_id, pet_id, today)
        limit_reached = count >= self.policy.max_per_pet
        if limit_reached:
            await self.diagnostics.report(
                diagnostics.LIMIT_REACHED,
                user_id=user_id,
                pet_id=pet_id,
                current_count=count,
                limit=self.policy.max_per_pet,
            )
        elif count >= self.policy.warning_threshold:
            await self.diagnostics.report(
                diagnostics.LIMIT_WARNING,
                user_id=user_id,
                pet_id=pet_id,
                current_count=count,
                limit=self.policy.max_per_pet,
            )

        def beyond_window(instant: datetime) -> bool:
            return limit_reached and not within_rolling_window(
                instant, now, self.policy.rolling_window_hours
            )

        for slot in schedule.reminder_slots_on(today):
            try:
                instant = slot_instant(slot, today, self.tz)
                decision = classify(instant, now, self.policy.grace)
                if decision == SchedulingDecision.MISSED:
                    result.missed += 1
                    continue
                if beyond_window(instant):
                    result.skipped_due_to_limit += 1
                    continue

                fire_at = now if decision == SchedulingDecision.IMMEDIATE else instant
                await self._schedule_entry(
                    user_id, pet_id, schedule.id, schedule.treatment_type,
                    slot, NotificationKind.INITIAL, fire_at,
                )
                if decision == SchedulingDecision.IMMEDIATE:
                    result.immediate += 1
                else:
                    result.scheduled += 1

                followup_at = followup_instant(instant, self.policy.followup_offset_hours)
                if followup_at <= now:
                    continue
                if beyond_window(followup_at):
                    result.skipped_due_to_limit += 1
                    continue
                await self._schedule_entry(
                    user_id, pet_id, schedule.id, schedule.treatment_type,
                    slot, NotificationKind.FOLLOWUP, followup_at,
                )
                result.scheduled += 1
            except PluginNotInitializedError:
                raise
            except Exception as e:
                logger.error(
                    "slot_schedule_failed",
                    pet_id=pet_id,
                    schedule_id=schedule.id,
                    time_slot=slot,
                    error=str(e),
                )
                result.errors.append(f"{schedule.id}@{slot}: {e}")
        return result

    async def _schedule_entry(
        self,
        user_id: str,
        pet_id: str,
        schedule_id: str,
        treatment_type: TreatmentType,
        time_slot: str,
        kind: NotificationKind,
        fire_at: datetime,
    ) -> int:
        """Hand one reminder to the plugin, then index it."""
        notification_id = generate_notification_id(user_id, pet_id, schedule_id, time_slot, kind)
        content = reminder_content(treatment_type, kind)
        payload = ReminderPayload(
            user_id=user_id,
            pet_id=pet_id,
            schedule_id=schedule_id,
            time_slot=time_slot,
            kind=kind,
            treatment_type=treatment_type,
        )
        await self.plugin.schedule_at(
            notification_id,
            content.title,
            content.body,
            fire_at,
            content.channel_id,
            payload=payload.to_json(),
            group_key=group_key_for(pet_id),
        )
        await self.index.put(
            user_id,
            pet_id,
            ScheduledNotificationEntry(
                notification_id=notification_id,
                schedule_id=schedule_id,
                treatment_type=treatment_type,
                time_slot=time_slot,
                kind=kind,
            ),
        )
        return notification_id

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def _cancel_ids(self, notification_ids: list[int], pet_id: str) -> list[int]:
        """Cancel each ID, isolating failures. Returns the IDs actually canceled."""
        canceled = []
        for notification_id in notification_ids:
            try:
                await self.plugin.cancel(notification_id)
                canceled.append(notification_id)
            except PluginNotInitializedError:
                raise
            except Exception as e:
                logger.warning(
                    "notification_cancel_failed",
                    pet_id=pet_id,
                    notification_id=notification_id,
                    error=str(e),
                )
        return canceled

    async def cancel_for_schedule(self, user_id: str, pet_id: str, schedule_id: str) -> int:
        """Cancel every indexed reminder of a schedule. Returns the cancel count."""
        require_initialized(self.plugin)
        entries = await self.index.get_for_today(user_id, pet_id)
        targets = [e.notification_id for e in entries if e.schedule_id == schedule_id]
        canceled = await self._cancel_ids(targets, pet_id)
        # Entries whose cancel failed stay indexed; the plugin still holds them.
        if len(canceled) == len(targets):
            await self.index.remove_all_for_schedule(user_id, pet_id, schedule_id)
        else:
            await self.index.remove_ids(user_id, pet_id, canceled)
        await self._refresh_group_summary(user_id, pet_id)
        logger.info("schedule_reminders_canceled", pet_id=pet_id, schedule_id=schedule_id, canceled=len(canceled))
        return len(canceled)

    async def cancel_slot(self, user_id: str, pet_id: str, schedule_id: str, time_slot: str) -> int:
        """Cancel all kinds for one slot. Returns how many index entries went away.

        Plugin cancels are issued by deterministic ID for every kind, so an
        unindexed notification for the slot is removed as well.
        """
        require_initialized(self.plugin)
        removed = 0
        for kind in NotificationKind:
            notification_id = generate_notification_id(user_id, pet_id, schedule_id, time_slot, kind)
            if not await self._cancel_ids([notification_id], pet_id):
                continue
            outcome = await self.index.remove_by(user_id, pet_id, schedule_id, time_slot, kind)
            removed += outcome.value
        await self._refresh_group_summary(user_id, pet_id)
        return removed

    async def cancel_all_for_today(self, user_id: str, pet_id: str) -> int:
        """Cancel everything the engine scheduled for this pet today."""
        require_initialized(self.plugin)
        entries = await self.index.get_for_today(user_id, pet_id)
        canceled = await self._cancel_ids([e.notification_id for e in entries], pet_id)
        if len(canceled) == len(entries):
            await self.index.clear_for_date(user_id, pet_id, self.index.today())
        else:
            await self.index.remove_ids(user_id, pet_id, canceled)
        await self.cancel_weekly_summary(user_id, pet_id)
        try:
            await self.plugin.cancel_group_summary(pet_id)
        except Exception as e:
            logger.warning("group_summary_cancel_failed", pet_id=pet_id, error=str(e))
        logger.info("reminders_canceled_for_today", pet_id=pet_id, canceled=len(canceled))
        return len(canceled)

    async def reschedule_all(self, user_id: str, pet_id: str) -> ReconcileReport:
        """Forced reconciliation: clear today's state and rebuild it from cache."""
        return await Reconciler(self).reconcile(user_id, pet_id, force=True)

    # ------------------------------------------------------------------
    # Snooze
    # ------------------------------------------------------------------

    async def snooze_current(self, payload: str | ReminderPayload | None) -> SnoozeResult:
        """Push a delivered reminder back by the snooze interval."""
        require_initialized(self.plugin)

        parsed = payload if isinstance(payload, ReminderPayload) else parse_payload(payload)
        if isinstance(parsed, UnparseablePayload):
            logger.warning("snooze_invalid_payload", reason=parsed.reason)
            return SnoozeResult(success=False, reason="invalid_payload")

        settings = await self.settings_store.load(parsed.user_id)
        if not settings.snooze_enabled:
            return SnoozeResult(success=False, reason="snooze_disabled")
        if parsed.kind not in (NotificationKind.INITIAL, NotificationKind.FOLLOWUP):
            return SnoozeResult(success=False, reason="invalid_kind")

        until = snooze_instant(self.now(), self.policy.snooze_minutes)
        try:
            await self.cancel_slot(parsed.user_id, parsed.pet_id, parsed.schedule_id, parsed.time_slot)
            snooze_id = await self._schedule_entry(
                parsed.user_id,
                parsed.pet_id,
                parsed.schedule_id,
                parsed.treatment_type,
                parsed.time_slot,
                NotificationKind.SNOOZE,
                until,
            )
        except PluginNotInitializedError:
            raise
        except Exception as e:
            logger.error("snooze_failed", pet_id=parsed.pet_id, schedule_id=parsed.schedule_id, error=str(e))
            return SnoozeResult(success=False, reason="scheduling_failed")

        await self._refresh_group_summary(parsed.user_id, parsed.pet_id)
        await self.diagnostics.report(
            diagnostics.REMINDER_SNOOZED,
            user_id=parsed.user_id,
            pet_id=parsed.pet_id,
            schedule_id=parsed.schedule_id,
            treatment_type=parsed.treatment_type.value,
        )
        return SnoozeResult(success=True, snoozed_until=until, snooze_id=snooze_id)

    # ------------------------------------------------------------------
    # Weekly summary
    # ------------------------------------------------------------------

    async def schedule_weekly_summary(self, user_id: str, pet_id: str) -> WeeklySummaryResult:
        require_initialized(self.plugin)

        settings = await self.settings_store.load(user_id)
        if not settings.enable_notifications or not settings.weekly_summary_enabled:
            return WeeklySummaryResult(success=False, reason="disabled_in_settings")

        fire_at = next_weekly_summary_instant(self.now())
        notification_id = generate_weekly_summary_id(user_id, pet_id, fire_at.date())
        try:
            pending = await self.plugin.list_pending()
            if any(n.id == notification_id for n in pending):
                return WeeklySummaryResult(
                    success=False,
                    reason="already_scheduled",
                    scheduled_for=fire_at,
                    notification_id=notification_id,
                )
            await self.plugin.schedule_at(
                notification_id,
                WEEKLY_SUMMARY_CONTENT.title,
                WEEKLY_SUMMARY_CONTENT.body,
                fire_at,
                WEEKLY_SUMMARY_CONTENT.channel_id,
                payload=WEEKLY_SUMMARY_PAYLOAD,
            )
        except PluginNotInitializedError:
            raise
        except Exception as e:
            logger.error("weekly_summary_schedule_failed", pet_id=pet_id, error=str(e))
            return WeeklySummaryResult(success=False, reason="scheduling_failed")

        logger.info("weekly_summary_scheduled", pet_id=pet_id, scheduled_for=fire_at.isoformat())
        return WeeklySummaryResult(success=True, scheduled_for=fire_at, notification_id=notification_id)

    def weekly_summary_ids(self, user_id: str, pet_id: str) -> list[int]:
        """IDs of the weekly summaries that may currently be pending."""
        first_monday: date = next_weekly_summary_instant(self.now()).date()
        return [
            generate_weekly_summary_id(user_id, pet_id, first_monday + timedelta(weeks=i))
            for i in range(self.policy.weekly_summary_lookahead_weeks)
        ]

    async def cancel_weekly_summary(self, user_id: str, pet_id: str) -> bool:
        """Cancel upcoming weekly summaries. True if any cancel call succeeded."""
        require_initialized(self.plugin)
        canceled = await self._cancel_ids(self.weekly_summary_ids(user_id, pet_id), pet_id)
        return bool(canceled)

    # ------------------------------------------------------------------
    # Group summary
    # ------------------------------------------------------------------

    async def _refresh_group_summary(self, user_id: str, pet_id: str) -> Outcome[dict[str, int]]:
        try:
            entries = await self.index.get_for_today(user_id, pet_id)
            counts = categorize_by_type(entries)
            if not entries:
                await self.plugin.cancel_group_summary(pet_id)
            else:
                await self.plugin.show_group_summary(
                    group_summary_id(pet_id),
                    pet_id,
                    counts[TreatmentType.MEDICATION.value],
                    counts[TreatmentType.FLUID.value],
                    group_key_for(pet_id),
                )
            return Outcome(counts)
        except Exception as e:
            logger.warning("group_summary_refresh_failed", pet_id=pet_id, error=str(e))
            return Outcome({}, error=str(e))
