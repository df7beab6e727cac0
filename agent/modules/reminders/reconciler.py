"""Heals drift between the OS plugin and the notification index.

Run on app start, resume and date rollover. The plugin's pending list is
ground truth: notifications the index does not know are canceled, and
indexed notifications the plugin lost trigger a re-derive of today's
reminders from the schedule cache.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from modules.reminders.exceptions import IndexPersistenceError, PluginNotInitializedError
from modules.reminders.models import ReconcileReport, ReminderPayload, parse_payload
from modules.reminders.plugin import require_initialized
from shared import diagnostics

if TYPE_CHECKING:
    from modules.reminders.service import ReminderService

logger = structlog.get_logger()


class Reconciler:
    def __init__(self, service: ReminderService):
        self._service = service

    async def _scoped_pending_ids(self, user_id: str, pet_id: str) -> set[int]:
        """Pending IDs of this pet's treatment reminders.

        Only notifications whose payload parses as a reminder payload for
        (user_id, pet_id) are considered; weekly summaries, group summaries
        and other pets' reminders are never touched.
        """
        pending = await self._service.plugin.list_pending()
        ids = set()
        for notification in pending:
            payload = parse_payload(notification.payload)
            if isinstance(payload, ReminderPayload) and payload.belongs_to(user_id, pet_id):
                ids.add(notification.id)
        return ids

    async def reconcile(self, user_id: str, pet_id: str, force: bool = False) -> ReconcileReport:
        """Converge plugin and index for today.

        With ``force`` the re-derive and the weekly summary refresh always
        run, even when nothing is missing.
        """
        service = self._service
        require_initialized(service.plugin)
        report = ReconcileReport()

        try:
            pending_ids = await self._scoped_pending_ids(user_id, pet_id)
        except PluginNotInitializedError:
            raise
        except Exception as e:
            logger.error("reconcile_list_pending_failed", pet_id=pet_id, error=str(e))
            report.errors.append(f"list_pending: {e}")
            return report

        today = service.index.today()
        entries = await service.index.load(user_id, pet_id, today)
        indexed_ids = {e.notification_id for e in entries}
        # A late slot's follow-up lands after midnight but lives in yesterday's record.
        yesterday = await service.index.load(user_id, pet_id, today - timedelta(days=1))
        carried_ids = {e.notification_id for e in yesterday}

        orphans = pending_ids - indexed_ids - carried_ids
        missing = indexed_ids - pending_ids
        report.missing_count = len(missing)

        for notification_id in sorted(orphans):
            try:
                await service.plugin.cancel(notification_id)
                report.orphans_canceled += 1
            except PluginNotInitializedError:
                raise
            except Exception as e:
                logger.warning("orphan_cancel_failed", pet_id=pet_id, notification_id=notification_id, error=str(e))
                report.errors.append(f"cancel {notification_id}: {e}")

        if force or missing:
            # Keep entries the plugin still holds; everything else is re-derived.
            surviving = [e for e in entries if e.notification_id in pending_ids]
            try:
                await service.index.save(user_id, pet_id, today, surviving)
            except IndexPersistenceError as e:
                report.errors.append(str(e))
            report.schedule_result = await service.schedule_all_for_today(user_id, pet_id)
            report.errors.extend(report.schedule_result.errors)
            report.rebuilt = True

        if force:
            await service.cancel_weekly_summary(user_id, pet_id)
            report.weekly_summary = await service.schedule_weekly_summary(user_id, pet_id)

        await service.diagnostics.report(
            diagnostics.RECONCILIATION_PERFORMED,
            user_id=user_id,
            pet_id=pet_id,
            orphans_canceled=report.orphans_canceled,
            missing_count=report.missing_count,
            rebuilt=report.rebuilt,
            forced=force,
        )
        logger.info(
            "reconcile_complete",
            pet_id=pet_id,
            orphans_canceled=report.orphans_canceled,
            missing_count=report.missing_count,
            rebuilt=report.rebuilt,
            forced=force,
        )
        return report
