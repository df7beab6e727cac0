"""Per-day notification index persisted in the key-value store.

Each (user, pet, date) gets one JSON document holding the outstanding
notification entries plus an FNV-1a checksum of them. The whole document is
written in a single ``set`` so readers never observe a half-written index.
A checksum mismatch marks the record corrupt; recovery rebuilds it from the
OS plugin's pending snapshot and never invents entries.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable

import structlog
from pydantic import ValidationError

from modules.reminders.exceptions import IndexPersistenceError
from modules.reminders.models import (
    NotificationKind,
    Outcome,
    PendingNotification,
    ReminderPayload,
    ScheduledNotificationEntry,
    TreatmentType,
    parse_payload,
)
from modules.reminders.notification_ids import fnv1a_32
from modules.reminders.plugin import ReminderPlugin
from shared import diagnostics
from shared.diagnostics import DiagnosticsReporter
from shared.redis import KeyValueStore

logger = structlog.get_logger()

INDEX_KEY_PREFIX = "notif_index_v2_"

Clock = Callable[[], datetime]


def build_index_key(user_id: str, pet_id: str, day: date) -> str:
    return f"{INDEX_KEY_PREFIX}{user_id}_{pet_id}_{day.isoformat()}"


def _date_from_key(key: str) -> date | None:
    """Parse the trailing ``YYYY-MM-DD`` of an index key."""
    try:
        return date.fromisoformat(key[-10:])
    except ValueError:
        return None


def compute_checksum(entries: list[ScheduledNotificationEntry]) -> str:
    """FNV-1a over the canonical JSON of entries sorted by notification id."""
    ordered = sorted(entries, key=lambda e: e.notification_id)
    digest = fnv1a_32("".join(e.canonical_json() for e in ordered))
    return f"{digest:08x}"


def parse_index_document(data: Any) -> list[ScheduledNotificationEntry] | None:
    """Return the entries of a stored index document, or None if it is corrupt.

    Corrupt means: not an object, a missing checksum or entry list, an entry
    that fails validation, or a checksum that does not match the entries.
    """
    if not isinstance(data, dict):
        return None
    stored_checksum = data.get("checksum")
    raw_entries = data.get("entries")
    if not isinstance(stored_checksum, str) or not isinstance(raw_entries, list):
        return None
    try:
        entries = [ScheduledNotificationEntry.from_json(e) for e in raw_entries]
    except ValidationError:
        return None
    if compute_checksum(entries) != stored_checksum:
        return None
    return entries


def categorize_by_type(entries: list[ScheduledNotificationEntry]) -> dict[str, int]:
    """Count entries per treatment type: ``{"medication": n, "fluid": n}``."""
    counts = {t.value: 0 for t in TreatmentType}
    for entry in entries:
        counts[TreatmentType(entry.treatment_type).value] += 1
    return counts


class NotificationIndexStore:
    """Reads and writes the per-day notification index.

    ``plugin`` is only used to rebuild a corrupt index; without it a corrupt
    record loads as empty. ``clock`` must return timezone-aware datetimes;
    "today" is its date in ``tz``.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        plugin: ReminderPlugin | None = None,
        diagnostics_reporter: DiagnosticsReporter | None = None,
        clock: Clock | None = None,
        tz: tzinfo = timezone.utc,
    ):
        self._kv = kv_store
        self._plugin = plugin
        self._diagnostics = diagnostics_reporter or DiagnosticsReporter()
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(tz))

    def today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    async def load(self, user_id: str, pet_id: str, day: date) -> list[ScheduledNotificationEntry]:
        """Load one day's entries; ``[]`` when missing, unreadable or unrecoverable."""
        key = build_index_key(user_id, pet_id, day)
        try:
            raw = await self._kv.get(key)
        except Exception as e:
            logger.warning("index_load_error", key=key, error=str(e))
            return []
        if raw is None:
            return []

        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        entries = parse_index_document(data)
        if entries is not None:
            return entries

        logger.warning("index_corrupt", key=key)
        return await self._rebuild(user_id, pet_id, day)

    async def save(
        self,
        user_id: str,
        pet_id: str,
        day: date,
        entries: list[ScheduledNotificationEntry],
    ) -> None:
        """Persist entries and their checksum in one write.

        Raises:
            IndexPersistenceError: If the key-value store write fails.
        """
        key = build_index_key(user_id, pet_id, day)
        document = {
            "checksum": compute_checksum(entries),
            "entries": [e.to_json() for e in entries],
        }
        try:
            await self._kv.set(key, json.dumps(document, separators=(",", ":")))
        except Exception as e:
            logger.error("index_save_error", key=key, error=str(e))
            raise IndexPersistenceError(f"Failed to persist notification index {key}") from e
        logger.debug("index_saved", key=key, entries=len(entries))

    async def _rebuild(self, user_id: str, pet_id: str, day: date) -> list[ScheduledNotificationEntry]:
        recovered: list[ScheduledNotificationEntry] = []
        failure: str | None = None

        if self._plugin is None:
            failure = "no_plugin"
        else:
            try:
                pending = await self._plugin.list_pending()
            except Exception as e:
                logger.warning("index_rebuild_plugin_error", pet_id=pet_id, error=str(e))
                pending = []
                failure = "plugin_error"
            recovered = self._entries_from_pending(user_id, pet_id, pending)
            if failure is None and not recovered:
                failure = "nothing_recovered"

        if recovered:
            try:
                await self.save(user_id, pet_id, day, recovered)
            except IndexPersistenceError:
                logger.warning("index_rebuild_save_failed", pet_id=pet_id)
            await self._diagnostics.report(
                diagnostics.REBUILD_SUCCEEDED,
                user_id=user_id,
                pet_id=pet_id,
                recovered_count=len(recovered),
            )
            logger.info("index_rebuilt", pet_id=pet_id, recovered=len(recovered))
            return recovered

        # Reset so the corrupt record is not rebuilt on every load.
        try:
            await self.save(user_id, pet_id, day, [])
        except IndexPersistenceError:
            logger.warning("index_reset_failed", pet_id=pet_id)
        await self._diagnostics.report(
            diagnostics.REBUILD_FAILED, user_id=user_id, pet_id=pet_id, reason=failure
        )
        await self._diagnostics.report(
            diagnostics.CORRUPTION_DETECTED,
            user_id=user_id,
            pet_id=pet_id,
            date=day.isoformat(),
        )
        return []

    @staticmethod
    def _entries_from_pending(
        user_id: str, pet_id: str, pending: list[PendingNotification]
    ) -> list[ScheduledNotificationEntry]:
        entries = []
        for notification in pending:
            payload = parse_payload(notification.payload)
            if not isinstance(payload, ReminderPayload) or not payload.belongs_to(user_id, pet_id):
                continue
            try:
                entries.append(
                    ScheduledNotificationEntry(
                        notification_id=notification.id,
                        schedule_id=payload.schedule_id,
                        treatment_type=payload.treatment_type,
                        time_slot=payload.time_slot,
                        kind=payload.kind,
                    )
                )
            except ValidationError:
                logger.debug("index_rebuild_skipped_entry", notification_id=notification.id)
        return entries

    # ------------------------------------------------------------------
    # Mutations on today's record
    # ------------------------------------------------------------------

    async def put(self, user_id: str, pet_id: str, entry: ScheduledNotificationEntry) -> None:
        """Upsert ``entry`` into today's index.

        Raises:
            IndexPersistenceError: If the updated index cannot be written.
        """
        day = self.today()
        entries = [
            e
            for e in await self.load(user_id, pet_id, day)
            if e.notification_id != entry.notification_id
            and (e.schedule_id, e.time_slot, e.kind) != (entry.schedule_id, entry.time_slot, entry.kind)
        ]
        entries.append(entry)
        await self.save(user_id, pet_id, day, entries)

    async def _remove_where(
        self,
        user_id: str,
        pet_id: str,
        predicate: Callable[[ScheduledNotificationEntry], bool],
        operation: str,
    ) -> Outcome[int]:
        day = self.today()
        try:
            entries = await self.load(user_id, pet_id, day)
            kept = [e for e in entries if not predicate(e)]
            removed = len(entries) - len(kept)
            if removed:
                await self.save(user_id, pet_id, day, kept)
            return Outcome(removed)
        except Exception as e:
            logger.warning("index_remove_error", operation=operation, pet_id=pet_id, error=str(e))
            return Outcome(0, error=str(e))

    async def remove_by(
        self,
        user_id: str,
        pet_id: str,
        schedule_id: str,
        time_slot: str,
        kind: NotificationKind | str,
    ) -> Outcome[int]:
        kind = NotificationKind(kind)
        return await self._remove_where(
            user_id,
            pet_id,
            lambda e: e.schedule_id == schedule_id and e.time_slot == time_slot and e.kind == kind,
            "remove_by",
        )

    async def remove_all_for_schedule(self, user_id: str, pet_id: str, schedule_id: str) -> Outcome[int]:
        return await self._remove_where(
            user_id,
            pet_id,
            lambda e: e.schedule_id == schedule_id,
            "remove_all_for_schedule",
        )

    async def remove_ids(self, user_id: str, pet_id: str, notification_ids: Iterable[int]) -> Outcome[int]:
        ids = set(notification_ids)
        return await self._remove_where(user_id, pet_id, lambda e: e.notification_id in ids, "remove_ids")

    async def reconcile_against_plugin(
        self,
        user_id: str,
        pet_id: str,
        plugin_snapshot: list[PendingNotification],
    ) -> dict[str, int]:
        """Diff today's index against a pending-notification snapshot.

        ``added`` counts this pet's plugin notifications the index does not
        know about; they are only reported, since the index has no data to
        describe them beyond what the reconciler re-derives. ``removed``
        counts index entries the plugin no longer holds; those are dropped.
        """
        try:
            day = self.today()
            entries = await self.load(user_id, pet_id, day)
            plugin_ids = {n.id for n in plugin_snapshot}
            index_ids = {e.notification_id for e in entries}

            scoped_ids = set()
            for notification in plugin_snapshot:
                payload = parse_payload(notification.payload)
                if isinstance(payload, ReminderPayload) and payload.belongs_to(user_id, pet_id):
                    scoped_ids.add(notification.id)

            added = len(scoped_ids - index_ids)
            kept = [e for e in entries if e.notification_id in plugin_ids]
            removed = len(entries) - len(kept)
            if removed:
                await self.save(user_id, pet_id, day, kept)
        except Exception as e:
            logger.warning("index_reconcile_error", pet_id=pet_id, error=str(e))
            return {"added": 0, "removed": 0}

        await self._diagnostics.report(
            diagnostics.RECONCILIATION_PERFORMED,
            user_id=user_id,
            pet_id=pet_id,
            added=added,
            removed=removed,
        )
        return {"added": added, "removed": removed}

    # ------------------------------------------------------------------
    # Queries and housekeeping
    # ------------------------------------------------------------------

    @staticmethod
    def categorize_by_type(entries: list[ScheduledNotificationEntry]) -> dict[str, int]:
        return categorize_by_type(entries)

    async def get_for_today(self, user_id: str, pet_id: str) -> list[ScheduledNotificationEntry]:
        return await self.load(user_id, pet_id, self.today())

    async def get_count_for_pet(self, user_id: str, pet_id: str, day: date | None = None) -> int:
        try:
            return len(await self.load(user_id, pet_id, day or self.today()))
        except Exception as e:
            logger.warning("index_count_error", pet_id=pet_id, error=str(e))
            return 0

    async def clear_for_date(self, user_id: str, pet_id: str, day: date) -> Outcome[bool]:
        key = build_index_key(user_id, pet_id, day)
        try:
            await self._kv.remove(key)
        except Exception as e:
            logger.warning("index_clear_error", key=key, error=str(e))
            return Outcome(False, error=str(e))
        logger.debug("index_cleared", key=key)
        return Outcome(True)

    async def purge_stale(self, today: date | None = None) -> int:
        """Delete every index record dated before yesterday. Returns the count."""
        cutoff = (today or self.today()) - timedelta(days=1)
        try:
            keys = await self._kv.list_keys(INDEX_KEY_PREFIX)
        except Exception as e:
            logger.warning("index_purge_list_error", error=str(e))
            return 0

        purged = 0
        for key in keys:
            key_date = _date_from_key(key)
            if key_date is None or key_date >= cutoff:
                continue
            try:
                await self._kv.remove(key)
                purged += 1
            except Exception as e:
                logger.warning("index_purge_error", key=key, error=str(e))
        if purged:
            logger.info("index_purged", purged=purged, cutoff=cutoff.isoformat())
        return purged
