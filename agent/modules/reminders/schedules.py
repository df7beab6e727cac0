"""Read-only access to cached treatment schedules.

The engine is offline-first: it schedules from whatever the app last cached
and never calls the remote profile store itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from modules.reminders.models import Schedule


class ScheduleSource(ABC):
    """Provides the schedules the engine should remind about."""

    @abstractmethod
    async def cached_schedules(self, user_id: str, pet_id: str) -> list[Schedule] | None:
        """Return cached schedules, or None when nothing has been cached."""


class ScheduleCache(ScheduleSource):
    """In-process schedule cache fed by the app's profile layer."""

    def __init__(self):
        self._schedules: dict[tuple[str, str], dict[str, Schedule]] = {}

    def replace(self, user_id: str, pet_id: str, schedules: list[Schedule]) -> None:
        self._schedules[(user_id, pet_id)] = {s.id: s for s in schedules}

    def upsert(self, user_id: str, pet_id: str, schedule: Schedule) -> None:
        self._schedules.setdefault((user_id, pet_id), {})[schedule.id] = schedule

    def remove(self, user_id: str, pet_id: str, schedule_id: str) -> None:
        self._schedules.get((user_id, pet_id), {}).pop(schedule_id, None)

    def clear(self, user_id: str, pet_id: str) -> None:
        self._schedules.pop((user_id, pet_id), None)

    async def cached_schedules(self, user_id: str, pet_id: str) -> list[Schedule] | None:
        scoped = self._schedules.get((user_id, pet_id))
        if not scoped:
            return None
        return list(scoped.values())
