"""OS notification plugin interface.

The engine only needs a narrow slice of the platform notification API. A
concrete plugin (Android/iOS bridge, desktop notifier, test double)
implements this interface so the scheduling layer stays platform-agnostic.
Every call may raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from modules.reminders.exceptions import PluginNotInitializedError
from modules.reminders.models import PendingNotification


class ReminderPlugin(ABC):
    """Abstract base class for the local notification backend."""

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        """Whether the platform side is ready to accept scheduling calls."""

    @abstractmethod
    async def schedule_at(
        self,
        notification_id: int,
        title: str,
        body: str,
        instant: datetime,
        channel_id: str,
        payload: str | None = None,
        group_key: str | None = None,
    ) -> None:
        """Schedule (or replace) a notification for ``instant``."""

    @abstractmethod
    async def cancel(self, notification_id: int) -> None:
        """Cancel one notification. Unknown IDs are ignored."""

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel every notification owned by the app."""

    @abstractmethod
    async def list_pending(self) -> list[PendingNotification]:
        """Return scheduled or delivered-but-undismissed notifications."""

    @abstractmethod
    async def show_group_summary(
        self,
        summary_id: int,
        pet_id: str,
        medication_count: int,
        fluid_count: int,
        group_key: str,
    ) -> None:
        """Show or update the per-pet group summary notification."""

    @abstractmethod
    async def cancel_group_summary(self, pet_id: str) -> None:
        """Remove the per-pet group summary notification."""


def require_initialized(plugin: ReminderPlugin) -> ReminderPlugin:
    """Return ``plugin``, or raise if it has not been initialized."""
    if plugin is None or not plugin.is_initialized:
        raise PluginNotInitializedError(
            "Reminder plugin must be initialized before scheduling"
        )
    return plugin
