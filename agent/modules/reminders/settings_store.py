"""Per-user notification settings persisted in the key-value store."""

from __future__ import annotations

import json

import structlog

from modules.reminders.models import NotificationSettings
from shared.redis import KeyValueStore

logger = structlog.get_logger()

SETTINGS_KEY_PREFIX = "notif_settings_"


def _settings_key(user_id: str) -> str:
    return f"{SETTINGS_KEY_PREFIX}{user_id}"


class NotificationSettingsStore:
    """Loads settings with defaults on any miss or read failure."""

    def __init__(self, kv_store: KeyValueStore):
        self._kv = kv_store

    async def load(self, user_id: str) -> NotificationSettings:
        key = _settings_key(user_id)
        try:
            raw = await self._kv.get(key)
        except Exception as e:
            logger.warning("settings_load_error", user_id=user_id, error=str(e))
            return NotificationSettings()
        if raw is None:
            return NotificationSettings()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("settings_invalid_json", user_id=user_id)
            return NotificationSettings()
        return NotificationSettings.from_json(data)

    async def save(self, user_id: str, settings: NotificationSettings) -> None:
        await self._kv.set(_settings_key(user_id), json.dumps(settings.to_json()))

    async def clear(self, user_id: str) -> None:
        await self._kv.remove(_settings_key(user_id))
