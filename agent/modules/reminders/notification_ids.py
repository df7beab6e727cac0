"""Deterministic notification IDs and index checksums (32-bit FNV-1a).

Notification IDs must be stable across process restarts so that scheduling
is idempotent and cancellation can be done by parameters alone. Android
requires 31-bit positive IDs, so every hash is masked with ``0x7FFFFFFF``.
"""

from __future__ import annotations

from datetime import date

from modules.reminders.models import NotificationKind
from modules.reminders.timing import parse_time_slot

FNV_PRIME_32 = 16777619
FNV_OFFSET_BASIS_32 = 2166136261
_MASK_32 = 0xFFFFFFFF
_MASK_31 = 0x7FFFFFFF


def fnv1a_32(data: str | bytes) -> int:
    """Return the 32-bit FNV-1a hash of ``data`` (str is UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = FNV_OFFSET_BASIS_32
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME_32) & _MASK_32
    return h


def _stable_id(*parts: str) -> int:
    return fnv1a_32("|".join(parts)) & _MASK_31


def generate_notification_id(
    user_id: str,
    pet_id: str,
    schedule_id: str,
    time_slot: str,
    kind: NotificationKind | str,
) -> int:
    """Stable 31-bit ID for one logical reminder.

    Raises:
        ValueError: On empty identifiers, a malformed slot, or an unknown kind.
    """
    for name, value in (
        ("user_id", user_id),
        ("pet_id", pet_id),
        ("schedule_id", schedule_id),
        ("time_slot", time_slot),
    ):
        if not value:
            raise ValueError(f"{name} must not be empty")
    parse_time_slot(time_slot)
    kind = NotificationKind(kind)

    return _stable_id(user_id, pet_id, schedule_id, time_slot, kind.value)


def generate_weekly_summary_id(user_id: str, pet_id: str, week_start: date) -> int:
    """Stable ID for the weekly summary that fires on ``week_start``."""
    if not user_id or not pet_id:
        raise ValueError("user_id and pet_id must not be empty")
    return _stable_id(user_id, pet_id, "weekly_summary", week_start.isoformat())


def group_summary_id(pet_id: str) -> int:
    """Stable ID of the per-pet group summary notification."""
    if not pet_id:
        raise ValueError("pet_id must not be empty")
    return _stable_id("group_summary", pet_id)
