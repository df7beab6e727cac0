"""Data model for the reminders module.

Index entries and notification payloads are validated at the boundary with
Pydantic. Operation results are plain dataclasses.
"""

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from modules.reminders.timing import format_time_slot, parse_time_slot

T = TypeVar("T")


class TreatmentType(str, enum.Enum):
    MEDICATION = "medication"
    FLUID = "fluid"


class NotificationKind(str, enum.Enum):
    INITIAL = "initial"  # at the scheduled time
    FOLLOWUP = "followup"  # offset after the initial reminder
    SNOOZE = "snooze"  # user-requested delay


class TreatmentFrequency(str, enum.Enum):
    ONCE_DAILY = "onceDaily"
    TWICE_DAILY = "twiceDaily"
    THRICE_DAILY = "thriceDaily"
    EVERY_OTHER_DAY = "everyOtherDay"
    EVERY_3_DAYS = "every3Days"


_INTERVAL_DAYS = {
    TreatmentFrequency.EVERY_OTHER_DAY: 2,
    TreatmentFrequency.EVERY_3_DAYS: 3,
}


def _check_time_slot(value: str) -> str:
    parse_time_slot(value)
    return value


# ---------------------------------------------------------------------------
# Index entries
# ---------------------------------------------------------------------------


class ScheduledNotificationEntry(BaseModel):
    """One outstanding notification recorded in the per-day index.

    Immutable; updates replace the entry with the same ``notification_id``.
    Serialized with camelCase keys (``timeSlotISO`` for the slot) to stay
    readable by indexes written by earlier app versions.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    notification_id: int = Field(alias="notificationId", ge=0, le=0x7FFFFFFF)
    schedule_id: str = Field(alias="scheduleId", min_length=1)
    treatment_type: TreatmentType = Field(alias="treatmentType")
    time_slot: str = Field(alias="timeSlotISO")
    kind: NotificationKind

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return _check_time_slot(value)

    @classmethod
    def from_json(cls, data: Any) -> ScheduledNotificationEntry:
        """Build an entry from its stored mapping.

        Raises:
            pydantic.ValidationError: If fields are missing or invalid.
        """
        return cls.model_validate(data)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def canonical_json(self) -> str:
        """Compact JSON with a fixed key order, used for checksums."""
        return json.dumps(self.to_json(), separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Plugin-side data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PendingNotification:
    """A notification the OS plugin reports as scheduled or undismissed."""

    id: int
    payload: str | None = None


class ReminderPayload(BaseModel):
    """The JSON payload attached to every treatment reminder.

    Never shown to the user; carries the identifiers needed for tap handling
    and for rebuilding the index from the plugin.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    user_id: str = Field(alias="userId", min_length=1)
    pet_id: str = Field(alias="petId", min_length=1)
    schedule_id: str = Field(alias="scheduleId", min_length=1)
    time_slot: str = Field(alias="timeSlot")
    kind: NotificationKind
    treatment_type: TreatmentType = Field(alias="treatmentType")

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return _check_time_slot(value)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def belongs_to(self, user_id: str, pet_id: str) -> bool:
        return self.user_id == user_id and self.pet_id == pet_id


@dataclass(frozen=True)
class UnparseablePayload:
    """A payload that is not a valid reminder payload, and why."""

    raw: str | None
    reason: str  # "missing" | "invalid_json" | "not_an_object" | "invalid_fields"


def parse_payload(raw: str | None) -> ReminderPayload | UnparseablePayload:
    """Parse a raw plugin payload into a tagged result. Never raises."""
    if not raw:
        return UnparseablePayload(raw, "missing")
    try:
        data = json.loads(raw)
    except ValueError:
        return UnparseablePayload(raw, "invalid_json")
    if not isinstance(data, dict):
        return UnparseablePayload(raw, "not_an_object")
    try:
        return ReminderPayload.model_validate(data)
    except ValidationError:
        return UnparseablePayload(raw, "invalid_fields")


# ---------------------------------------------------------------------------
# External collaborator data
# ---------------------------------------------------------------------------


class NotificationSettings(BaseModel):
    """Per-user notification toggles. Read, never written, by the engine."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enable_notifications: bool = Field(default=True, alias="enableNotifications")
    weekly_summary_enabled: bool = Field(default=True, alias="weeklySummaryEnabled")
    snooze_enabled: bool = Field(default=True, alias="snoozeEnabled")
    end_of_day_enabled: bool = Field(default=False, alias="endOfDayEnabled")
    end_of_day_time: str = Field(default="22:00", alias="endOfDayTime")

    @field_validator("end_of_day_time")
    @classmethod
    def validate_end_of_day_time(cls, value: str) -> str:
        return _check_time_slot(value)

    @classmethod
    def from_json(cls, data: Any) -> NotificationSettings:
        """Lenient parse: each unreadable field falls back to its default.

        A non-object yields the defaults outright.
        """
        if not isinstance(data, dict):
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
        drop = set()
        for name, field in cls.model_fields.items():
            if name in bad or field.alias in bad:
                drop.update({name, field.alias})
        try:
            return cls.model_validate({k: v for k, v in data.items() if k not in drop})
        except ValidationError:
            return cls()

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Schedule(BaseModel):
    """A treatment schedule as cached from the profile store.

    The medication/fluid detail fields exist because the cached record has
    them; nothing in the reminders module copies them into notification text,
    payloads, logs or diagnostics.
    """

    id: str = Field(min_length=1)
    treatment_type: TreatmentType
    frequency: TreatmentFrequency = TreatmentFrequency.ONCE_DAILY
    reminder_times: list[time] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None

    medication_name: str | None = None
    target_dosage: float | None = None
    medication_unit: str | None = None
    target_volume: float | None = None

    def reminder_slots_on(self, day: date) -> list[str]:
        """``HH:mm`` slots this schedule reminds on ``day`` (sorted, unique)."""
        interval = _INTERVAL_DAYS.get(self.frequency)
        if interval is not None:
            anchor = self.created_at.date() if self.created_at else day
            offset = (day - anchor).days
            if offset < 0 or offset % interval != 0:
                return []
        return sorted({format_time_slot(t) for t in self.reminder_times})

    def has_reminder_on(self, day: date) -> bool:
        return self.is_active and bool(self.reminder_slots_on(day))


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass
class Outcome(Generic[T]):
    """Result of a best-effort operation.

    A failed outcome has been logged already; callers may inspect ``error``
    but are not expected to escalate it.
    """

    value: T
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScheduleResult:
    scheduled: int = 0
    immediate: int = 0
    missed: int = 0
    skipped_due_to_limit: int = 0
    errors: list[str] = field(default_factory=list)
    cache_empty: bool = False
    skipped: bool = False
    disabled: bool = False

    def merge(self, other: ScheduleResult) -> None:
        self.scheduled += other.scheduled
        self.immediate += other.immediate
        self.missed += other.missed
        self.skipped_due_to_limit += other.skipped_due_to_limit
        self.errors.extend(other.errors)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SnoozeResult:
    success: bool
    reason: str | None = None
    snoozed_until: datetime | None = None
    snooze_id: int | None = None


@dataclass
class WeeklySummaryResult:
    success: bool
    reason: str | None = None
    scheduled_for: datetime | None = None
    notification_id: int | None = None


@dataclass
class ReconcileReport:
    orphans_canceled: int = 0
    missing_count: int = 0
    rebuilt: bool = False
    schedule_result: ScheduleResult | None = None
    weekly_summary: WeeklySummaryResult | None = None
    errors: list[str] = field(default_factory=list)
