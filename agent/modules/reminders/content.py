"""Notification copy.

Every title and body is fixed per (treatment type, kind). Lock screens are
public, so reminder text never carries medication names, dosages or volumes;
the hidden payload carries the identifiers needed for deep-linking.
"""

from __future__ import annotations

from dataclasses import dataclass

from modules.reminders.models import NotificationKind, TreatmentType

CHANNEL_MEDICATION = "medication_reminders"
CHANNEL_FLUID = "fluid_reminders"
CHANNEL_WEEKLY_SUMMARY = "weekly_summaries"

WEEKLY_SUMMARY_PAYLOAD = '{"type":"weekly_summary","route":"/progress"}'


@dataclass(frozen=True)
class NotificationContent:
    title: str
    body: str
    channel_id: str


_TEMPLATES: dict[tuple[TreatmentType, NotificationKind], tuple[str, str]] = {
    (TreatmentType.MEDICATION, NotificationKind.INITIAL): (
        "Medication reminder",
        "It's time for a scheduled treatment.",
    ),
    (TreatmentType.FLUID, NotificationKind.INITIAL): (
        "Fluid therapy reminder",
        "It's time for a scheduled fluid session.",
    ),
    (TreatmentType.MEDICATION, NotificationKind.FOLLOWUP): (
        "Treatment reminder",
        "Your pet may still need their treatment.",
    ),
    (TreatmentType.FLUID, NotificationKind.FOLLOWUP): (
        "Treatment reminder",
        "Your pet may still need their treatment.",
    ),
    (TreatmentType.MEDICATION, NotificationKind.SNOOZE): (
        "Snoozed reminder",
        "A treatment is still waiting to be logged.",
    ),
    (TreatmentType.FLUID, NotificationKind.SNOOZE): (
        "Snoozed reminder",
        "A treatment is still waiting to be logged.",
    ),
}

WEEKLY_SUMMARY_CONTENT = NotificationContent(
    title="Your weekly summary is ready",
    body="See how this week's treatments went.",
    channel_id=CHANNEL_WEEKLY_SUMMARY,
)


def channel_for(treatment_type: TreatmentType) -> str:
    if treatment_type == TreatmentType.MEDICATION:
        return CHANNEL_MEDICATION
    return CHANNEL_FLUID


def reminder_content(treatment_type: TreatmentType, kind: NotificationKind) -> NotificationContent:
    title, body = _TEMPLATES[(TreatmentType(treatment_type), NotificationKind(kind))]
    return NotificationContent(title=title, body=body, channel_id=channel_for(treatment_type))


def group_key_for(pet_id: str) -> str:
    """Group/thread key bundling a pet's reminders in the notification shade."""
    return f"pet_{pet_id}"
