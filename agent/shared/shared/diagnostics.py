"""Fire-and-forget diagnostics reporting.

Usage (from async code):
    from shared.diagnostics import DiagnosticsReporter

    reporter = DiagnosticsReporter(sink)
    await reporter.report(
        "index_rebuild_succeeded",
        user_id=user_id,
        pet_id=pet_id,
        recovered_count=3,
    )

``report`` is wrapped in a broad try/except so it can never propagate
exceptions to the caller; a broken sink must not change scheduling outcomes.
It is also safe to call with ``asyncio.create_task()``.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

# Keys whose values may carry medical or user-visible content.
_SENSITIVE_KEY_PATTERN = re.compile(
    r"(medication|dosage|dose|volume|title|body|name|strength)",
    re.IGNORECASE,
)

CORRUPTION_DETECTED = "index_corruption_detected"
REBUILD_SUCCEEDED = "index_rebuild_succeeded"
REBUILD_FAILED = "index_rebuild_failed"
RECONCILIATION_PERFORMED = "index_reconciliation_performed"
LIMIT_WARNING = "notification_limit_warning"
LIMIT_REACHED = "notification_limit_reached"
REMINDER_SNOOZED = "reminder_snoozed"
SCHEDULING_ERROR = "scheduling_error"


class DiagnosticEvent(BaseModel):
    """A single diagnostic signal. Carries identifiers and counts only."""

    name: str
    fields: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


DiagnosticsSink = Callable[[DiagnosticEvent], Awaitable[None]]


def _sanitize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Strip medical-looking values from a dict before it leaves the process."""
    sanitized = {}
    for k, v in fields.items():
        if _SENSITIVE_KEY_PATTERN.search(k):
            sanitized[k] = "[REDACTED]"
        else:
            sanitized[k] = v
    return sanitized


class DiagnosticsReporter:
    """Forwards diagnostic events to a sink; never raises."""

    def __init__(self, sink: DiagnosticsSink | None = None):
        self._sink = sink

    async def report(self, name: str, **fields: Any) -> None:
        event = DiagnosticEvent(name=name, fields=_sanitize_fields(fields))
        logger.info("diagnostic_event", diagnostic=name, **event.fields)
        if self._sink is None:
            return
        try:
            await self._sink(event)
        except Exception:
            # Never let diagnostics crash the caller.
            logger.warning("diagnostics_sink_failed", diagnostic=name, exc_info=True)


class RedisDiagnosticsSink:
    """Publishes diagnostic events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis_client, channel: str = "diagnostics:reminders"):
        self._redis = redis_client
        self._channel = channel

    async def __call__(self, event: DiagnosticEvent) -> None:
        await self._redis.publish(self._channel, event.model_dump_json())
