"""Exception types raised by the reminders module."""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class PluginNotInitializedError(ReminderError):
    """The OS notification plugin was used before it was initialized.

    This is a programming-contract violation: it is never retried and is
    never absorbed by per-item batch isolation.
    """


class IndexPersistenceError(ReminderError):
    """Writing the notification index to the key-value store failed."""
