"""Trigger port — abstract interface to an exact-time alarm facility.

Triggers are keyed by caller-supplied integer ids; scheduling an id that
already exists replaces it.
"""

from __future__ import annotations

from typing import Protocol


class TriggerError(Exception):
    """Raised when the facility refuses to schedule or cancel a trigger."""


class TriggerPermissionError(TriggerError):
    """Raised when the host has not granted permission for exact triggers."""


class TriggerPort(Protocol):
    """Abstract alarm interface used by the reminder scheduler."""

    async def schedule_trigger(
        self, trigger_id: int, fire_at_millis: int, payload: dict
    ) -> None: ...

    async def cancel_trigger(self, trigger_id: int) -> None: ...
