"""Job-queue trigger sink — implements TriggerPort on python-telegram-bot's JobQueue.

Each trigger becomes one run_once job named "reminder:<id>". Scheduling an
id that already has a job replaces it, which gives the overwrite semantics
the reminder scheduler relies on.

When the job fires, the receiver turns its payload into a chat message
through the NotificationPort.

Reminders need a chat to land in; until one is bound the sink refuses
every trigger with TriggerPermissionError, the same way a device without
notification permission would.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from studybuddies.ports.trigger_port import TriggerError, TriggerPermissionError

if TYPE_CHECKING:
    from telegram.ext import CallbackContext, JobQueue

    from studybuddies.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_DEFAULT_TITLE = "Study Buddies"
_DEFAULT_MESSAGE = "Upcoming lesson reminder!"


def job_name(trigger_id: int) -> str:
    return f"reminder:{trigger_id}"


def format_reminder(payload: dict | None) -> str:
    """Render a trigger payload as the user-facing reminder text."""
    payload = payload or {}
    title = payload.get("title") or _DEFAULT_TITLE
    message = payload.get("message") or _DEFAULT_MESSAGE
    return f"🔔 *{title}*\n{message}"


class JobQueueTriggerSink:
    """Telegram JobQueue implementation of TriggerPort."""

    def __init__(self, job_queue: JobQueue, notifier: NotificationPort) -> None:
        self._job_queue = job_queue
        self._notifier = notifier
        self._chat_id: int | None = None

    @property
    def chat_id(self) -> int | None:
        return self._chat_id

    def bind_chat(self, chat_id: int | None) -> None:
        """Deliver reminders to chat_id; None revokes delivery."""
        self._chat_id = chat_id

    async def schedule_trigger(
        self, trigger_id: int, fire_at_millis: int, payload: dict
    ) -> None:
        if self._chat_id is None:
            raise TriggerPermissionError("No chat bound for reminder delivery")

        fire_at = datetime.fromtimestamp(fire_at_millis / 1000, tz=timezone.utc)
        if fire_at <= datetime.now(timezone.utc):
            raise TriggerError(f"Trigger {trigger_id} fire time {fire_at.isoformat()} has passed")

        name = job_name(trigger_id)
        for job in self._job_queue.get_jobs_by_name(name):
            job.schedule_removal()

        try:
            self._job_queue.run_once(
                self._deliver,
                when=fire_at,
                data=dict(payload),
                name=name,
                chat_id=self._chat_id,
            )
        except Exception as exc:
            logger.error("JobQueue rejected trigger %d: %s", trigger_id, exc)
            raise TriggerError(f"Failed to schedule trigger {trigger_id}: {exc}") from exc

        logger.debug("Trigger %d scheduled for %s", trigger_id, fire_at.isoformat())

    async def cancel_trigger(self, trigger_id: int) -> None:
        for job in self._job_queue.get_jobs_by_name(job_name(trigger_id)):
            job.schedule_removal()
            logger.debug("Trigger %d cancelled", trigger_id)

    async def _deliver(self, context: CallbackContext) -> None:
        """Receiver: the fired job's payload becomes a chat message."""
        job = context.job
        chat_id = job.chat_id
        if chat_id is None:
            return
        try:
            await self._notifier.send_message(chat_id, format_reminder(job.data))
            logger.info("Reminder %s delivered to %d", job.name, chat_id)
        except Exception as exc:
            logger.error("Failed to deliver reminder %s to %d: %s", job.name, chat_id, exc)
