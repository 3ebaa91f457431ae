"""
StudyBuddies — Telegram Bot.

A thin command surface over the lesson engine: sign in as a StudyBuddies
user, list lessons, book and cancel slots, and choose reminder offsets.
Reminders are delivered back into the chat that signed in.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from studybuddies.config import settings
from studybuddies.core.booking import BookingError

if TYPE_CHECKING:
    from studybuddies.adapters.job_queue_triggers import JobQueueTriggerSink
    from studybuddies.core.engine import LessonEngine
    from studybuddies.data.models import Lesson
    from studybuddies.ports.record_source import RecordSource

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Parsing and formatting helpers
# ---------------------------------------------------------------------------

_TOGGLES = {"on": True, "yes": True, "true": True, "off": False, "no": False, "false": False}


def _parse_toggle(raw: str) -> bool | None:
    return _TOGGLES.get(raw.strip().lower())


def _parse_booking_args(text: str) -> tuple[str, str, str, str] | None:
    """Parse "/book <tutor_id> | <date> | <time> | <subject>".

    Returns (tutor_id, date, time, subject) or None if any part is missing.
    """
    _, _, rest = text.partition(" ")
    parts = [p.strip() for p in rest.split("|")]
    if len(parts) != 4 or not all(parts):
        return None
    tutor_id, date, time, subject = parts
    return tutor_id, date, time, subject


def _format_lesson(lesson: Lesson, identity: str | None) -> str:
    if lesson.tutor_id == identity:
        other = f"with {lesson.student_name or 'Student'}"
    else:
        other = f"with {lesson.tutor_name or 'Tutor'}"
    return (
        f"`{lesson.id}` — *{lesson.subject or '(no subject)'}* {other}\n"
        f"    {lesson.date} {lesson.time} · {lesson.duration} · "
        f"{lesson.location} · {lesson.status_text}"
    )


def _engine(context: ContextTypes.DEFAULT_TYPE) -> LessonEngine:
    return context.bot_data["engine"]


def _triggers(context: ContextTypes.DEFAULT_TYPE) -> JobQueueTriggerSink:
    return context.bot_data["triggers"]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

HELP_TEXT = (
    "*StudyBuddies lessons*\n\n"
    "/login <user_id> — sign in\n"
    "/logout — sign out and stop reminders\n"
    "/lessons — your lessons\n"
    "/slots <tutor_id> <date> — free times, e.g. `/slots t1 Jan 10, 2026`\n"
    "/book <tutor_id> | <date> | <time> | <subject>\n"
    "/cancel <lesson_id>\n"
    "/reminders [week on|off] [day on|off] — reminder offsets\n"
    "/refresh — reload lessons"
)


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "Welcome to StudyBuddies! Sign in with /login <user_id>.\n\n" + HELP_TEXT,
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")


@authorized_only
async def cmd_login(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /login <user_id> — switch the active identity to user_id."""
    if not context.args:
        await update.message.reply_text("Usage: /login <user_id>")
        return

    user_id = context.args[0].strip()
    engine = _engine(context)
    _triggers(context).bind_chat(update.effective_chat.id)
    scheduled = await engine.set_identity(user_id)
    await update.message.reply_text(
        f"Signed in as `{user_id}`. {len(engine.view.lessons)} lesson(s), "
        f"{len(scheduled)} reminder(s) scheduled.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    await engine.set_identity(None)
    _triggers(context).bind_chat(None)
    await update.message.reply_text("Signed out. Reminders stopped.")


@authorized_only
async def cmd_lessons(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /lessons — list every lesson of the active identity."""
    engine = _engine(context)
    identity = engine.current_identity
    if identity is None:
        await update.message.reply_text("Sign in first with /login <user_id>.")
        return

    lessons = engine.view.lessons
    if not lessons:
        await update.message.reply_text("No lessons yet.")
        return

    lines = ["*Your lessons:*\n"]
    lines.extend(_format_lesson(lesson, identity) for lesson in lessons)
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_slots(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /slots <tutor_id> <date> — show the tutor's free times."""
    if not context.args or len(context.args) < 2:
        await update.message.reply_text("Usage: /slots <tutor_id> <date>\ne.g. /slots t1 Jan 10, 2026")
        return

    tutor_id = context.args[0]
    date = " ".join(context.args[1:])
    free = _engine(context).booking.available_slots(tutor_id, date)
    if not free:
        await update.message.reply_text(f"No free slots on {date}.")
        return
    await update.message.reply_text(f"Free on {date}:\n" + "\n".join(f"  • {t}" for t in free))


@authorized_only
async def cmd_book(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /book <tutor_id> | <date> | <time> | <subject>."""
    engine = _engine(context)
    if engine.current_identity is None:
        await update.message.reply_text("Sign in first with /login <user_id>.")
        return

    parsed = _parse_booking_args(update.message.text or "")
    if parsed is None:
        await update.message.reply_text(
            "Usage: /book <tutor_id> | <date> | <time> | <subject>\n"
            "e.g. /book t1 | Jan 10, 2026 | 03:00 PM | Math"
        )
        return

    tutor_id, date, time, subject = parsed
    result = await engine.book(tutor_id, date, time, subject)
    if not engine.is_current(result):
        # Signed out or switched user while the booking was in flight
        return
    await update.message.reply_text(result.user_message)


@authorized_only
async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cancel <lesson_id> — mark a lesson Cancelled."""
    if not context.args:
        await update.message.reply_text("Usage: /cancel <lesson_id>\nUse /lessons to see IDs.")
        return

    lesson_id = context.args[0]
    try:
        await _engine(context).cancel(lesson_id)
    except BookingError as exc:
        logger.error("/cancel error: %s", exc)
        await update.message.reply_text("Error: Could not cancel lesson. Please try again.")
        return
    await update.message.reply_text("Lesson cancelled successfully")


@authorized_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders [week on|off] [day on|off]."""
    engine = _engine(context)
    prefs = engine.preferences
    args = context.args or []

    if not args:
        await update.message.reply_text(
            f"Reminders: week before {'on' if prefs.week_before else 'off'}, "
            f"day before {'on' if prefs.one_day_before else 'off'}, "
            "hour before always on."
        )
        return

    week, day = prefs.week_before, prefs.one_day_before
    pairs = list(zip(args[::2], args[1::2]))
    if not pairs or len(args) % 2:
        await update.message.reply_text("Usage: /reminders week on|off day on|off")
        return
    for key, raw in pairs:
        value = _parse_toggle(raw)
        if value is None or key.lower() not in ("week", "day"):
            await update.message.reply_text("Usage: /reminders week on|off day on|off")
            return
        if key.lower() == "week":
            week = value
        else:
            day = value

    scheduled = await engine.update_preferences(week, day)
    await update.message.reply_text(f"Reminder settings saved. {len(scheduled)} reminder(s) scheduled.")


@authorized_only
async def cmd_refresh(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _engine(context).refresh()
    await update.message.reply_text("Refreshing lessons…")


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------


def build_app(source: RecordSource | None = None) -> Application:
    """Build the Telegram Application and the lesson engine behind it.

    Args:
        source: Record source implementation. Defaults to the adapter
                selected by RECORD_SOURCE.
    """
    from studybuddies.adapters.job_queue_triggers import JobQueueTriggerSink
    from studybuddies.adapters.telegram_notifier import TelegramNotifier
    from studybuddies.core.engine import LessonEngine

    if source is None:
        from studybuddies.adapters.source_factory import create_record_source
        source = create_record_source()

    async def _post_init(app: Application) -> None:
        app.bot_data["engine"].start()

    async def _post_shutdown(app: Application) -> None:
        await app.bot_data["engine"].stop()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    triggers = JobQueueTriggerSink(app.job_queue, TelegramNotifier(app.bot))
    app.bot_data["triggers"] = triggers
    app.bot_data["engine"] = LessonEngine(source, triggers)

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("login", cmd_login))
    app.add_handler(CommandHandler("logout", cmd_logout))
    app.add_handler(CommandHandler("lessons", cmd_lessons))
    app.add_handler(CommandHandler("slots", cmd_slots))
    app.add_handler(CommandHandler("book", cmd_book))
    app.add_handler(CommandHandler("cancel", cmd_cancel))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("refresh", cmd_refresh))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting StudyBuddies lesson bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
