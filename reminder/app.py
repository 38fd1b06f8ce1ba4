from __future__ import annotations

import asyncio
from datetime import datetime
import logging
import signal
from typing import Iterable, List, Optional, Sequence, Tuple
import uuid

from telegram.constants import ParseMode
from telegram.ext import (
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)
from telegram.request import HTTPXRequest
from zoneinfo import ZoneInfo

from reminder.config import Settings, load_settings
from reminder.delivery import TelegramNotificationService, parse_callback_data
from reminder.manager import MeetingListManager
from reminder.models import Meeting
from reminder.notifications import ACTION_DISMISS, ACTION_OPEN
from reminder.scheduler import Scheduler
from reminder.storage import Defaults, JsonFileBackend
from reminder.store import MeetingStore
from reminder.utils import escape_markdown_v2, format_local_dt, parse_when

TELEGRAM_CONNECT_TIMEOUT = 10
TELEGRAM_READ_TIMEOUT = 30
TELEGRAM_WRITE_TIMEOUT = 30
TELEGRAM_POOL_TIMEOUT = 30


def build_meeting_list(
    meetings: Sequence[Meeting], tz: ZoneInfo, highlight: Optional[int] = None
) -> str:
    if not meetings:
        return escape_markdown_v2("No meetings")
    lines = []
    for index, meeting in enumerate(meetings):
        mark = "✅" if meeting.started else "⏳"
        when = format_local_dt(meeting.date, tz)
        line = escape_markdown_v2(f"{index + 1}. {mark} {meeting.title}, {when}")
        if index == highlight:
            line = f"*{line}*"
        lines.append(line)
    return "\n".join(lines)


def parse_add_args(
    args: Sequence[str], tz: ZoneInfo, default_date: datetime, now_utc: Optional[datetime] = None
) -> Tuple[str, datetime]:
    """Split ``/add`` arguments into a title and a date.

    A leading ``HH:MM`` or ``+minutes`` token sets the date, otherwise the
    default date is used.
    """
    if args:
        when = parse_when(args[0], tz, now_utc=now_utc)
        if when is not None:
            return " ".join(args[1:]), when
    return " ".join(args), default_date


def resolve_rows(meetings: Sequence[Meeting], args: Iterable[str]) -> List[uuid.UUID]:
    """Map 1-based row numbers to meeting ids; unknown rows are skipped."""
    ids = []
    for arg in args:
        try:
            row = int(arg)
        except ValueError:
            continue
        if 1 <= row <= len(meetings):
            ids.append(meetings[row - 1].id)
    return ids


def is_allowed(chat_id: int, allowed_chat_ids: Iterable[int]) -> bool:
    return chat_id in set(allowed_chat_ids)


def _authorized(update, settings: Settings) -> bool:
    chat_id = update.effective_chat.id if update.effective_chat else None
    return chat_id is not None and is_allowed(chat_id, settings.allowed_chat_ids)


async def list_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    settings: Settings = context.bot_data["settings"]
    manager: MeetingListManager = context.bot_data["manager"]
    if not _authorized(update, settings) or update.message is None:
        return
    text = build_meeting_list(manager.meetings, settings.local_timezone)
    await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)


async def add_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    settings: Settings = context.bot_data["settings"]
    manager: MeetingListManager = context.bot_data["manager"]
    if not _authorized(update, settings) or update.message is None:
        return
    title, date = parse_add_args(
        context.args or [], settings.local_timezone, manager.default_meeting_date()
    )
    meeting = manager.add(title, date)
    if meeting is None:
        await update.message.reply_text("Usage: /add [HH:MM|+minutes] <title>")
        return
    text = build_meeting_list(manager.meetings, settings.local_timezone, highlight=0)
    await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)


async def begin_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    settings: Settings = context.bot_data["settings"]
    manager: MeetingListManager = context.bot_data["manager"]
    if not _authorized(update, settings) or update.message is None:
        return
    # Rows are resolved to ids here; the manager only ever sees ids.
    ids = resolve_rows(manager.meetings, (context.args or [])[:1])
    if not ids:
        await update.message.reply_text("Usage: /begin <row>")
        return
    move = manager.mark_started(ids[0])
    text = build_meeting_list(
        manager.meetings, settings.local_timezone, highlight=move.new_index
    )
    await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)


async def remove_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    settings: Settings = context.bot_data["settings"]
    manager: MeetingListManager = context.bot_data["manager"]
    if not _authorized(update, settings) or update.message is None:
        return
    ids = resolve_rows(manager.meetings, context.args or [])
    if not ids:
        await update.message.reply_text("Usage: /remove <row> [<row> ...]")
        return
    removed = manager.remove(ids)
    await update.message.reply_text(f"Removed {len(removed)} meeting(s)")


async def notification_action_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    settings: Settings = context.bot_data["settings"]
    manager: MeetingListManager = context.bot_data["manager"]
    query = update.callback_query
    if query is None or not _authorized(update, settings):
        return
    await query.answer()
    parsed = parse_callback_data(query.data)
    if parsed is None:
        return
    action, notification_id = parsed
    if action == ACTION_DISMISS:
        await query.edit_message_reply_markup(reply_markup=None)
        return
    if action != ACTION_OPEN:
        return
    index = manager.accept_external_activation(notification_id)
    if index is None:
        await query.edit_message_reply_markup(reply_markup=None)
        return
    if query.message is None:
        return
    text = build_meeting_list(manager.meetings, settings.local_timezone, highlight=index)
    await query.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)


async def error_handler(update, context: ContextTypes.DEFAULT_TYPE) -> None:
    logging.getLogger("reminder.bot").error(
        "Failed to handle update %s", update, exc_info=context.error
    )


async def run_async() -> None:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    backend = JsonFileBackend(settings.store_path)
    backend.register_defaults(
        {
            Defaults.NOTIFICATION_OFFSET_MINUTES.value: settings.notification_offset_minutes,
            Defaults.DEFAULT_MEETING_DATE_OFFSET.value: settings.default_meeting_date_offset,
        }
    )

    request = HTTPXRequest(
        connect_timeout=TELEGRAM_CONNECT_TIMEOUT,
        read_timeout=TELEGRAM_READ_TIMEOUT,
        write_timeout=TELEGRAM_WRITE_TIMEOUT,
        pool_timeout=TELEGRAM_POOL_TIMEOUT,
    )
    application = ApplicationBuilder().token(settings.bot_token).request(request).build()

    service = TelegramNotificationService(
        backend,
        application.bot,
        settings.allowed_chat_ids,
        settings.local_timezone,
        settings.delivery_poll_interval,
    )
    manager = MeetingListManager(MeetingStore(backend), Scheduler(service), backend)
    await manager.initialize()

    application.add_handler(CommandHandler("list", list_handler))
    application.add_handler(CommandHandler("add", add_handler))
    application.add_handler(CommandHandler("begin", begin_handler))
    application.add_handler(CommandHandler("remove", remove_handler))
    application.add_handler(CallbackQueryHandler(notification_action_handler))
    application.add_error_handler(error_handler)
    application.bot_data["settings"] = settings
    application.bot_data["manager"] = manager

    await application.initialize()
    await application.start()
    await application.updater.start_polling()

    delivery_task = asyncio.create_task(service.delivery_loop())

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            continue

    try:
        await stop_event.wait()
    finally:
        delivery_task.cancel()
        await manager.flush()
        await application.updater.stop()
        await application.stop()
        await application.shutdown()


def run() -> None:
    try:
        asyncio.run(run_async())
    except KeyboardInterrupt:
        pass
