from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Iterable, List, Optional, Tuple

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import NetworkError, TimedOut
from zoneinfo import ZoneInfo

from reminder.models import PendingNotification
from reminder.notifications import NotificationCenter
from reminder.storage import KeyValueBackend
from reminder.utils import escape_markdown_v2, format_local_dt

TELEGRAM_SEND_RETRIES = 3
TELEGRAM_RETRY_BASE_DELAY = 1.0
CALLBACK_SEPARATOR = ":"


def build_callback_data(action: str, identifier: str) -> str:
    return f"{action}{CALLBACK_SEPARATOR}{identifier}"


def parse_callback_data(data: Optional[str]) -> Optional[Tuple[str, str]]:
    if not data or CALLBACK_SEPARATOR not in data:
        return None
    action, identifier = data.split(CALLBACK_SEPARATOR, 1)
    if not action or not identifier:
        return None
    return action, identifier


def build_reminder_message(notification: PendingNotification, tz: ZoneInfo) -> str:
    reminder_at = escape_markdown_v2(format_local_dt(notification.delivery_utc, tz))
    lines = [
        f"*🔔 {escape_markdown_v2(notification.title)}*",
        escape_markdown_v2(notification.body),
        f"Reminder for {reminder_at}",
    ]
    return "\n".join(lines)


def build_reminder_markup(notification: PendingNotification) -> InlineKeyboardMarkup:
    buttons = [
        InlineKeyboardButton(
            action.capitalize(),
            callback_data=build_callback_data(action, notification.id),
        )
        for action in notification.actions
    ]
    return InlineKeyboardMarkup([buttons])


async def send_to_chats(
    bot: Bot,
    chat_ids: Iterable[int],
    text: str,
    parse_mode: ParseMode | None = None,
    reply_markup: InlineKeyboardMarkup | None = None,
) -> int:
    logger = logging.getLogger("reminder.delivery")
    delivered = 0
    for chat_id in chat_ids:
        delay = TELEGRAM_RETRY_BASE_DELAY
        for attempt in range(TELEGRAM_SEND_RETRIES):
            try:
                await bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=parse_mode,
                    reply_markup=reply_markup,
                    disable_web_page_preview=True,
                )
                delivered += 1
                break
            except (TimedOut, NetworkError):
                if attempt < TELEGRAM_SEND_RETRIES - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue
                logger.warning(
                    "Timed out sending to chat %s after %s attempts",
                    chat_id,
                    TELEGRAM_SEND_RETRIES,
                )
            except Exception:
                logger.exception("Failed to send message to chat %s", chat_id)
            break
    return delivered


class TelegramNotificationService(NotificationCenter):
    """Delivers due reminders to the allowed chats with action buttons."""

    def __init__(
        self,
        backend: KeyValueBackend,
        bot: Bot,
        chat_ids: List[int],
        local_timezone: ZoneInfo,
        poll_interval: float,
    ) -> None:
        super().__init__(backend)
        self.bot = bot
        self.chat_ids = list(chat_ids)
        self.local_timezone = local_timezone
        self.poll_interval = poll_interval
        self._delivery_logger = logging.getLogger("reminder.delivery")

    async def deliver_due(self, now_utc: Optional[datetime] = None) -> List[PendingNotification]:
        if now_utc is None:
            now_utc = datetime.now(timezone.utc)
        due_items = self.due(now_utc)
        for notification in due_items:
            try:
                await send_to_chats(
                    self.bot,
                    self.chat_ids,
                    build_reminder_message(notification, self.local_timezone),
                    parse_mode=ParseMode.MARKDOWN_V2,
                    reply_markup=build_reminder_markup(notification),
                )
            except Exception:
                self._delivery_logger.exception(
                    "Failed to deliver reminder %s", notification.id
                )
        return due_items

    async def delivery_loop(self) -> None:
        while True:
            try:
                delivered = await self.deliver_due()
                self._delivery_logger.info(
                    "Delivered %s reminders, %s pending, next check in %s sec",
                    len(delivered),
                    len(self.list_pending_notifications()),
                    self.poll_interval,
                )
            except Exception:
                self._delivery_logger.exception("Reminder delivery failed")
            await asyncio.sleep(self.poll_interval)
