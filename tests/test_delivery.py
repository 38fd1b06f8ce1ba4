"""Tests for Telegram reminder delivery."""

import asyncio
from datetime import datetime, timedelta, timezone
import logging
from unittest.mock import AsyncMock, patch

import pytest
from telegram.constants import ParseMode
from telegram.error import TimedOut
from zoneinfo import ZoneInfo

from reminder.delivery import (
    TELEGRAM_SEND_RETRIES,
    TelegramNotificationService,
    build_callback_data,
    build_reminder_markup,
    build_reminder_message,
    parse_callback_data,
    send_to_chats,
)
from reminder.models import PendingNotification
from reminder.storage import MemoryBackend

NOW = datetime(2030, 5, 6, 8, 0, tzinfo=timezone.utc)


def _notification(identifier="abc", delivery=NOW, body="Standup"):
    return PendingNotification(
        id=identifier,
        title="Meeting is coming!",
        body=body,
        delivery_utc=delivery,
        actions=("open", "dismiss"),
    )


class FlakyBackend(MemoryBackend):
    """Backend whose next `failures` writes raise."""

    def __init__(self):
        super().__init__()
        self.failures = 0

    def set(self, key, value):
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        super().set(key, value)


class TestCallbackData:
    def test_round_trip(self):
        data = build_callback_data("open", "1234")
        assert data == "open:1234"
        assert parse_callback_data(data) == ("open", "1234")

    @pytest.mark.parametrize("data", [None, "", "open", ":abc", "open:"])
    def test_rejects_garbage(self, data):
        assert parse_callback_data(data) is None


class TestMessages:
    def test_markup_has_one_button_per_action(self):
        markup = build_reminder_markup(_notification())
        [row] = markup.inline_keyboard
        assert [button.callback_data for button in row] == ["open:abc", "dismiss:abc"]
        assert [button.text for button in row] == ["Open", "Dismiss"]

    def test_message_escapes_markdown(self):
        text = build_reminder_message(_notification(body="1:1 (weekly)"), ZoneInfo("UTC"))
        assert "1:1 \\(weekly\\)" in text
        assert "2030\\-05\\-06 08:00" in text


class TestSendToChats:
    @pytest.mark.asyncio
    async def test_sends_to_every_chat(self):
        bot = AsyncMock()
        delivered = await send_to_chats(bot, [1, 2], "hi")
        assert delivered == 2
        assert [call.kwargs["chat_id"] for call in bot.send_message.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_retries_on_timeout(self):
        bot = AsyncMock()
        bot.send_message.side_effect = [TimedOut(), None]
        with patch("reminder.delivery.asyncio.sleep", new_callable=AsyncMock) as sleep:
            delivered = await send_to_chats(bot, [1], "hi")

        assert delivered == 1
        assert bot.send_message.await_count == 2
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, caplog):
        bot = AsyncMock()
        bot.send_message.side_effect = TimedOut()
        with patch("reminder.delivery.asyncio.sleep", new_callable=AsyncMock):
            with caplog.at_level(logging.WARNING, logger="reminder.delivery"):
                delivered = await send_to_chats(bot, [1], "hi")

        assert delivered == 0
        assert bot.send_message.await_count == TELEGRAM_SEND_RETRIES
        assert "Timed out sending to chat 1" in caplog.text

    @pytest.mark.asyncio
    async def test_other_errors_are_logged(self, caplog):
        bot = AsyncMock()
        bot.send_message.side_effect = RuntimeError("boom")
        with caplog.at_level(logging.ERROR, logger="reminder.delivery"):
            delivered = await send_to_chats(bot, [1, 2], "hi")

        assert delivered == 0
        assert bot.send_message.await_count == 2
        assert "Failed to send message to chat 1" in caplog.text


class TestTelegramNotificationService:
    @pytest.mark.asyncio
    async def test_delivers_due_reminders(self, backend):
        bot = AsyncMock()
        service = TelegramNotificationService(backend, bot, [1, 2], ZoneInfo("UTC"), 5)
        service.schedule_notification("due", "t", "Standup", NOW - timedelta(minutes=1), ("open",))
        service.schedule_notification("later", "t", "Retro", NOW + timedelta(hours=1), ("open",))

        delivered = await service.deliver_due(NOW)

        assert [item.id for item in delivered] == ["due"]
        assert bot.send_message.await_count == 2
        call = bot.send_message.await_args_list[0]
        assert call.kwargs["parse_mode"] == ParseMode.MARKDOWN_V2
        assert call.kwargs["reply_markup"].inline_keyboard[0][0].callback_data == "open:due"
        assert [item.id for item in service.list_pending_notifications()] == ["later"]

    @pytest.mark.asyncio
    async def test_nothing_due(self, backend):
        bot = AsyncMock()
        service = TelegramNotificationService(backend, bot, [1], ZoneInfo("UTC"), 5)
        assert await service.deliver_due(NOW) == []
        bot.send_message.assert_not_awaited()

    def test_failed_write_keeps_reminders_pending(self):
        backend = FlakyBackend()
        service = TelegramNotificationService(backend, AsyncMock(), [1], ZoneInfo("UTC"), 5)
        service.schedule_notification("due", "t", "Standup", NOW, ("open",))
        backend.failures = 1

        with pytest.raises(OSError):
            service.due(NOW)

        assert [item.id for item in service.list_pending_notifications()] == ["due"]
        assert [item.id for item in service.due(NOW)] == ["due"]

    @pytest.mark.asyncio
    async def test_loop_survives_backend_failure(self, caplog):
        backend = FlakyBackend()
        bot = AsyncMock()
        service = TelegramNotificationService(backend, bot, [1], ZoneInfo("UTC"), 0.01)
        service.schedule_notification(
            "overdue", "t", "Standup", datetime.now(timezone.utc) - timedelta(minutes=1), ("open",)
        )
        backend.failures = 1

        with caplog.at_level(logging.ERROR, logger="reminder.delivery"):
            task = asyncio.create_task(service.delivery_loop())
            try:
                for _ in range(200):
                    if bot.send_message.await_count:
                        break
                    await asyncio.sleep(0.01)
                assert not task.done()
            finally:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        bot.send_message.assert_awaited_once()
        assert "Reminder delivery failed" in caplog.text
        assert service.list_pending_notifications() == []
