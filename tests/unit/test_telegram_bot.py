"""Unit tests for the Telegram transport."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tmux_bridge.models import TurnResult, TurnStatus
from tmux_bridge.telegram_bot import TelegramBot


def _update(text="hello", chat_id=42, message_id=5):
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.message.text = text
    update.message.message_id = message_id
    update.message.reply_text = AsyncMock()
    return update


# ============================================================================
# Incoming messages
# ============================================================================


@pytest.mark.asyncio
async def test_message_relayed_and_replied():
    tg = TelegramBot(token="123:ABC")
    handler = AsyncMock(return_value=TurnResult(TurnStatus.REPLIED, "answer", located=True))
    tg.set_chat_input_handler(handler)
    update = _update()

    await tg._handle_message(update, MagicMock())

    handler.assert_awaited_once_with("hello", "42", 5)
    update.message.reply_text.assert_awaited_once_with("answer")


@pytest.mark.asyncio
async def test_busy_reply_is_delivered():
    tg = TelegramBot(token="123:ABC")
    tg.set_chat_input_handler(AsyncMock(return_value=TurnResult(TurnStatus.BUSY, "System is busy.")))
    update = _update()

    await tg._handle_message(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("System is busy.")


@pytest.mark.asyncio
async def test_unauthorized_chat_ignored():
    tg = TelegramBot(token="123:ABC", allowed_chat_ids=[1])
    handler = AsyncMock()
    tg.set_chat_input_handler(handler)
    update = _update(chat_id=42)

    await tg._handle_message(update, MagicMock())

    handler.assert_not_awaited()
    update.message.reply_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_handler_exception_becomes_error_reply():
    tg = TelegramBot(token="123:ABC")
    tg.set_chat_input_handler(AsyncMock(side_effect=RuntimeError("boom")))
    update = _update()

    await tg._handle_message(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("Error: boom")


@pytest.mark.asyncio
async def test_reply_capped_at_message_limit():
    tg = TelegramBot(token="123:ABC")
    tg.set_chat_input_handler(AsyncMock(return_value=TurnResult(TurnStatus.REPLIED, "r" * 5000)))
    update = _update()

    await tg._handle_message(update, MagicMock())

    assert len(update.message.reply_text.await_args.args[0]) == 4096


@pytest.mark.asyncio
async def test_non_text_message_ignored():
    tg = TelegramBot(token="123:ABC")
    handler = AsyncMock()
    tg.set_chat_input_handler(handler)

    await tg._handle_message(_update(text=None), MagicMock())

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_reply_failure_is_logged_not_raised():
    tg = TelegramBot(token="123:ABC")
    tg.set_chat_input_handler(AsyncMock(return_value=TurnResult(TurnStatus.REPLIED, "answer")))
    update = _update()
    update.message.reply_text = AsyncMock(side_effect=Exception("Forbidden"))

    with patch("tmux_bridge.telegram_bot.logger") as mock_logger:
        await tg._handle_message(update, MagicMock())

    mock_logger.error.assert_called_once()


# ============================================================================
# Commands
# ============================================================================


@pytest.mark.asyncio
async def test_status_command_uses_handler():
    tg = TelegramBot(token="123:ABC")
    tg.set_status_handler(AsyncMock(return_value="Pane: %7"))
    update = _update(text="/status")

    await tg._cmd_status(update, MagicMock())

    update.message.reply_text.assert_awaited_once_with("Pane: %7")


@pytest.mark.asyncio
async def test_status_command_unauthorized():
    tg = TelegramBot(token="123:ABC", allowed_chat_ids=[1])
    status = AsyncMock()
    tg.set_status_handler(status)
    update = _update(text="/status", chat_id=2)

    await tg._cmd_status(update, MagicMock())

    status.assert_not_awaited()
    update.message.reply_text.assert_awaited_once_with("Unauthorized.")


@pytest.mark.asyncio
async def test_start_command_shows_help():
    tg = TelegramBot(token="123:ABC")
    update = _update(text="/start")

    await tg._cmd_start(update, MagicMock())

    assert "/status" in update.message.reply_text.await_args.args[0]


# ============================================================================
# send_message
# ============================================================================


@pytest.mark.asyncio
async def test_send_message_chunks_long_text():
    tg = TelegramBot(token="123:ABC")
    tg.bot = AsyncMock()
    tg.bot.send_message = AsyncMock(side_effect=[MagicMock(message_id=1), MagicMock(message_id=2)])

    result = await tg.send_message("42", "m" * 5000)

    assert result == 2
    sent = [c.kwargs["text"] for c in tg.bot.send_message.await_args_list]
    assert [len(s) for s in sent] == [4096, 904]
    assert all(c.kwargs["chat_id"] == "42" for c in tg.bot.send_message.await_args_list)


@pytest.mark.asyncio
async def test_send_message_failure_returns_none():
    tg = TelegramBot(token="123:ABC")
    tg.bot = AsyncMock()
    tg.bot.send_message = AsyncMock(side_effect=Exception("chat not found"))

    assert await tg.send_message("42", "hi") is None


@pytest.mark.asyncio
async def test_send_message_before_start():
    tg = TelegramBot(token="123:ABC")
    assert await tg.send_message("42", "hi") is None


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_start_and_stop_polling():
    app = MagicMock()
    app.initialize = AsyncMock()
    app.start = AsyncMock()
    app.stop = AsyncMock()
    app.shutdown = AsyncMock()
    app.updater.start_polling = AsyncMock()
    app.updater.stop = AsyncMock()

    with patch("tmux_bridge.telegram_bot.Application") as mock_application:
        builder = mock_application.builder.return_value
        builder.token.return_value.concurrent_updates.return_value.build.return_value = app

        tg = TelegramBot(token="123:ABC")
        await tg.start()

    builder.token.assert_called_once_with("123:ABC")
    builder.token.return_value.concurrent_updates.assert_called_once_with(True)
    assert app.add_handler.call_count == 4
    app.updater.start_polling.assert_awaited_once()
    assert tg.connected is True

    await tg.stop()

    assert tg.connected is False
    app.updater.stop.assert_awaited_once()
    app.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    tg = TelegramBot(token="123:ABC")
    await tg.stop()
    assert tg.connected is False
