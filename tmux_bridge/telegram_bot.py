"""Telegram transport: relays chat messages to the orchestrator and replies back."""

import logging
from typing import Awaitable, Callable, Optional

from telegram import Bot, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from .models import TurnResult
from .orchestrator import MAX_MESSAGE_LENGTH, chunk_message

logger = logging.getLogger(__name__)

ChatInputHandler = Callable[[str, str, int], Awaitable[TurnResult]]
StatusHandler = Callable[[], Awaitable[str]]


class TelegramBot:
    """Telegram bot bridging one chat to the tmux pane."""

    def __init__(
        self,
        token: str,
        allowed_chat_ids: Optional[list[int]] = None,
    ):
        """
        Initialize the Telegram bot.

        Args:
            token: Telegram bot token from BotFather
            allowed_chat_ids: Chat IDs allowed to use the bot (None = allow all)
        """
        self.token = token
        self.allowed_chat_ids = set(allowed_chat_ids) if allowed_chat_ids else None
        self.application: Optional[Application] = None
        self.bot: Optional[Bot] = None
        self.connected = False

        self._on_chat_input: Optional[ChatInputHandler] = None
        self._on_status: Optional[StatusHandler] = None

    def set_chat_input_handler(self, handler: ChatInputHandler):
        """Set handler for chat text. Handler receives (text, chat_id, message_id)."""
        self._on_chat_input = handler

    def set_status_handler(self, handler: StatusHandler):
        """Set handler producing the /status text."""
        self._on_status = handler

    def _is_allowed(self, chat_id: int) -> bool:
        if self.allowed_chat_ids is None:
            return True
        return chat_id in self.allowed_chat_ids

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start and /help."""
        if not self._is_allowed(update.effective_chat.id):
            logger.warning(f"Unauthorized: chat_id={update.effective_chat.id}")
            await update.message.reply_text("Unauthorized.")
            return

        await update.message.reply_text(
            "tmux bridge\n\n"
            "Send any message and it is typed into the terminal session; "
            "the reply comes back here.\n\n"
            "/status - Show bridge status\n"
            "/help - Show this message"
        )

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /status."""
        if not self._is_allowed(update.effective_chat.id):
            await update.message.reply_text("Unauthorized.")
            return
        if not self._on_status:
            await update.message.reply_text("Status not configured.")
            return
        await update.message.reply_text(await self._on_status())

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Relay a chat message as one turn and reply with the extracted output."""
        if not update.message or update.message.text is None:
            return
        chat_id = update.effective_chat.id
        if not self._is_allowed(chat_id):
            logger.warning(f"Ignoring message from unauthorized chat {chat_id}")
            return
        if not self._on_chat_input:
            return

        try:
            result = await self._on_chat_input(
                update.message.text, str(chat_id), update.message.message_id
            )
            reply = result.reply
        except Exception as e:
            logger.error(f"Error handling message {update.message.message_id}: {e}")
            reply = f"Error: {e}"

        try:
            await update.message.reply_text(reply[:MAX_MESSAGE_LENGTH])
        except Exception as e:
            logger.error(f"Failed to reply to message {update.message.message_id}: {e}")

    async def send_message(self, chat_id: str, text: str) -> Optional[int]:
        """
        Send a message to a chat.

        Args:
            chat_id: Target chat
            text: Message text (split if longer than the Telegram limit)

        Returns:
            Message ID of the last chunk sent, or None on failure
        """
        if not self.bot:
            logger.error("Bot not initialized")
            return None

        message_id = None
        for chunk in chunk_message(text, MAX_MESSAGE_LENGTH):
            try:
                msg = await self.bot.send_message(chat_id=chat_id, text=chunk)
                message_id = msg.message_id
            except Exception as e:
                logger.error(f"Failed to send Telegram message to {chat_id}: {e}")
                return None
        return message_id

    async def start(self):
        """Start polling."""
        self.application = (
            Application.builder()
            .token(self.token)
            # Turns may overlap in time; the file lock decides who gets the pane
            .concurrent_updates(True)
            .build()
        )

        self.bot = self.application.bot

        self.application.add_handler(CommandHandler("start", self._cmd_start))
        self.application.add_handler(CommandHandler("help", self._cmd_start))
        self.application.add_handler(CommandHandler("status", self._cmd_status))
        # Everything else, including other slash commands, is input for the CLI
        self.application.add_handler(MessageHandler(filters.TEXT, self._handle_message))

        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        self.connected = True

        logger.info("Telegram bot started")

    async def stop(self):
        """Stop the bot."""
        if self.application and self.connected:
            self.connected = False
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            logger.info("Telegram bot stopped")
