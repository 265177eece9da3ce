"""Sequences chat turns and notifications through the lock and the tmux pane."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .errors import TmuxCommandError
from .lock_manager import FileLock
from .models import Extraction, Notification, Turn, TurnResult, TurnState, TurnStatus
from .notifier import clean_output
from .state import BridgeContext
from .tmux_controller import TmuxController

logger = logging.getLogger(__name__)

# Hard limit of a Telegram message
MAX_MESSAGE_LENGTH = 4096
# Body budget for replies and notification chunks (leaves room for the banner)
REPLY_LIMIT = 4000
TRUNCATION_BANNER = "[...Truncated...]\n"

DEFAULT_SOURCE_TAG = "[Telegram]: "
DEFAULT_NOTIFICATION_TAG = "[Telegram notification]: "

BUSY_REPLY = "System is busy."
NO_OUTPUT_REPLY = "(No output detected)"
EMPTY_AFTER_CLEAN_REPLY = "(Output was empty after cleaning)"
NOT_LOCATED_REPLY = "(Could not locate the reply in the terminal)"

# Lines that trigger shell mode in the target CLI
SHELL_TRIGGERS = ("!",)

ChatSender = Callable[[str, str], Awaitable[None]]


def prepare_input(text: str, source_tag: str = DEFAULT_SOURCE_TAG) -> str:
    """
    Build the echo key for a chat message.

    Lines starting with a shell trigger get a leading space so the CLI treats
    them as prose, and the message is tagged with its source.
    """
    lines = [
        " " + line if line.startswith(SHELL_TRIGGERS) else line
        for line in text.split("\n")
    ]
    return source_tag + "\n".join(lines)


def extract_reply(
    captured: str,
    echo_key: str,
    trailing_lines: int = 5,
    fallback_lines: int = 20,
) -> Extraction:
    """
    Pull the reply to echo_key out of captured pane text.

    Drops trailing_lines lines of prompt/status furniture, then takes
    everything after the last occurrence of echo_key. If the key is gone
    (scrolled away or reformatted) the last fallback_lines lines stand in.
    """
    lines = captured.split("\n")
    if len(lines) > trailing_lines:
        lines = lines[:-trailing_lines]
    body = "\n".join(lines)

    index = body.rfind(echo_key)
    if index != -1:
        return Extraction(text=body[index + len(echo_key):].strip(), located=True)

    logger.debug("Echo key not found in capture, falling back to trailing lines")
    return Extraction(text="\n".join(lines[-fallback_lines:]).strip(), located=False)


def fit_reply(text: str, limit: int = REPLY_LIMIT) -> str:
    """Keep the most recent limit characters of an oversized reply, with a banner."""
    if len(text) <= limit:
        return text
    return TRUNCATION_BANNER + text[-limit:]


def chunk_message(text: str, size: int = REPLY_LIMIT) -> list[str]:
    """Split text into ordered chunks of at most size characters."""
    return [text[i:i + size] for i in range(0, len(text), size)]


class TurnOrchestrator:
    """
    Runs chat turns and notifications against the tmux pane.

    Every interaction with the pane happens under the cross-process lock, and
    the lock is released exactly once on every path out of a turn.
    """

    def __init__(
        self,
        tmux: TmuxController,
        lock: FileLock,
        context: BridgeContext,
        config: Optional[dict] = None,
    ):
        self.tmux = tmux
        self.lock = lock
        self.context = context
        self.config = config or {}

        turn_config = self.config.get("turn", {})
        self.source_tag = turn_config.get("source_tag", DEFAULT_SOURCE_TAG)
        self.notification_tag = turn_config.get("notification_tag", DEFAULT_NOTIFICATION_TAG)
        self.scrollback_lines = turn_config.get("scrollback_lines", 200)
        self.trailing_lines = turn_config.get("trailing_lines", 5)
        self.fallback_lines = turn_config.get("fallback_lines", 20)
        self.reply_limit = turn_config.get("reply_limit", REPLY_LIMIT)
        self.clean = turn_config.get("clean_output", True)

        quiescence = self.config.get("quiescence", {})
        self.settle_profile = {
            "stable_window": 2.0, "poll_interval": 0.5, "timeout": 30.0,
            **quiescence.get("default", {}),
        }
        self.reply_profile = {
            "stable_window": 3.0, "poll_interval": 0.5, "timeout": 20.0,
            **quiescence.get("reply", {}),
        }

        notify_config = self.config.get("notifications", {})
        self.inject_notifications = notify_config.get("inject_into_pane", True)
        self.forward_notifications = notify_config.get("forward_to_chat", True)

        self._send_chat: Optional[ChatSender] = None

    def set_chat_sender(self, sender: ChatSender):
        """Set the coroutine used to push notifications to chat. Receives (recipient_id, text)."""
        self._send_chat = sender

    def _format_reply(self, extraction: Extraction) -> TurnResult:
        if not extraction.text:
            reply = NO_OUTPUT_REPLY if extraction.located else NOT_LOCATED_REPLY
            return TurnResult(TurnStatus.NO_OUTPUT, reply, located=extraction.located)
        text = clean_output(extraction.text) if self.clean else extraction.text
        reply = fit_reply(text, self.reply_limit) if text else EMPTY_AFTER_CLEAN_REPLY
        return TurnResult(TurnStatus.REPLIED, reply, located=extraction.located)

    async def run_turn(
        self,
        text: str,
        recipient_id: Optional[str] = None,
        message_id: Optional[int] = None,
    ) -> TurnResult:
        """
        Relay one chat message to the pane and extract the reply.

        Args:
            text: Raw chat message
            recipient_id: Chat that sent it (becomes the active recipient)
            message_id: Transport message ID, for logging

        Returns:
            TurnResult whose reply is always a user-presentable string
        """
        turn = Turn(
            text=text,
            echo_key=prepare_input(text, self.source_tag),
            recipient_id=recipient_id,
            message_id=message_id,
        )
        if recipient_id:
            self.context.set_recipient(recipient_id)

        logger.info(f"[Msg {message_id}] Received: {text[:80]!r}")

        turn.advance(TurnState.LOCK_WAIT)
        if not await self.lock.acquire():
            turn.advance(TurnState.FAILED)
            logger.info(f"[Msg {message_id}] Rejected, pane is busy")
            return TurnResult(TurnStatus.BUSY, BUSY_REPLY)

        target = self.context.target
        try:
            turn.advance(TurnState.STABILIZING_PRE)
            await self.tmux.wait_for_quiescence(target, **self.settle_profile)

            turn.advance(TurnState.INJECTING)
            logger.info(f"[Msg {message_id}] Injecting message...")
            await self.tmux.inject(target, turn.echo_key)

            turn.advance(TurnState.STABILIZING_POST)
            logger.info(f"[Msg {message_id}] Waiting for response...")
            if not await self.tmux.wait_for_quiescence(target, **self.reply_profile):
                logger.warning(f"[Msg {message_id}] Reply did not settle, extracting anyway")

            turn.advance(TurnState.EXTRACTING)
            turn.captured = await self.tmux.capture(target, self.scrollback_lines)
            extraction = extract_reply(
                turn.captured, turn.echo_key, self.trailing_lines, self.fallback_lines
            )
            result = self._format_reply(extraction)
            turn.advance(TurnState.DELIVERED)
            elapsed = (datetime.now() - turn.started_at).total_seconds()
            logger.info(f"[Msg {message_id}] {result.status.value} in {elapsed:.1f}s")
            return result

        except TmuxCommandError as e:
            turn.advance(TurnState.FAILED)
            logger.error(f"[Msg {message_id}] tmux failure in {turn.state.value}: {e}")
            return TurnResult(TurnStatus.ERROR, f"Error: {e}", error=str(e))
        except Exception as e:
            turn.advance(TurnState.FAILED)
            logger.exception(f"[Msg {message_id}] Turn failed: {e}")
            return TurnResult(TurnStatus.ERROR, f"Error: {e}", error=str(e))
        finally:
            self.lock.release()

    async def run_notification(self, notification: Notification) -> TurnStatus:
        """
        Under the lock, optionally inject a notification into the pane (no reply
        extraction); then forward it to chat.

        Returns:
            BUSY if the lock could not be taken, NO_RECIPIENT if there was no chat
            to forward to, ERROR on tmux failure, otherwise INJECTED
        """
        logger.info(f"Processing notification {notification.name}: {notification.message[:50]}...")

        async with self.lock.hold() as acquired:
            if not acquired:
                return TurnStatus.BUSY
            if self.inject_notifications:
                target = self.context.target
                try:
                    await self.tmux.wait_for_quiescence(target, **self.settle_profile)
                    await self.tmux.inject(target, prepare_input(notification.message, self.notification_tag))
                except TmuxCommandError as e:
                    logger.error(f"Failed to inject notification {notification.name}: {e}")
                    return TurnStatus.ERROR

        if not self.forward_notifications:
            return TurnStatus.INJECTED
        return await self._forward(notification)

    async def _forward(self, notification: Notification) -> TurnStatus:
        recipient = self.context.recipient_id
        if not recipient or not self._send_chat:
            logger.warning(f"No chat to forward notification {notification.name} to")
            return TurnStatus.NO_RECIPIENT

        text = clean_output(notification.message) if self.clean else notification.message
        for chunk in chunk_message(text, self.reply_limit):
            await self._send_chat(recipient, chunk)
        return TurnStatus.INJECTED

    async def handle_notification(self, notification: Notification) -> bool:
        """Outbox handler: True when the entry is finished, False to retry it later."""
        status = await self.run_notification(notification)
        return status != TurnStatus.BUSY
