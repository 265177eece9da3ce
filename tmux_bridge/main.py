"""Bridge process entry point - wires tmux, lock, outbox and Telegram together."""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import yaml
import uvicorn

from .lock_manager import DEFAULT_LOCK_NAME, FileLock
from .message_queue import OutboxQueue, OutboxWatcher
from .models import TargetHandle, TurnResult
from .orchestrator import TurnOrchestrator
from .server import create_app
from .state import BridgeContext, BridgePaths, PidFile, RecipientStore, TokenStore
from .telegram_bot import TelegramBot
from .tmux_controller import TmuxController

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_PORT = 8421


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    """Absolute config path: explicit argument, then $TMUX_BRIDGE_CONFIG, then ./config.yaml."""
    path = config_path or os.environ.get("TMUX_BRIDGE_CONFIG", DEFAULT_CONFIG_PATH)
    return Path(path).expanduser().resolve()


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file."""
    path = resolve_config_path(config_path)

    if not path.exists():
        logger.debug(f"Config file not found: {path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


def resolve_token(config: dict, paths: BridgePaths) -> Optional[str]:
    """Bot token from the environment, then the config file, then the saved token file."""
    return (
        os.environ.get("TELEGRAM_BOT_TOKEN")
        or config.get("telegram", {}).get("token")
        or TokenStore(paths.token_file).load()
    )


class BridgeApp:
    """Main application orchestrator."""

    def __init__(self, config: dict, token: str, target: TargetHandle, paths: BridgePaths):
        self.config = config
        self.paths = paths

        server_config = config.get("server", {})
        self.host = server_config.get("host", "127.0.0.1")
        self.port = server_config.get("port", DEFAULT_PORT)

        self.tmux = TmuxController(config=config)

        lock_config = config.get("lock", {})
        self.lock = FileLock(
            name=lock_config.get("name", DEFAULT_LOCK_NAME),
            retry_interval=lock_config.get("retry_interval", 0.5),
            max_retries=lock_config.get("max_retries", 10),
            lock_dir=lock_config.get("dir"),
        )

        self.context = BridgeContext(
            target=target,
            recipients=RecipientStore(paths.recipient_file),
        ).load()

        self.orchestrator = TurnOrchestrator(self.tmux, self.lock, self.context, config=config)

        telegram_config = config.get("telegram", {})
        self.telegram_bot = TelegramBot(
            token=token,
            allowed_chat_ids=telegram_config.get("allowed_chat_ids"),
        )
        self.telegram_bot.set_chat_input_handler(self._on_chat_input)
        self.telegram_bot.set_status_handler(self._on_status)
        self.orchestrator.set_chat_sender(self._send_chat)

        self.outbox = OutboxQueue(paths.outbox_dir)
        self.outbox_watcher = OutboxWatcher(
            self.outbox,
            self.orchestrator.handle_notification,
            poll_interval=config.get("notifications", {}).get("poll_interval", 1.0),
        )

        self.app = create_app(
            context=self.context,
            outbox=self.outbox,
            lock=self.lock,
            telegram_bot=self.telegram_bot,
            config=config,
        )

    async def _on_chat_input(self, text: str, chat_id: str, message_id: int) -> TurnResult:
        return await self.orchestrator.run_turn(text, recipient_id=chat_id, message_id=message_id)

    async def _send_chat(self, chat_id: str, text: str):
        await self.telegram_bot.send_message(chat_id, text)

    async def _on_status(self) -> str:
        status = self.app.state.snapshot()
        lock_owner = status.lock_owner_pid or "free"
        return (
            f"Pane: {status.target_pane}\n"
            f"Recipient: {status.recipient_id or 'none'}\n"
            f"Lock: {lock_owner}\n"
            f"Pending notifications: {status.pending_notifications}"
        )

    async def start(self):
        """Start all components and serve until a shutdown signal."""
        logger.info(f"Starting tmux bridge for pane {self.context.target}...")

        await self.telegram_bot.start()
        await self.outbox_watcher.start()

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        logger.info(f"Control API on http://{self.host}:{self.port}")

        # uvicorn installs SIGINT/SIGTERM handlers and returns on either
        await server.serve()

    async def stop(self):
        """Stop all components."""
        logger.info("Stopping tmux bridge...")
        await self.outbox_watcher.stop()
        await self.telegram_bot.stop()
        # A turn cut short by shutdown must not leave the pane locked
        self.lock.release()
        logger.info("Shutdown complete")


async def main() -> int:
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config()
    paths = BridgePaths.from_config(config)

    token = resolve_token(config, paths)
    if not token:
        logger.error("Missing Telegram bot token (TELEGRAM_BOT_TOKEN, config, or saved token file)")
        return 1

    pane_id = os.environ.get("TARGET_PANE")
    target = TargetHandle(pane_id) if pane_id else TmuxController(config=config).resolve_target()
    if not target:
        logger.error("Missing TARGET_PANE and not running inside the configured tmux session")
        return 1

    pid_file = PidFile(paths.pid_file)
    running = pid_file.running_pid()
    if running and running != os.getpid():
        logger.error(f"Bridge already running (PID {running}). Aborting.")
        return 0
    pid_file.write()
    logger.info(f"Bridge started. PID: {os.getpid()}")

    app = BridgeApp(config, token, target, paths)
    try:
        await app.start()
    finally:
        await app.stop()
        pid_file.remove()
    return 0


def run():
    """Entry point for console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
