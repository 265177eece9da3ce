"""FastAPI server exposing bridge status and notification intake on localhost."""

import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from .lock_manager import FileLock
from .message_queue import OutboxQueue
from .models import BridgeStatus
from .state import BridgeContext

logger = logging.getLogger(__name__)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log slow requests for debugging."""

    def __init__(self, app, config: Optional[dict] = None):
        super().__init__(app)
        self.config = config or {}
        server_config = self.config.get("server", {})
        self.slow_threshold = server_config.get("slow_request_threshold_seconds", 1.0)

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start

        if elapsed > self.slow_threshold:
            logger.warning(
                f"SLOW REQUEST: {request.method} {request.url.path} "
                f"took {elapsed:.2f}s"
            )

        return response


class NotifyRequest(BaseModel):
    """Request to queue a notification."""
    message: str


class NotifyResponse(BaseModel):
    """Response after queuing a notification."""
    queued: str


class StatusResponse(BaseModel):
    """Bridge status snapshot."""
    pid: int
    target_pane: Optional[str] = None
    recipient_id: Optional[str] = None
    telegram_connected: bool = False
    lock_owner_pid: Optional[int] = None
    pending_notifications: int = 0


def create_app(
    context: BridgeContext,
    outbox: OutboxQueue,
    lock: FileLock,
    telegram_bot=None,
    config: Optional[dict] = None,
) -> FastAPI:
    """
    Create the local control API.

    Args:
        context: Shared bridge context (target pane, recipient)
        outbox: Notification queue
        lock: Pane lock, for reporting its owner
        telegram_bot: Optional TelegramBot, for the connected flag
        config: Bridge configuration
    """
    app = FastAPI(title="tmux bridge", version="0.1.0")
    app.add_middleware(RequestTimingMiddleware, config=config)

    app.state.context = context
    app.state.outbox = outbox
    app.state.lock = lock
    app.state.telegram_bot = telegram_bot

    def snapshot() -> BridgeStatus:
        bot = app.state.telegram_bot
        return BridgeStatus(
            pid=os.getpid(),
            target_pane=str(context.target) if context.target else None,
            recipient_id=context.recipient_id,
            telegram_connected=bool(bot and bot.connected),
            lock_owner_pid=lock.owner_pid(),
            pending_notifications=outbox.count(),
        )

    app.state.snapshot = snapshot

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/status", response_model=StatusResponse)
    async def status():
        return StatusResponse(**snapshot().to_dict())

    @app.post("/notify", response_model=NotifyResponse)
    async def notify(request: NotifyRequest):
        if not context.recipient_id:
            raise HTTPException(
                status_code=409,
                detail="No recipient yet. Message the bot once from Telegram first.",
            )
        try:
            path = outbox.enqueue(request.message)
        except OSError as e:
            logger.error(f"Failed to queue notification: {e}")
            raise HTTPException(status_code=500, detail=f"Error queuing notification: {e}")
        return NotifyResponse(queued=path.name)

    return app
