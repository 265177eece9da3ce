"""Shared pytest fixtures for tmux bridge tests."""

import uuid
from pathlib import Path
from unittest.mock import MagicMock, AsyncMock

import pytest

from tmux_bridge.lock_manager import FileLock
from tmux_bridge.message_queue import OutboxQueue
from tmux_bridge.models import TargetHandle
from tmux_bridge.orchestrator import TurnOrchestrator
from tmux_bridge.state import BridgeContext, RecipientStore
from tmux_bridge.tmux_controller import TmuxController


@pytest.fixture
def target() -> TargetHandle:
    return TargetHandle("%7")


@pytest.fixture
def mock_tmux() -> MagicMock:
    """
    Mock TmuxController for testing without a real tmux server.

    Returns:
        MagicMock whose async methods succeed immediately
    """
    mock = MagicMock(spec=TmuxController)
    mock.wait_for_quiescence = AsyncMock(return_value=True)
    mock.inject = AsyncMock(return_value=None)
    mock.capture = AsyncMock(return_value="")
    mock.resolve_target.return_value = TargetHandle("%7")
    return mock


@pytest.fixture
def lock(tmp_path: Path) -> FileLock:
    """A lock in a private directory with fast retries."""
    return FileLock(
        name=f"test-lock-{uuid.uuid4().hex[:8]}",
        retry_interval=0.01,
        max_retries=3,
        lock_dir=str(tmp_path),
    )


@pytest.fixture
def context(target: TargetHandle, tmp_path: Path) -> BridgeContext:
    return BridgeContext(
        target=target,
        recipients=RecipientStore(tmp_path / "chat_id.txt"),
    ).load()


@pytest.fixture
def outbox(tmp_path: Path) -> OutboxQueue:
    queue = OutboxQueue(tmp_path / "outbox")
    queue.ensure()
    return queue


@pytest.fixture
def orchestrator(mock_tmux, lock, context) -> TurnOrchestrator:
    """Orchestrator wired to the mock tmux controller, a private lock and context."""
    orch = TurnOrchestrator(mock_tmux, lock, context, config={})
    orch.set_chat_sender(AsyncMock())
    return orch


@pytest.fixture
def bridge_config(tmp_path: Path, monkeypatch) -> dict:
    """Config pointing all persisted state into tmp_path, with env overrides cleared."""
    for var in ("TELEGRAM_BOT_TOKEN", "TARGET_PANE", "TMUX_BRIDGE_STATE_DIR", "TMUX_BRIDGE_SESSION_NAME"):
        monkeypatch.delenv(var, raising=False)
    return {
        "paths": {
            "state_dir": str(tmp_path / "state"),
            "token_file": str(tmp_path / "config" / "bot_token"),
        },
    }
