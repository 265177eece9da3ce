"""Persisted bridge state: recipient, PID marker, token, and well-known paths."""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .lock_manager import is_process_alive, read_pid
from .models import TargetHandle

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = "~/.config/tmux-bridge/bot_token"


def default_state_dir() -> Path:
    return Path(tempfile.gettempdir()) / "tmux_bridge"


@dataclass
class BridgePaths:
    """Filesystem locations shared by the bridge process and the CLI."""
    state_dir: Path
    token_file: Path

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "BridgePaths":
        paths = (config or {}).get("paths", {})
        state_dir = os.environ.get("TMUX_BRIDGE_STATE_DIR") or paths.get("state_dir")
        token_file = paths.get("token_file", DEFAULT_TOKEN_FILE)
        return cls(
            state_dir=Path(state_dir).expanduser() if state_dir else default_state_dir(),
            token_file=Path(token_file).expanduser(),
        )

    @property
    def recipient_file(self) -> Path:
        return self.state_dir / "chat_id.txt"

    @property
    def pid_file(self) -> Path:
        return self.state_dir / "bridge.pid"

    @property
    def outbox_dir(self) -> Path:
        return self.state_dir / "outbox"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "bridge.log"


def _write_atomic(path: Path, content: str, mode: Optional[int] = None):
    """Write via temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(path.suffix + ".tmp")
    temp_file.write_text(content)
    if mode is not None:
        os.chmod(temp_file, mode)
    temp_file.replace(path)


class RecipientStore:
    """Single-line record of the last chat that talked to the bridge."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[str]:
        try:
            value = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to load recipient from {self.path}: {e}")
            return None
        return value or None

    def save(self, recipient_id: str) -> bool:
        try:
            _write_atomic(self.path, recipient_id)
            return True
        except OSError as e:
            logger.error(f"Failed to save recipient to {self.path}: {e}")
            return False


class PidFile:
    """PID marker for the running bridge process."""

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> Optional[int]:
        return read_pid(self.path)

    def running_pid(self) -> Optional[int]:
        """PID of a live bridge, or None (missing or stale marker)."""
        pid = self.read()
        if pid is not None and is_process_alive(pid):
            return pid
        return None

    def write(self, pid: Optional[int] = None):
        _write_atomic(self.path, str(pid or os.getpid()))

    def remove(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class TokenStore:
    """Bot token persisted with owner-only permissions."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[str]:
        try:
            return self.path.read_text().strip() or None
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read token file {self.path}: {e}")
            return None

    def save(self, token: str) -> bool:
        try:
            _write_atomic(self.path, token, mode=0o600)
            return True
        except OSError as e:
            logger.error(f"Failed to save token file {self.path}: {e}")
            return False


@dataclass
class BridgeContext:
    """
    Per-process bridge state owned by the orchestrator.

    Loaded once at start; the recipient is written back whenever it changes.
    """
    target: TargetHandle
    recipients: RecipientStore
    recipient_id: Optional[str] = field(default=None)

    def load(self) -> "BridgeContext":
        self.recipient_id = self.recipients.load()
        if self.recipient_id:
            logger.info(f"Loaded saved chat ID: {self.recipient_id}")
        else:
            logger.info("No saved chat ID found. Waiting for incoming message...")
        return self

    def set_recipient(self, recipient_id: str) -> bool:
        """Record the active recipient. Returns True if it changed."""
        if recipient_id == self.recipient_id:
            return False
        self.recipient_id = recipient_id
        self.recipients.save(recipient_id)
        return True
