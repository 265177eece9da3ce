"""Data models for the tmux chat bridge."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class TurnState(Enum):
    """Lifecycle of a single chat turn."""
    RECEIVED = "received"
    LOCK_WAIT = "lock_wait"
    STABILIZING_PRE = "stabilizing_pre"
    INJECTING = "injecting"
    STABILIZING_POST = "stabilizing_post"
    EXTRACTING = "extracting"
    DELIVERED = "delivered"
    FAILED = "failed"


class TurnStatus(Enum):
    """Outcome of a turn or notification."""
    REPLIED = "replied"            # Reply extracted and ready to deliver
    NO_OUTPUT = "no_output"        # Turn ran but produced nothing after the echo key
    BUSY = "busy"                  # Lock not acquired within the retry budget
    ERROR = "error"                # tmux transport failure or unexpected exception
    INJECTED = "injected"          # Notification handled (no reply expected)
    NO_RECIPIENT = "no_recipient"  # Notification could not be forwarded, no chat known


@dataclass(frozen=True)
class TargetHandle:
    """Opaque handle to the tmux pane hosting the conversational CLI."""
    pane_id: str

    def __str__(self) -> str:
        return self.pane_id


@dataclass
class Turn:
    """One request/response exchange with the target pane."""
    text: str
    echo_key: str
    recipient_id: Optional[str] = None
    message_id: Optional[int] = None
    state: TurnState = TurnState.RECEIVED
    captured: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    def advance(self, state: TurnState):
        self.state = state


@dataclass
class Extraction:
    """Result of locating a reply inside captured pane text."""
    text: str
    located: bool  # False when the echo key was not found and the fallback was used


@dataclass
class TurnResult:
    """What the orchestrator hands back to the transport."""
    status: TurnStatus
    reply: str
    located: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (TurnStatus.REPLIED, TurnStatus.NO_OUTPUT, TurnStatus.INJECTED)


@dataclass
class Notification:
    """A claimed outbox entry."""
    path: Path
    message: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class BridgeStatus:
    """Snapshot of the bridge process, served by the local API."""
    pid: int
    target_pane: Optional[str]
    recipient_id: Optional[str]
    telegram_connected: bool
    lock_owner_pid: Optional[int]
    pending_notifications: int

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "target_pane": self.target_pane,
            "recipient_id": self.recipient_id,
            "telegram_connected": self.telegram_connected,
            "lock_owner_pid": self.lock_owner_pid,
            "pending_notifications": self.pending_notifications,
        }
