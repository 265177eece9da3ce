"""Command implementations for the tmux-bridge CLI."""

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from .client import BridgeClient
from ..errors import NoRecipientError, NotConfiguredError, NotInTmuxError
from ..main import resolve_token
from ..message_queue import OutboxQueue
from ..models import TargetHandle
from ..state import BridgePaths, PidFile, RecipientStore, TokenStore
from ..tmux_controller import TmuxController

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_CONFIGURED = 2
EXIT_NOT_IN_TMUX = 3
EXIT_NO_RECIPIENT = 4
EXIT_NOT_RUNNING = 5

STOP_TIMEOUT_SECONDS = 5.0

NOT_IN_TMUX_MESSAGE = """Error: not running inside the '{session}' tmux session.
The bridge types into the tmux pane hosting the CLI, so it needs tmux.

Start the CLI inside tmux and try again:
   tmux new -s {session} gemini"""

NOT_CONFIGURED_MESSAGE = """Error: No Telegram bot token provided.

Run once with your token to save it:
   tmux-bridge start --token 123456:ABC-DEF...

After that, `tmux-bridge start` is enough."""


def _spawn_bridge(paths: BridgePaths, token: str, pane_id: str, config_path: Optional[Path] = None) -> int:
    """Launch the bridge detached from this terminal. Returns its PID."""
    paths.state_dir.mkdir(parents=True, exist_ok=True)
    env = {**os.environ, "TELEGRAM_BOT_TOKEN": token, "TARGET_PANE": pane_id}
    if config_path:
        # The child re-reads config; it must see the same file as this CLI
        env["TMUX_BRIDGE_CONFIG"] = str(config_path)
    with open(paths.log_file, "ab") as log:
        proc = subprocess.Popen(
            [sys.executable, "-m", "tmux_bridge.main"],
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            env=env,
            start_new_session=True,
        )
    return proc.pid


def _wait_for_exit(pid_file: PidFile, timeout: float = STOP_TIMEOUT_SECONDS) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pid_file.running_pid() is None:
            return True
        time.sleep(0.1)
    return False


def _require_target(tmux: TmuxController) -> TargetHandle:
    target = tmux.resolve_target()
    if not target:
        raise NotInTmuxError(NOT_IN_TMUX_MESSAGE.format(session=tmux.session_name))
    return target


def _require_token(config: dict, paths: BridgePaths, token: Optional[str]) -> str:
    """Save a token given on the command line, else fall back to the configured one."""
    if token:
        if not TokenStore(paths.token_file).save(token):
            print(f"Warning: could not save token to {paths.token_file}", file=sys.stderr)
        return token
    token = resolve_token(config, paths)
    if not token:
        raise NotConfiguredError(NOT_CONFIGURED_MESSAGE)
    return token


def _require_recipient(paths: BridgePaths) -> str:
    recipient = RecipientStore(paths.recipient_file).load()
    if not recipient:
        raise NoRecipientError(
            "Error: no recipient known yet. Send the bot a message from Telegram first."
        )
    return recipient


def cmd_start(config: dict, token: Optional[str] = None, config_path: Optional[Path] = None) -> int:
    """
    Ensure the bridge is running for the current tmux pane.

    Exit codes:
        0: Started, or already running
        2: No token given or saved
        3: Not inside the required tmux session
    """
    paths = BridgePaths.from_config(config)
    tmux = TmuxController(config=config)

    try:
        target = _require_target(tmux)
        token = _require_token(config, paths, token)
    except NotInTmuxError as e:
        print(e, file=sys.stderr)
        return EXIT_NOT_IN_TMUX
    except NotConfiguredError as e:
        print(e, file=sys.stderr)
        return EXIT_NOT_CONFIGURED

    running = PidFile(paths.pid_file).running_pid()
    if running:
        print(f"Telegram bridge already running (PID: {running})")
        return EXIT_OK

    pid = _spawn_bridge(paths, token, target.pane_id, config_path)
    print(f"Telegram bridge started! (PID: {pid})")
    print(f"Target Pane: {target}")
    print(f"Logs: {paths.log_file}")
    return EXIT_OK


def cmd_stop(config: dict) -> int:
    """
    Stop the running bridge.

    Exit codes:
        0: Stopped
        1: Did not exit in time
        5: Not running
    """
    pid_file = PidFile(BridgePaths.from_config(config).pid_file)
    pid = pid_file.running_pid()
    if not pid:
        print("Bridge is not running")
        return EXIT_NOT_RUNNING

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        return EXIT_OK

    if not _wait_for_exit(pid_file):
        print(f"Error: bridge (PID {pid}) did not stop within {STOP_TIMEOUT_SECONDS:.0f}s", file=sys.stderr)
        return EXIT_ERROR
    print(f"Bridge stopped (PID {pid})")
    return EXIT_OK


def cmd_configure(config: dict, token: str, config_path: Optional[Path] = None) -> int:
    """Save a new token and restart the bridge with it."""
    paths = BridgePaths.from_config(config)
    if not TokenStore(paths.token_file).save(token):
        print(f"Error: could not save token to {paths.token_file}", file=sys.stderr)
        return EXIT_ERROR
    print(f"Token saved to {paths.token_file}")

    if PidFile(paths.pid_file).running_pid():
        rc = cmd_stop(config)
        if rc != EXIT_OK:
            return rc
    return cmd_start(config, token, config_path)


def cmd_status(client: BridgeClient, config: dict, as_json: bool = False) -> int:
    """
    Report whether the bridge is configured, running and connected.

    Exit codes:
        0: Running
        2: No token configured
        5: Configured but not running
    """
    paths = BridgePaths.from_config(config)
    configured = resolve_token(config, paths) is not None
    pid = PidFile(paths.pid_file).running_pid()
    remote = client.get_status() if pid else None

    status = {
        "configured": configured,
        "running": pid is not None,
        "connected": bool(remote and remote.get("telegram_connected")),
        "pid": pid,
        "target_pane": remote.get("target_pane") if remote else None,
        "recipient_id": RecipientStore(paths.recipient_file).load(),
        "pending_notifications": OutboxQueue(paths.outbox_dir).count(),
    }

    if as_json:
        print(json.dumps(status, indent=2))
    else:
        print(f"Configured: {'yes' if status['configured'] else 'no'}")
        print(f"Running:    {'yes (PID ' + str(pid) + ')' if pid else 'no'}")
        print(f"Connected:  {'yes' if status['connected'] else 'no'}")
        if status["target_pane"]:
            print(f"Pane:       {status['target_pane']}")
        print(f"Recipient:  {status['recipient_id'] or 'none yet'}")
        if status["pending_notifications"]:
            print(f"Pending:    {status['pending_notifications']} notification(s)")

    if not configured:
        return EXIT_NOT_CONFIGURED
    if not pid:
        return EXIT_NOT_RUNNING
    return EXIT_OK


def cmd_notify(config: dict, message: str) -> int:
    """
    Queue a notification for the connected chat.

    Exit codes:
        0: Queued
        1: Could not write to the outbox
        4: No chat has messaged the bot yet
    """
    if not message or not message.strip():
        print("Error: notification message is empty", file=sys.stderr)
        return EXIT_ERROR

    paths = BridgePaths.from_config(config)
    try:
        _require_recipient(paths)
    except NoRecipientError as e:
        print(e, file=sys.stderr)
        return EXIT_NO_RECIPIENT

    try:
        path = OutboxQueue(paths.outbox_dir).enqueue(message)
    except OSError as e:
        print(f"Error queuing notification: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"Notification queued ({path.name})")
    if not PidFile(paths.pid_file).running_pid():
        print("Warning: bridge is not running; it will be delivered once it starts", file=sys.stderr)
    return EXIT_OK
