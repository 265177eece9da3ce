"""Unit tests for persisted bridge state."""

import os
import stat
from pathlib import Path

from tmux_bridge.lock_manager import is_process_alive
from tmux_bridge.models import TargetHandle
from tmux_bridge.state import (
    BridgeContext,
    BridgePaths,
    PidFile,
    RecipientStore,
    TokenStore,
    default_state_dir,
)


def test_paths_default_to_temp_state_dir(monkeypatch):
    monkeypatch.delenv("TMUX_BRIDGE_STATE_DIR", raising=False)
    paths = BridgePaths.from_config({})

    assert paths.state_dir == default_state_dir()
    assert paths.recipient_file.name == "chat_id.txt"
    assert paths.pid_file.name == "bridge.pid"
    assert paths.outbox_dir.name == "outbox"
    assert paths.token_file == Path("~/.config/tmux-bridge/bot_token").expanduser()


def test_paths_from_config(monkeypatch, tmp_path):
    monkeypatch.delenv("TMUX_BRIDGE_STATE_DIR", raising=False)
    paths = BridgePaths.from_config({
        "paths": {"state_dir": str(tmp_path / "s"), "token_file": str(tmp_path / "tok")},
    })
    assert paths.state_dir == tmp_path / "s"
    assert paths.token_file == tmp_path / "tok"
    assert paths.log_file == tmp_path / "s" / "bridge.log"


def test_state_dir_env_overrides_config(monkeypatch, tmp_path):
    monkeypatch.setenv("TMUX_BRIDGE_STATE_DIR", str(tmp_path / "env"))
    paths = BridgePaths.from_config({"paths": {"state_dir": str(tmp_path / "cfg")}})
    assert paths.state_dir == tmp_path / "env"


# ============================================================================
# RecipientStore
# ============================================================================


def test_recipient_round_trip(tmp_path):
    store = RecipientStore(tmp_path / "state" / "chat_id.txt")
    assert store.load() is None

    assert store.save("123456") is True
    assert store.load() == "123456"
    assert not list((tmp_path / "state").glob("*.tmp"))


def test_recipient_blank_file_is_none(tmp_path):
    path = tmp_path / "chat_id.txt"
    path.write_text("  \n")
    assert RecipientStore(path).load() is None


def test_recipient_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    assert RecipientStore(blocker / "chat_id.txt").save("1") is False


# ============================================================================
# PidFile
# ============================================================================


def test_pid_file_write_and_running(tmp_path):
    pid_file = PidFile(tmp_path / "bridge.pid")
    assert pid_file.running_pid() is None

    pid_file.write()
    assert pid_file.read() == os.getpid()
    assert pid_file.running_pid() == os.getpid()

    pid_file.remove()
    pid_file.remove()
    assert pid_file.read() is None


def test_pid_file_stale_marker(tmp_path):
    pid_file = PidFile(tmp_path / "bridge.pid")
    # PID far above any default pid_max
    stale = 2 ** 22 + 12345
    assert not is_process_alive(stale)
    pid_file.write(stale)

    assert pid_file.read() == stale
    assert pid_file.running_pid() is None


# ============================================================================
# TokenStore
# ============================================================================


def test_token_saved_owner_only(tmp_path):
    path = tmp_path / "config" / "bot_token"
    store = TokenStore(path)

    assert store.save("123:ABC") is True
    assert store.load() == "123:ABC"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_token_missing(tmp_path):
    assert TokenStore(tmp_path / "nope").load() is None


# ============================================================================
# BridgeContext
# ============================================================================


def test_context_loads_saved_recipient(tmp_path):
    store = RecipientStore(tmp_path / "chat_id.txt")
    store.save("99")

    context = BridgeContext(target=TargetHandle("%1"), recipients=store).load()

    assert context.recipient_id == "99"


def test_set_recipient_persists_only_on_change(tmp_path):
    store = RecipientStore(tmp_path / "chat_id.txt")
    context = BridgeContext(target=TargetHandle("%1"), recipients=store).load()

    assert context.set_recipient("1") is True
    assert context.set_recipient("1") is False
    assert context.set_recipient("2") is True
    assert store.load() == "2"
