"""tmux operations for driving the conversational CLI pane."""

import asyncio
import logging
import math
import os
import subprocess
import time
import uuid
from typing import Optional

from .errors import TmuxCommandError
from .models import TargetHandle

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "gemini-cli"
CURSOR_MARKER = "__CURSOR__"


class TmuxController:
    """Types into, and reads back from, a single tmux pane."""

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}

        tmux_config = self.config.get("tmux", {})
        self.session_name = (
            os.environ.get("TMUX_BRIDGE_SESSION_NAME")
            or tmux_config.get("session_name", DEFAULT_SESSION_NAME)
        )

        # Settle delays between injection steps. Tuned against one target program,
        # so they stay configurable rather than fixed.
        self.cancel_settle_seconds = tmux_config.get("cancel_settle_seconds", 0.1)
        self.clear_settle_seconds = tmux_config.get("clear_settle_seconds", 0.1)
        self.payload_settle_seconds = tmux_config.get("payload_settle_seconds", 0.5)
        self.submit_settle_seconds = tmux_config.get("submit_settle_seconds", 0.2)
        self.keystroke_delay = tmux_config.get("keystroke_delay", 0.01)
        self.paste_threshold = tmux_config.get("paste_threshold", 200)
        self.submit_count = tmux_config.get("submit_count", 2)
        self.command_timeout_seconds = tmux_config.get("command_timeout_seconds", 5)

    def _run_tmux_sync(self, *args: str) -> str:
        """Run a tmux command synchronously (startup queries only)."""
        cmd = ["tmux"] + list(args)
        logger.debug(f"Running tmux command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.command_timeout_seconds,
            )
        except subprocess.CalledProcessError as e:
            raise TmuxCommandError(list(args), (e.stderr or "").strip() or f"exit {e.returncode}")
        except subprocess.TimeoutExpired:
            raise TmuxCommandError(list(args), "timed out")
        except FileNotFoundError:
            raise TmuxCommandError(list(args), "tmux not installed")
        return result.stdout

    async def _run_tmux(self, *args: str, input_text: Optional[str] = None) -> str:
        """
        Run a tmux command without blocking the event loop.

        Args:
            args: tmux arguments
            input_text: Optional data written to the command's stdin

        Returns:
            Decoded stdout

        Raises:
            TmuxCommandError: Non-zero exit, timeout, or tmux missing
        """
        logger.debug(f"Running tmux command: tmux {' '.join(args[:3])}")
        try:
            proc = await asyncio.create_subprocess_exec(
                "tmux", *args,
                stdin=asyncio.subprocess.PIPE if input_text is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise TmuxCommandError(list(args), "tmux not installed")

        data = input_text.encode() if input_text is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(data), timeout=self.command_timeout_seconds
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            raise TmuxCommandError(list(args), "timed out")

        if proc.returncode != 0:
            raise TmuxCommandError(list(args), stderr.decode(errors="replace").strip())
        return stdout.decode(errors="replace")

    def is_inside_session(self) -> bool:
        """True when running under tmux in the configured session."""
        if not os.environ.get("TMUX"):
            return False
        try:
            current = self._run_tmux_sync("display-message", "-p", "#S").strip()
        except TmuxCommandError as e:
            logger.debug(f"Could not query tmux session name: {e}")
            return False
        return current == self.session_name

    def resolve_target(self) -> Optional[TargetHandle]:
        """
        Find the pane hosting this session.

        Returns:
            TargetHandle, or None when not running inside the expected tmux
            session (the bridge is then simply unavailable).
        """
        if not self.is_inside_session():
            return None
        try:
            pane_id = self._run_tmux_sync("display-message", "-p", "#{pane_id}").strip()
        except TmuxCommandError as e:
            logger.warning(f"Could not resolve tmux pane: {e}")
            return None
        return TargetHandle(pane_id) if pane_id else None

    async def _sample(self, handle: TargetHandle) -> str:
        text = await self._run_tmux("capture-pane", "-p", "-t", handle.pane_id)
        cursor = await self._run_tmux(
            "display-message", "-p", "-t", handle.pane_id, "#{cursor_x},#{cursor_y}"
        )
        return f"{text}\n{CURSOR_MARKER}:{cursor.strip()}"

    async def wait_for_quiescence(
        self,
        handle: TargetHandle,
        stable_window: float = 2.0,
        poll_interval: float = 0.5,
        timeout: float = 30.0,
    ) -> bool:
        """
        Wait until the pane text and cursor stop changing.

        The pane counts as quiescent once the text+cursor signature has been
        identical across ceil(stable_window / poll_interval) consecutive polls.
        Failed samples are skipped.

        Returns:
            True once quiescent, False when the timeout elapses first
        """
        required = math.ceil(stable_window / poll_interval)
        last = None
        stable_checks = 0
        start = time.monotonic()

        while time.monotonic() - start < timeout:
            await asyncio.sleep(poll_interval)

            try:
                current = await self._sample(handle)
            except TmuxCommandError as e:
                logger.debug(f"Quiescence sample failed for {handle}: {e}")
                continue

            if current == last:
                stable_checks += 1
            else:
                stable_checks = 0
                last = current

            if stable_checks >= required:
                return True

        logger.info(f"Pane {handle} did not settle within {timeout}s")
        return False

    async def send_key(self, handle: TargetHandle, key: str):
        """Send a named key (Escape, C-u, Enter)."""
        await self._run_tmux("send-keys", "-t", handle.pane_id, key)

    async def _type_text(self, handle: TargetHandle, text: str):
        for char in text:
            await self._run_tmux("send-keys", "-t", handle.pane_id, "-l", char)
            await asyncio.sleep(self.keystroke_delay)

    async def _paste_text(self, handle: TargetHandle, text: str):
        buffer_name = f"tmux-bridge-{uuid.uuid4().hex[:8]}"
        await self._run_tmux("load-buffer", "-b", buffer_name, "-", input_text=text)
        # -p bracketed paste, -r keeps LF (tmux would otherwise send CR, i.e. Enter),
        # -d drops the buffer once pasted
        await self._run_tmux(
            "paste-buffer", "-p", "-r", "-d", "-b", buffer_name, "-t", handle.pane_id
        )

    async def inject(self, handle: TargetHandle, text: str):
        """
        Type text into the pane and submit it.

        Order: Escape, Ctrl-U, payload, then submit_count Enters, with a settle
        delay after every step. Payloads shorter than paste_threshold are typed
        key by key; longer ones go through a paste buffer.

        Raises:
            TmuxCommandError: Any step failed. Nothing is retried.
        """
        await self.send_key(handle, "Escape")
        await asyncio.sleep(self.cancel_settle_seconds)

        await self.send_key(handle, "C-u")
        await asyncio.sleep(self.clear_settle_seconds)

        if len(text) < self.paste_threshold:
            await self._type_text(handle, text)
        else:
            await self._paste_text(handle, text)
        await asyncio.sleep(self.payload_settle_seconds)

        # Some CLIs need one Enter to leave a multi-line composer and another to send.
        for _ in range(self.submit_count):
            await self.send_key(handle, "Enter")
            await asyncio.sleep(self.submit_settle_seconds)

        logger.info(f"Injected {len(text)} chars into {handle}: {text[:50]}...")

    async def capture(self, handle: TargetHandle, scrollback_lines: Optional[int] = None) -> str:
        """
        Capture the pane's visible text.

        Args:
            handle: Target pane
            scrollback_lines: Extend the capture this many rows into history

        Returns:
            Captured text
        """
        args = ["capture-pane", "-p", "-t", handle.pane_id]
        if scrollback_lines:
            args += ["-S", f"-{scrollback_lines}"]
        return await self._run_tmux(*args)
