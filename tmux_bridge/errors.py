"""Exception types shared across the bridge."""


class TmuxBridgeError(Exception):
    """Base class for bridge errors."""


class TmuxCommandError(TmuxBridgeError):
    """A tmux command failed or timed out. Fatal for the current turn only."""

    def __init__(self, args: list[str], message: str):
        self.command = args
        super().__init__(f"tmux {' '.join(args[:2])} failed: {message}")


class NotConfiguredError(TmuxBridgeError):
    """No Telegram bot token is available."""


class NotInTmuxError(TmuxBridgeError):
    """Not running inside the expected tmux session."""


class NoRecipientError(TmuxBridgeError):
    """No chat has messaged the bot yet, so notifications have nowhere to go."""
