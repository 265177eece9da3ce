"""Relay chat turns between Telegram and a conversational CLI running in tmux."""

__version__ = "0.1.0"
