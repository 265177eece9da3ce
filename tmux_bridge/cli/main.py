"""Main entry point for the tmux-bridge CLI."""

import argparse
import sys

from .client import BridgeClient
from . import commands
from ..main import load_config, resolve_config_path


def main():
    """Main entry point for tmux-bridge CLI."""
    parser = argparse.ArgumentParser(
        prog="tmux-bridge",
        description="Relay Telegram messages to a conversational CLI running in tmux",
    )
    parser.add_argument("--config", help="Path to config.yaml (default: $TMUX_BRIDGE_CONFIG or ./config.yaml)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # tmux-bridge start [--token TOKEN]
    start_parser = subparsers.add_parser("start", help="Start the bridge for the current tmux pane")
    start_parser.add_argument("--token", help="Telegram bot token (saved for later runs)")

    # tmux-bridge configure --token TOKEN
    configure_parser = subparsers.add_parser("configure", help="Save a new token and restart the bridge")
    configure_parser.add_argument("--token", required=True, help="Telegram bot token")

    # tmux-bridge status
    status_parser = subparsers.add_parser("status", help="Show configured / running / connected")
    status_parser.add_argument("--json", action="store_true", help="Output JSON")

    # tmux-bridge notify "<message>"
    notify_parser = subparsers.add_parser("notify", help="Send a notification to the connected chat")
    notify_parser.add_argument("message", help="Notification text")

    # tmux-bridge stop
    subparsers.add_parser("stop", help="Stop the running bridge")

    args = parser.parse_args()
    config_path = resolve_config_path(args.config)
    config = load_config(str(config_path))

    if args.command == "start":
        sys.exit(commands.cmd_start(config, args.token, config_path))
    elif args.command == "configure":
        sys.exit(commands.cmd_configure(config, args.token, config_path))
    elif args.command == "status":
        server = config.get("server", {})
        api_url = f"http://{server.get('host', '127.0.0.1')}:{server['port']}" if "port" in server else None
        sys.exit(commands.cmd_status(BridgeClient(api_url), config, args.json))
    elif args.command == "notify":
        sys.exit(commands.cmd_notify(config, args.message))
    elif args.command == "stop":
        sys.exit(commands.cmd_stop(config))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
