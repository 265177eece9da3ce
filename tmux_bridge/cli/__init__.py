"""tmux-bridge command line interface."""
