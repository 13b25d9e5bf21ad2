"""Agent service: queued shell-command execution with Hub callbacks."""

__version__ = "1.0.0"
