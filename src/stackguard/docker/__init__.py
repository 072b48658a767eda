"""Container runtime access."""

from .compose import ComposeClient, run_command

__all__ = ["ComposeClient", "run_command"]
