"""Entry point for running Stackguard as a module.

This allows the CLI to be invoked with ``python -m stackguard``.
"""

from .cli import cli

if __name__ == "__main__":  # pragma: no cover
    cli()
