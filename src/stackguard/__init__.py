"""Stackguard: validation, health checks and backups for a self-hosted n8n stack."""

from .config import VERSION

__version__ = VERSION

__all__ = ["__version__"]
