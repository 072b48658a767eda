"""Live health checks for the running stack."""

from .runner import HealthRunner

__all__ = ["HealthRunner"]
