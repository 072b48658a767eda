"""Configuration loading, validation and the runtime settings object."""

from .loader import ConfigEnvironment, load
from .models import Settings
from .validate import CriticalValidation, validate_critical

__all__ = ["ConfigEnvironment", "load", "Settings", "CriticalValidation", "validate_critical"]
