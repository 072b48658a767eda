"""Exception taxonomy for Stackguard.

Check-level code reports problems through results rather than
exceptions.  The classes below are reserved for conditions that make
a whole command meaningless (strict-mode configuration defects, a
missing container runtime, an unusable backup destination) or that
indicate a definitely broken state such as a checksum mismatch.
"""

from __future__ import annotations

from typing import Iterable


class StackguardError(Exception):
    """Base class for all errors raised by Stackguard."""


class ConfigError(StackguardError):
    """Malformed or missing configuration.

    Recoverable in non-strict mode by skipping the offending entry,
    fatal in strict mode.
    """


class DependencyError(StackguardError):
    """A required external tool or service is absent."""


class ProbeTimeout(StackguardError):
    """A probe did not finish within its deadline.

    The harness folds this into an ordinary probe failure; it exists
    so probes and helpers can signal the condition explicitly.
    """


class ArtifactError(StackguardError):
    """A backup artifact could not be produced or is empty."""


class IntegrityError(StackguardError):
    """Certificate/key mismatch or checksum mismatch.  Never downgraded."""


class UnknownComponent(ConfigError):
    """A component or category name that is not registered."""

    def __init__(self, name: str, valid: Iterable[str]) -> None:
        self.name = name
        self.valid = sorted(valid)
        super().__init__(
            f"Unknown component '{name}'. Valid components: {', '.join(self.valid)}"
        )


__all__ = [
    "StackguardError",
    "ConfigError",
    "DependencyError",
    "ProbeTimeout",
    "ArtifactError",
    "IntegrityError",
    "UnknownComponent",
]
