"""Critical-variable validation and scoring.

Checks that required variables are present, that recommended ones are
present and sane, and turns the findings into a 0-100 score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from ..config import RECOMMENDED_ENV_VARS, REQUIRED_ENV_VARS
from ..errors import ConfigError

MISSING_CRITICAL_PENALTY = 25
MISSING_RECOMMENDED_PENALTY = 5
SANITY_WARNING_PENALTY = 10

PROTOCOL_VARS = ("N8N_PROTOCOL",)
PROTOCOL_VALUES = ("http", "https")
PORT_VARS = ("SMTP_PORT", "N8N_PORT")
TIMEZONE_VARS = ("GENERIC_TIMEZONE", "TZ")
PORT_PATTERN = re.compile(r"[0-9]+")
TIMEZONE_PATTERN = re.compile(r"^[A-Za-z0-9_+\-/]+$")


@dataclass
class CriticalValidation:
    """Outcome of :func:`validate_critical`."""

    score: int
    missing_required: List[str] = field(default_factory=list)
    missing_recommended: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing_required


def _sanity_warnings(env: Mapping[str, str]) -> List[str]:
    warnings: List[str] = []
    for name in PROTOCOL_VARS:
        value = env.get(name)
        if value and value not in PROTOCOL_VALUES:
            warnings.append(f"{name} must be one of {', '.join(PROTOCOL_VALUES)} (got {value!r})")
    for name in PORT_VARS:
        value = env.get(name)
        if not value:
            continue
        if not PORT_PATTERN.fullmatch(value) or not 1 <= int(value) <= 65535:
            warnings.append(f"{name} must be a port number between 1 and 65535 (got {value!r})")
    for name in TIMEZONE_VARS:
        value = env.get(name)
        if value and not TIMEZONE_PATTERN.match(value):
            warnings.append(f"{name} contains invalid characters (got {value!r})")
    return warnings


def validate_critical(
    env: Mapping[str, str],
    required: Optional[Sequence[str]] = None,
    recommended: Optional[Sequence[str]] = None,
    *,
    strict: bool = False,
) -> CriticalValidation:
    """Check required and recommended variables and compute a score.

    The score starts at 100 and loses 25 points per missing required
    variable, 5 per missing recommended variable and 10 per sanity
    warning, floored at 0.  Empty values count as missing.

    Raises:
        ConfigError: In strict mode when a required variable is missing.
    """
    required = REQUIRED_ENV_VARS if required is None else required
    recommended = RECOMMENDED_ENV_VARS if recommended is None else recommended
    missing_required = [name for name in required if not env.get(name)]
    if missing_required and strict:
        raise ConfigError(
            "Missing required environment variables: " + ", ".join(missing_required)
        )
    missing_recommended = [name for name in recommended if not env.get(name)]
    warnings = _sanity_warnings(env)
    score = (
        100
        - MISSING_CRITICAL_PENALTY * len(missing_required)
        - MISSING_RECOMMENDED_PENALTY * len(missing_recommended)
        - SANITY_WARNING_PENALTY * len(warnings)
    )
    return CriticalValidation(
        score=max(score, 0),
        missing_required=missing_required,
        missing_recommended=missing_recommended,
        warnings=warnings,
    )


__all__ = ["CriticalValidation", "validate_critical"]
