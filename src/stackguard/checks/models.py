"""Data models for checks, results and aggregate reports.

A :class:`Check` pairs a display name with a zero-argument probe.  The
harness turns one check into one :class:`CheckResult`; the engine
groups results by category into a :class:`Report`.  Reports are
pydantic models so that the JSON status documents written by every
command share one schema (``model_dump`` output).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field

from ..config import DEFAULT_CHECK_TIMEOUT, VERSION


class Outcome(str, Enum):
    """Classification of one executed check."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class Verdict(str, Enum):
    HEALTHY = "HEALTHY"
    HEALTHY_WITH_WARNINGS = "HEALTHY_WITH_WARNINGS"
    UNHEALTHY = "UNHEALTHY"
    SECURE = "SECURE"
    SECURE_WITH_WARNINGS = "SECURE_WITH_WARNINGS"
    INSECURE = "INSECURE"


@dataclass(frozen=True)
class ProbeResult:
    """Rich probe return value.

    Probes may simply return ``True``/``False``.  They return a
    ``ProbeResult`` when they have diagnostic text to attach.  Whether a
    failure is reported as WARN or FAIL depends only on the check's
    criticality.
    """

    ok: bool
    detail: Optional[str] = None

    @classmethod
    def passed(cls, detail: Optional[str] = None) -> "ProbeResult":
        return cls(True, detail)

    @classmethod
    def failed(cls, detail: Optional[str] = None) -> "ProbeResult":
        return cls(False, detail)


ProbeReturn = Union[bool, None, ProbeResult]
Probe = Callable[[], ProbeReturn]


@dataclass
class Check:
    """A named probe with a criticality flag and a timeout.

    Probes must only read system state.
    """

    name: str
    probe: Probe
    critical: bool = True
    timeout: float = DEFAULT_CHECK_TIMEOUT


class CheckResult(BaseModel):
    """Outcome of running one :class:`Check`."""

    name: str
    outcome: Outcome
    critical: bool = True
    duration: float = 0.0  # seconds
    detail: Optional[str] = None


class GroupResult(BaseModel):
    """Results of every check in one category, in execution order."""

    name: str
    results: List[CheckResult] = Field(default_factory=list)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> int:
        return self.count(Outcome.PASS)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return self.count(Outcome.FAIL)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def warned(self) -> int:
        return self.count(Outcome.WARN)


class Report(BaseModel):
    """Aggregate of one validation, health or security run.

    Counters, score, verdict and exit code are derived from the group
    results, so a report never disagrees with its own contents.
    """

    kind: Literal["health", "security"] = "health"
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = VERSION
    groups: List[GroupResult] = Field(default_factory=list)

    @property
    def results(self) -> List[CheckResult]:
        return [r for g in self.groups for r in g.results]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> int:
        return sum(g.passed for g in self.groups)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return sum(g.failed for g in self.groups)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def warned(self) -> int:
        return sum(g.warned for g in self.groups)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.passed + self.failed + self.warned

    @computed_field  # type: ignore[prop-decorator]
    @property
    def score(self) -> int:
        """Percentage of checks that passed (0 when nothing ran)."""
        if self.total == 0:
            return 0
        return self.passed * 100 // self.total

    @computed_field  # type: ignore[prop-decorator]
    @property
    def verdict(self) -> Verdict:
        security = self.kind == "security"
        if self.failed:
            return Verdict.INSECURE if security else Verdict.UNHEALTHY
        if self.warned:
            return Verdict.SECURE_WITH_WARNINGS if security else Verdict.HEALTHY_WITH_WARNINGS
        return Verdict.SECURE if security else Verdict.HEALTHY

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def group(self, name: str) -> Optional[GroupResult]:
        for g in self.groups:
            if g.name == name:
                return g
        return None


__all__ = [
    "Outcome",
    "Verdict",
    "ProbeResult",
    "Probe",
    "Check",
    "CheckResult",
    "GroupResult",
    "Report",
]
