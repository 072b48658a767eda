"""Check harness, aggregation engine and shared result models."""

from .engine import ALL, CheckGroup, CheckRegistry, run_all, run_group
from .harness import RetryPolicy, run_check
from .models import Check, CheckResult, GroupResult, Outcome, ProbeResult, Report, Verdict
from .versions import version_at_least, version_to_int

__all__ = [
    "ALL",
    "Check",
    "CheckGroup",
    "CheckRegistry",
    "CheckResult",
    "GroupResult",
    "Outcome",
    "ProbeResult",
    "Report",
    "RetryPolicy",
    "Verdict",
    "run_all",
    "run_check",
    "run_group",
    "version_at_least",
    "version_to_int",
]
