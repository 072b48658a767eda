"""Category-grouped execution of checks and component selection.

Groups run in order and every check runs regardless of earlier
failures.  A :class:`CheckRegistry` maps category names to group
builders so that a CLI can run one named component; an unregistered
name raises :class:`~stackguard.errors.UnknownComponent`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Literal, Optional

from ..errors import UnknownComponent
from .harness import run_check
from .models import Check, CheckResult, GroupResult, Report

ResultListener = Callable[[str, CheckResult], None]
GroupListener = Callable[[str], None]
GroupBuilder = Callable[[], "CheckGroup"]

ALL = "all"


@dataclass
class CheckGroup:
    """An ordered list of checks under one category name."""

    name: str
    checks: List[Check] = field(default_factory=list)

    def add(self, name: str, probe, *, critical: bool = True, timeout: Optional[float] = None) -> Check:
        check = Check(name=name, probe=probe, critical=critical)
        if timeout is not None:
            check.timeout = timeout
        self.checks.append(check)
        return check


def run_group(
    group: CheckGroup,
    on_result: Optional[ResultListener] = None,
) -> GroupResult:
    result = GroupResult(name=group.name)
    for check in group.checks:
        check_result = run_check(check, category=group.name)
        result.results.append(check_result)
        if on_result is not None:
            on_result(group.name, check_result)
    return result


def run_all(
    groups: Iterable[CheckGroup],
    kind: Literal["health", "security"] = "health",
    on_result: Optional[ResultListener] = None,
    on_group: Optional[GroupListener] = None,
) -> Report:
    """Run every group in order and aggregate the results.

    Args:
        groups: Ordered check groups.
        kind: ``health`` for HEALTHY/UNHEALTHY verdicts, ``security``
            for SECURE/INSECURE.
        on_result: Called after each check with ``(group, result)`` for
            streaming output.
        on_group: Called before each group starts.
    """
    report = Report(kind=kind)
    for group in groups:
        if on_group is not None:
            on_group(group.name)
        report.groups.append(run_group(group, on_result))
    return report


class CheckRegistry:
    """Ordered mapping of category name to a group builder.

    Builders are called lazily so that selecting one component does not
    construct (or probe) any other.
    """

    def __init__(self, kind: Literal["health", "security"] = "health") -> None:
        self.kind = kind
        self._builders: Dict[str, GroupBuilder] = {}

    def register(self, name: str, builder: GroupBuilder) -> None:
        self._builders[name] = builder

    def names(self) -> List[str]:
        return list(self._builders)

    def __contains__(self, name: object) -> bool:
        return name in self._builders

    def build(self, name: str) -> CheckGroup:
        try:
            builder = self._builders[name]
        except KeyError:
            raise UnknownComponent(name, self.names()) from None
        return builder()

    def groups(self, selection: str = ALL) -> List[CheckGroup]:
        if selection in (None, "", ALL):
            return [builder() for builder in self._builders.values()]
        return [self.build(selection)]

    def run(
        self,
        selection: str = ALL,
        on_result: Optional[ResultListener] = None,
        on_group: Optional[GroupListener] = None,
    ) -> Report:
        return run_all(self.groups(selection), self.kind, on_result, on_group)


__all__ = [
    "ALL",
    "CheckGroup",
    "CheckRegistry",
    "run_group",
    "run_all",
]
