"""Console output and JSON status documents.

Every entry point prints one line per check as it completes, then a
summary block, and writes one JSON document with the same schema
(``Report.model_dump`` plus a timestamp and per-service flags).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import click

from .checks.models import CheckResult, Report
from .errors import StackguardError


def format_result(result: CheckResult) -> str:
    line = f"  [{result.outcome.value}] {result.name} ({result.duration:.2f}s)"
    if result.detail and result.outcome.value != "PASS":
        line += f" - {result.detail}"
    return line


class ConsolePrinter:
    """Streaming per-check lines plus a final summary block."""

    def __init__(self, echo=click.echo) -> None:
        self.echo = echo

    def on_group(self, name: str) -> None:
        self.echo(f"\n{name}:")

    def on_result(self, group: str, result: CheckResult) -> None:
        self.echo(format_result(result))

    def summary(self, report: Report, title: str = "Summary") -> None:
        label = "Security score" if report.kind == "security" else "Score"
        self.echo("")
        self.echo(f"=== {title} ===")
        self.echo(f"Passed:   {report.passed}")
        self.echo(f"Failed:   {report.failed}")
        self.echo(f"Warnings: {report.warned}")
        self.echo(f"{label}: {report.score}%")
        self.echo(f"Overall status: {report.verdict.value}")

    def readings(self, values: Mapping[str, Any]) -> None:
        self.echo("")
        for key, value in values.items():
            self.echo(f"{key}: {value}")


def status_document(
    report: Report,
    services: Optional[Mapping[str, bool]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Render a report as the JSON status document consumed by monitoring."""
    doc = report.model_dump(mode="json")
    doc["timestamp"] = report.generated_at.isoformat()
    doc["services"] = dict(services or {})
    if extra:
        doc.update(extra)
    return doc


def write_json(doc: Mapping[str, Any], path: Path) -> Path:
    """Write ``doc`` to ``path`` as indented JSON.

    Raises:
        StackguardError: If the document cannot be written.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, sort_keys=True, default=str)
    except OSError as exc:
        raise StackguardError(f"Cannot write {path}: {exc.strerror}") from exc
    return path


__all__ = ["ConsolePrinter", "format_result", "status_document", "write_json"]
