"""Configuration validation: compose definition, environment and secrets."""

from __future__ import annotations

from ..checks.engine import CheckGroup
from ..checks.models import ProbeResult
from ..config import (
    COMPOSE_FILE,
    COMPOSE_PROD_FILE,
    REQUIRED_SECRETS,
    REQUIRED_SERVICES,
    SECRET_DIR_MODE,
    SECRET_FILE_MODE,
    SECRET_MIN_LENGTH,
)
from ..settings.validate import validate_critical
from .context import ValidationContext


def compose_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("compose")
    group.add(f"{COMPOSE_FILE} present", lambda: (ctx.root / COMPOSE_FILE).is_file())
    if (ctx.root / COMPOSE_PROD_FILE).exists():
        group.add(f"{COMPOSE_PROD_FILE} present", lambda: (ctx.root / COMPOSE_PROD_FILE).is_file())
    group.add("Compose configuration syntax", ctx.compose.config_valid)

    for service in REQUIRED_SERVICES:
        def defined(service: str = service) -> ProbeResult:
            if service in ctx.compose.services():
                return ProbeResult.passed()
            return ProbeResult.failed(f"service '{service}' not found in compose configuration")

        group.add(f"Service '{service}' defined", defined)
    return group


def environment_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("environment")

    def required() -> ProbeResult:
        result = validate_critical(ctx.environment)
        if result.missing_required:
            return ProbeResult.failed("missing: " + ", ".join(result.missing_required))
        return ProbeResult.passed(f"score {result.score}")

    def recommended() -> ProbeResult:
        result = validate_critical(ctx.environment)
        if result.missing_recommended:
            return ProbeResult.failed("missing: " + ", ".join(result.missing_recommended))
        return ProbeResult.passed()

    def sanity() -> ProbeResult:
        result = validate_critical(ctx.environment)
        if result.warnings:
            return ProbeResult.failed("; ".join(result.warnings))
        return ProbeResult.passed()

    group.add("Required variables", required)
    group.add("Recommended variables", recommended, critical=False)
    group.add("Variable sanity", sanity, critical=False)
    if ctx.env is not None:
        issues = list(ctx.env.issues)

        def parsed() -> ProbeResult:
            if issues:
                return ProbeResult.failed(f"{len(issues)} rejected line(s): " + "; ".join(issues))
            return ProbeResult.passed(f"{ctx.env.loaded} values loaded")

        group.add("Environment file", parsed, critical=False)
    return group


def _mode_probe(read_mode, expected: int, label: str):
    def probe() -> ProbeResult:
        mode = read_mode()
        if mode is None:
            return ProbeResult.failed(f"{label} missing")
        if mode != expected:
            return ProbeResult.failed(f"{label} has permissions {mode:o} (should be {expected:o})")
        return ProbeResult.passed()

    return probe


def secrets_group(ctx: ValidationContext, comprehensive: bool | None = None) -> CheckGroup:
    """Secret presence, and in comprehensive mode permissions and strength.

    Missing secrets are failures; permission and strength problems are
    warnings only.
    """
    store = ctx.store
    comprehensive = ctx.comprehensive if comprehensive is None else comprehensive
    group = CheckGroup("secrets")
    group.add("Secrets directory", lambda: store.directory.is_dir())
    for name in REQUIRED_SECRETS:
        group.add(f"Secret '{name}' present", lambda name=name: store.exists(name))
        if not comprehensive:
            continue
        group.add(
            f"Secret '{name}' permissions",
            _mode_probe(lambda name=name: store.file_mode(name), SECRET_FILE_MODE, name),
            critical=False,
        )

        def strength(name: str = name) -> ProbeResult:
            value = store.read_optional(name)
            if value is None:
                return ProbeResult.failed(f"{name} missing")
            if len(value) < SECRET_MIN_LENGTH:
                return ProbeResult.failed(f"{name} is shorter than {SECRET_MIN_LENGTH} characters")
            return ProbeResult.passed()

        group.add(f"Secret '{name}' strength", strength, critical=False)
    if comprehensive:
        group.add(
            "Secrets directory permissions",
            _mode_probe(store.dir_mode, SECRET_DIR_MODE, "secrets directory"),
            critical=False,
        )
    return group


__all__ = ["compose_group", "environment_group", "secrets_group"]
