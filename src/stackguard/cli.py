"""Command-line interface for Stackguard.

This module uses :mod:`click` to expose the operational commands for a
self-hosted n8n stack: pre-deployment validation, live health checks,
the security audit, configuration checks, secret generation and
backups.

The group callback builds the effective environment once (process
environment overlaid with the ``.env`` file), turns it into
:class:`Settings` and configures logging.  Every command receives that
state through the click context.  Collaborators are created through the
small ``_make_*`` factories so tests can monkeypatch them.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import click

from .backup.encryption import restore_artifact
from .backup.manifest import verify_bundle
from .backup.pipeline import BackupPipeline, age_identity
from .checks.engine import ALL
from .config import VERSION
from .errors import StackguardError
from .health.runner import HealthRunner
from .logging_setup import configure_logging
from .reporting import ConsolePrinter, status_document, write_json
from .secretstore.generate import generate_secrets
from .secretstore.store import SecretStore
from .settings.loader import ConfigEnvironment, load
from .settings.models import Settings
from .settings.validate import validate_critical
from .validation.context import ValidationContext
from .validation.suite import (
    HEALTH_COMPONENT,
    run_security_audit,
    run_validation,
    validation_document,
)

logger = logging.getLogger(__name__)

VALIDATION_REPORT = "validation-report.json"
HEALTH_REPORT = "health-status.json"
SECURITY_REPORT = "security-report.json"


@dataclass
class CliState:
    settings: Settings
    env: ConfigEnvironment
    strict: bool = False


def _fail(exc: StackguardError) -> None:
    click.echo(f"error: {exc}", err=True)
    logger.error("%s", exc, extra={"event": "fatal", "error": exc.__class__.__name__})
    click.get_current_context().exit(1)


def handle_errors(fn):
    """Turn an escaping :class:`StackguardError` into ``error: ...`` and exit 1."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except StackguardError as exc:
            _fail(exc)

    return wrapper


def build_state(project_root: Optional[Path], env_file: Optional[Path], strict: bool) -> CliState:
    """Load ``.env`` over the process environment and build settings."""
    process_env = dict(os.environ)
    base = Settings.from_environment(process_env, project_root)
    source = env_file or base.project_root / ".env"
    env = load(source, strict=strict, store=SecretStore(base.secrets_dir))
    merged = {**process_env, **env.values}
    settings = Settings.from_environment(merged, base.project_root)
    return CliState(settings=settings, env=env, strict=strict)


def _make_validation_context(state: CliState) -> ValidationContext:
    return ValidationContext.create(state.settings, env=state.env)


def _make_health_runner(state: CliState) -> HealthRunner:
    return HealthRunner(state.settings)


def _make_backup_pipeline(state: CliState) -> BackupPipeline:
    return BackupPipeline(state.settings)


def _state() -> CliState:
    return click.get_current_context().find_object(CliState)


@click.group()
@click.version_option(VERSION, prog_name="stackguard")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Root of the deployment (defaults to STACKGUARD_PROJECT_ROOT or the current directory)",
)
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Environment file to load (default: <project root>/.env)",
)
@click.option("--strict", is_flag=True, default=False, help="Treat any configuration defect as fatal")
@click.pass_context
@handle_errors
def cli(ctx: click.Context, project_root: Optional[Path], env_file: Optional[Path], strict: bool) -> None:
    """Stackguard: validation, health checks and backups for a self-hosted n8n stack."""
    state = build_state(project_root, env_file, strict)
    configure_logging(state.settings.log_file, state.settings.log_level)
    ctx.obj = state


def _run_health(state: CliState, component: str, out: Optional[Path]) -> None:
    runner = _make_health_runner(state)
    printer = ConsolePrinter()
    click.echo(f"Health check ({component})")
    report = runner.run(component, printer.on_result, printer.on_group)
    printer.summary(report, "Health summary")
    readings = runner.readings()
    printer.readings(readings)
    path = write_json(runner.snapshot(report, readings), out or state.settings.project_root / HEALTH_REPORT)
    click.echo(f"\nStatus written to {path}")
    click.get_current_context().exit(report.exit_code)


@cli.command()
@click.argument("component", required=False, default=ALL)
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Report path")
@handle_errors
def validate(component: str, out: Optional[Path]) -> None:
    """Validate the deployment before starting the stack.

    COMPONENT is ``all`` (default), one validation category, or
    ``health`` to run the live health checks instead.
    """
    state = _state()
    if component == HEALTH_COMPONENT:
        _run_health(state, ALL, out)
        return
    vctx = _make_validation_context(state)
    printer = ConsolePrinter()
    click.echo(f"Validating deployment ({component})")
    report = run_validation(vctx, component, printer.on_result, printer.on_group)
    printer.summary(report, "Validation summary")
    if component == ALL or out is not None:
        path = write_json(
            validation_document(report, vctx),
            out or state.settings.project_root / VALIDATION_REPORT,
        )
        click.echo(f"\nReport written to {path}")
    click.get_current_context().exit(report.exit_code)


@cli.command()
@click.argument("component", required=False, default=ALL)
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Status path")
@handle_errors
def health(component: str, out: Optional[Path]) -> None:
    """Check the health of the running stack.

    COMPONENT is ``all`` (default) or one health category.
    """
    _run_health(_state(), component, out)


@cli.command(name="security-audit")
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Report path")
@handle_errors
def security_audit(out: Optional[Path]) -> None:
    """Audit the security posture of the deployment."""
    state = _state()
    vctx = _make_validation_context(state)
    printer = ConsolePrinter()
    click.echo("Security audit")
    report = run_security_audit(vctx, ALL, printer.on_result, printer.on_group)
    printer.summary(report, "Security summary")
    path = write_json(status_document(report), out or state.settings.project_root / SECURITY_REPORT)
    click.echo(f"\nReport written to {path}")
    click.get_current_context().exit(report.exit_code)


@cli.command(name="config-check")
@click.option("--strict", "strict_opt", is_flag=True, default=False, help="Exit 1 on any defect")
@handle_errors
def config_check(strict_opt: bool) -> None:
    """Load the environment file and validate critical variables."""
    state = _state()
    strict = strict_opt or state.strict
    result = validate_critical(state.settings.environment, strict=strict)
    env = state.env
    click.echo(f"Environment file: {env.source}")
    click.echo(f"Loaded: {env.loaded}")
    click.echo(f"Errors: {env.errors}")
    for issue in env.issues:
        click.echo(f"  - {issue}")
    for name in result.missing_required:
        click.echo(f"Missing required variable: {name}")
    for name in result.missing_recommended:
        click.echo(f"Missing recommended variable: {name}")
    for warning in result.warnings:
        click.echo(f"Warning: {warning}")
    click.echo(f"Score: {result.score}/100")
    defective = bool(env.errors or result.missing_required)
    if strict and defective:
        click.get_current_context().exit(1)


@cli.group()
def backup() -> None:
    """Create and verify backup bundles."""


@backup.command(name="run")
@handle_errors
def backup_run() -> None:
    """Produce one backup bundle."""
    state = _state()
    result = _make_backup_pipeline(state).run()
    metadata = result.metadata
    click.echo("Backup completed")
    click.echo(f"  Location:   {result.path}")
    click.echo(f"  Size:       {metadata.size}")
    click.echo(f"  Files:      {metadata.file_count}")
    click.echo(f"  Encryption: {result.mode.value}")
    click.echo(f"  Sidecar:    {'yes' if state.settings.use_sidecar else 'no'}")
    for name, done in result.services.items():
        click.echo(f"  {name}: {'ok' if done else 'skipped'}")
    if result.removed:
        click.echo(f"  Removed {len(result.removed)} expired bundle(s)")


def _bundle_path(state: CliState, bundle: str) -> Path:
    path = Path(bundle)
    if not path.is_dir() and (state.settings.backup_root / bundle).is_dir():
        path = state.settings.backup_root / bundle
    return path


@backup.command(name="verify")
@click.argument("bundle")
@handle_errors
def backup_verify(bundle: str) -> None:
    """Re-hash every file of BUNDLE (a path or a bundle name)."""
    path = _bundle_path(_state(), bundle)
    names = verify_bundle(path)
    click.echo(f"Verified {len(names)} files in {path}")


@backup.command(name="restore")
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--identity", type=click.Path(dir_okay=False, path_type=Path), default=None, help="age identity file")
@click.option("--dest", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Output path")
@handle_errors
def backup_restore(artifact: Path, identity: Optional[Path], dest: Optional[Path]) -> None:
    """Decrypt or decompress one ARTIFACT from a bundle."""
    state = _state()
    restored = restore_artifact(artifact, identity or age_identity(state.settings), dest)
    click.echo(f"Restored {restored}")


@cli.group()
def secrets() -> None:
    """Manage the secrets directory."""


@secrets.command(name="generate")
@click.option("--force", is_flag=True, default=False, help="Regenerate existing secrets")
@handle_errors
def secrets_generate(force: bool) -> None:
    """Generate missing secrets with safe permissions."""
    state = _state()
    result = generate_secrets(state.settings.secrets_dir, force=force)
    click.echo(f"Secrets directory: {state.settings.secrets_dir}")
    for name in result.written:
        click.echo(f"  generated {name}")
    for name in result.kept:
        click.echo(f"  kept {name}")
    if result.age_files:
        click.echo(f"  age keys: {', '.join(result.age_files)}")
    elif not result.age_available:
        click.echo("  age-keygen not found; backup encryption keys not generated")


__all__ = ["cli", "build_state", "CliState"]
