"""Tests for the validation categories and the security audit."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import completed

from stackguard.checks import Outcome, Verdict
from stackguard.config import REQUIRED_ENV_VARS, RECOMMENDED_ENV_VARS
from stackguard.errors import DependencyError, UnknownComponent
from stackguard.secretstore.store import SecretStore
from stackguard.settings.loader import load
from stackguard.validation.context import HostResources, ValidationContext
from stackguard.validation.suite import (
    run_security_audit,
    run_validation,
    validation_document,
)


def _outcomes(report, group: str) -> dict:
    return {r.name: r.outcome for r in report.group(group).results}


@pytest.fixture
def ctx(tmp_path: Path, make_settings, fake_compose, secrets_dir: Path) -> ValidationContext:
    env = {name: "x" for name in RECOMMENDED_ENV_VARS + REQUIRED_ENV_VARS}
    env.update(N8N_PROTOCOL="https", SMTP_PORT="587")
    settings = make_settings(**env)
    (tmp_path / "compose.yml").write_text("services: {}\n", encoding="utf-8")
    return ValidationContext(
        settings=settings,
        store=SecretStore(settings.secrets_dir),
        compose=fake_compose,
        runner=lambda args, **kw: completed(1, "", "not available"),
        which=lambda name: f"/usr/bin/{name}",
        port_in_use=lambda port: False,
        resources=lambda path: HostResources(memory_gb=8, cpu_cores=4, free_disk_gb=50),
        daemon_config=tmp_path / "daemon.json",
    )


def test_full_validation_on_a_sound_deployment(ctx: ValidationContext) -> None:
    """A sound deployment passes every validation category."""
    streamed = []
    report = run_validation(ctx, on_result=lambda g, r: streamed.append(r.name))
    assert [g.name for g in report.groups] == [
        "dependencies",
        "docker",
        "compose",
        "environment",
        "secrets",
        "network",
        "ssl",
        "security",
        "resources",
    ]
    assert report.failed == 0
    assert report.exit_code == 0
    assert len(streamed) == report.total
    # No certificate and no security profiles in the fixture tree.
    assert report.verdict == Verdict.HEALTHY_WITH_WARNINGS


def test_missing_tool_fails(ctx: ValidationContext) -> None:
    """A required tool missing from PATH fails the dependencies category."""
    ctx.which = lambda name: None if name == "curl" else f"/usr/bin/{name}"
    report = run_validation(ctx, "dependencies")
    outcomes = _outcomes(report, "dependencies")
    assert outcomes["curl installed"] == Outcome.FAIL
    assert outcomes["docker installed"] == Outcome.PASS
    assert report.verdict == Verdict.UNHEALTHY


def test_docker_absent_aborts_before_checks(ctx: ValidationContext) -> None:
    """Without docker, validation aborts before running any check."""
    ctx.which = lambda name: None
    with pytest.raises(DependencyError):
        run_validation(ctx)


def test_unknown_component(ctx: ValidationContext) -> None:
    """An unknown category raises UnknownComponent."""
    with pytest.raises(UnknownComponent) as excinfo:
        run_validation(ctx, "bogus")
    assert "health" in excinfo.value.valid
    assert "dependencies" in excinfo.value.valid


def test_docker_version_floors_are_advisory(ctx: ValidationContext, fake_compose) -> None:
    """Old docker and compose versions are warnings."""
    fake_compose.versions = {"docker": "19.3.0", "compose": "1.29.2"}
    outcomes = _outcomes(run_validation(ctx, "docker"), "docker")
    assert outcomes["Docker version"] == Outcome.WARN
    assert outcomes["Docker Compose version"] == Outcome.WARN
    assert outcomes["Docker daemon reachable"] == Outcome.PASS

    fake_compose.daemon = False
    outcomes = _outcomes(run_validation(ctx, "docker"), "docker")
    assert outcomes["Docker daemon reachable"] == Outcome.FAIL


def test_compose_definition(ctx: ValidationContext, fake_compose, tmp_path: Path) -> None:
    """The compose category checks files, syntax and required services."""
    fake_compose.service_names = ["postgres", "n8n", "nginx"]
    outcomes = _outcomes(run_validation(ctx, "compose"), "compose")
    assert outcomes["compose.yml present"] == Outcome.PASS
    assert "compose.prod.yml present" not in outcomes
    assert outcomes["Service 'redis' defined"] == Outcome.FAIL

    (tmp_path / "compose.yml").unlink()
    (tmp_path / "compose.prod.yml").write_text("", encoding="utf-8")
    outcomes = _outcomes(run_validation(ctx, "compose"), "compose")
    assert outcomes["compose.yml present"] == Outcome.FAIL
    assert outcomes["compose.prod.yml present"] == Outcome.PASS


def test_environment_category_reports_rejected_lines(ctx: ValidationContext, tmp_path: Path) -> None:
    """Rejected .env lines are reported by the environment category."""
    env_file = tmp_path / ".env"
    env_file.write_text("GOOD=1\nBAD=$(id)\n", encoding="utf-8")
    ctx.env = load(env_file, store=ctx.store)
    outcomes = _outcomes(run_validation(ctx, "environment"), "environment")
    assert outcomes["Required variables"] == Outcome.PASS
    assert outcomes["Environment file"] == Outcome.WARN


def test_missing_required_variable_fails(ctx: ValidationContext, make_settings) -> None:
    """A missing required variable fails the environment category."""
    ctx.settings = make_settings(POSTGRES_DB="")
    outcomes = _outcomes(run_validation(ctx, "environment"), "environment")
    assert outcomes["Required variables"] == Outcome.FAIL
    assert outcomes["Recommended variables"] == Outcome.WARN


def test_secrets_presence_permissions_and_strength(ctx: ValidationContext, secrets_dir: Path) -> None:
    """Missing secrets fail; bad modes and weak values only warn."""
    (secrets_dir / "smtp_password.txt").unlink()
    (secrets_dir / "grafana_password.txt").write_text("short", encoding="utf-8")
    os.chmod(secrets_dir / "redis_password.txt", 0o644)

    outcomes = _outcomes(run_validation(ctx, "secrets"), "secrets")
    assert outcomes["Secret 'smtp_password' present"] == Outcome.FAIL
    assert outcomes["Secret 'grafana_password' strength"] == Outcome.WARN
    assert outcomes["Secret 'redis_password' permissions"] == Outcome.WARN
    assert outcomes["Secret 'postgres_password' permissions"] == Outcome.PASS
    assert outcomes["Secrets directory permissions"] == Outcome.PASS

    ctx.comprehensive = False
    basic = _outcomes(run_validation(ctx, "secrets"), "secrets")
    assert "Secret 'redis_password' permissions" not in basic
    assert basic["Secret 'smtp_password' present"] == Outcome.FAIL


def test_port_conflicts(ctx: ValidationContext, fake_compose) -> None:
    """Foreign port holders warn, stack ports pass, and an undeclared network fails."""
    ctx.port_in_use = lambda port: port in (80, 5432)
    fake_compose.ports = [5432]
    outcomes = _outcomes(run_validation(ctx, "network"), "network")
    assert outcomes["Port 80 available"] == Outcome.WARN
    assert outcomes["Port 5432 available"] == Outcome.PASS
    assert outcomes["Network 'n8n-backend' declared"] == Outcome.PASS

    fake_compose.network_names = ["n8n-backend"]
    outcomes = _outcomes(run_validation(ctx, "network"), "network")
    assert outcomes["Network 'n8n-frontend' declared"] == Outcome.FAIL


def test_security_profiles(ctx: ValidationContext, tmp_path: Path) -> None:
    """Present profiles pass; an inactive AppArmor service only warns."""
    security = tmp_path / "security"
    (security / "apparmor-profiles").mkdir(parents=True)
    (security / "seccomp-profile.json").write_text("{}", encoding="utf-8")
    ctx.daemon_config.write_text('{"no-new-privileges": true}', encoding="utf-8")
    outcomes = _outcomes(run_validation(ctx, "security"), "security")
    assert outcomes["Security directory"] == Outcome.PASS
    assert outcomes["Seccomp profile"] == Outcome.PASS
    assert outcomes["AppArmor profiles directory"] == Outcome.PASS
    assert outcomes["AppArmor active"] == Outcome.WARN
    assert outcomes["Docker daemon no-new-privileges"] == Outcome.PASS


def test_resources_are_advisory(ctx: ValidationContext) -> None:
    """Low memory, CPU or disk only warn."""
    ctx.resources = lambda path: HostResources(memory_gb=2, cpu_cores=1, free_disk_gb=5)
    report = run_validation(ctx, "resources")
    assert set(_outcomes(report, "resources").values()) == {Outcome.WARN}
    assert report.exit_code == 0


def test_validation_document(ctx: ValidationContext, secrets_dir: Path) -> None:
    """The validation document carries system and configuration blocks."""
    report = run_validation(ctx, "dependencies")
    doc = validation_document(report, ctx)
    assert doc["system_info"]["docker_version"] == "24.0.7"
    assert doc["system_info"]["total_memory_gb"] == 8
    assert doc["configuration"]["secrets_count"] == len(list(secrets_dir.glob("*.txt")))
    assert doc["configuration"]["ssl_configured"] is False
    assert doc["verdict"] == "HEALTHY"
    assert "timestamp" in doc


def test_security_audit(ctx: ValidationContext, fake_compose) -> None:
    """The security audit produces a security-kind report."""
    fake_compose.inspect_values = {
        "{{.Config.User}}": "1000:1000",
        "{{.HostConfig.ReadonlyRootfs}}": "true",
        "{{range .HostConfig.SecurityOpt}}{{.}} {{end}}": "no-new-privileges:true ",
    }
    report = run_security_audit(ctx)
    assert report.kind == "security"
    containers = _outcomes(report, "containers")
    assert containers["n8n non-root user"] == Outcome.PASS
    assert containers["postgres non-root user"] == Outcome.WARN
    assert containers["redis read-only filesystem"] == Outcome.PASS
    assert _outcomes(report, "secrets")["Secret count"] == Outcome.WARN
    assert _outcomes(report, "network")["Network segmentation"] == Outcome.PASS
    assert report.verdict == Verdict.SECURE_WITH_WARNINGS

    fake_compose.daemon = False
    assert run_security_audit(ctx).verdict == Verdict.INSECURE
