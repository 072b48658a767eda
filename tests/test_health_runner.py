"""Tests for the live health runner."""

from __future__ import annotations

from collections import namedtuple
from datetime import datetime
from pathlib import Path

import pytest
import requests
import sqlalchemy as sa

from conftest import completed

from stackguard import db as db_module
from stackguard.checks import Outcome, RetryPolicy, Verdict
from stackguard.errors import UnknownComponent
from stackguard.health.probes import classify_backup_age, classify_certificate, classify_disk_usage
from stackguard.health.runner import NOT_RUNNING, UNKNOWN, HealthRunner
from stackguard.secretstore.store import SecretStore

DiskUsage = namedtuple("DiskUsage", "total used free percent")
NOW = datetime(2026, 10, 17, 12, 0, 0)
PASSWORD = "postgres_password-value-0123456789"


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class FakeSession:
    """Maps URL to a status code, an exception, or a list of either."""

    def __init__(self, responses=None, default: int = 200) -> None:
        self.responses = dict(responses or {})
        self.default = default
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(url)
        value = self.responses.get(url, self.default)
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return FakeResponse(value)


def _openssl(args, **kwargs):
    return completed(0, "notAfter=Jan  1 00:00:00 2099 GMT\n")


def _postgres(command, env):
    if command[0] == "pg_isready":
        return completed(0, "/var/run/postgresql:5432 - accepting connections\n")
    statement = command[-1]
    assert env == {"PGPASSWORD": PASSWORD}
    if statement == db_module.VERSION_SQL:
        return completed(0, "16.4\n")
    if statement == db_module.SIZE_SQL:
        return completed(0, "12 MB\n")
    return completed(0, "0\n")


def _stack_exec(service, command, env):
    if service == "postgres":
        return _postgres(command, env)
    if service == "redis" and command[1:] == ["ping"]:
        assert env == {"REDISCLI_AUTH": "redis_password-value-0123456789"}
        return completed(0, "PONG\n")
    if service == "redis" and command[1:] == ["INFO", "memory"]:
        return completed(0, "# Memory\r\nused_memory_human:1.50M\r\n")
    if service == "n8n":
        return completed(0, "1.64.0\n")
    return completed(0, "", "nginx: configuration file test is successful")


@pytest.fixture
def stack(tmp_path: Path, make_settings, fake_compose, secrets_dir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(db_module, "long_running_queries", lambda engine, minutes=5: 0)
    ssl_dir = tmp_path / "nginx" / "ssl"
    ssl_dir.mkdir(parents=True)
    (ssl_dir / "fullchain.pem").write_text("cert", encoding="utf-8")
    (tmp_path / "volumes" / "backups" / "20261017_110000").mkdir(parents=True)
    fake_compose.exec_handler = _stack_exec
    settings = make_settings(ENABLE_REDIS_CACHE="true")
    state = {"disk": DiskUsage(100, 50, 50, 50.0)}

    def build(session=None, settings_override=None, **overrides) -> HealthRunner:
        kwargs = dict(
            session=session or FakeSession(),
            engine_factory=lambda s, st: sa.create_engine("sqlite://"),
            runner=_openssl,
            disk_usage=lambda path: state["disk"],
            retry=RetryPolicy(attempts=3, delay=1.0, sleep=lambda s: None),
            now=lambda: NOW,
        )
        kwargs.update(overrides)
        return HealthRunner(
            settings_override or settings, SecretStore(secrets_dir), fake_compose, **kwargs
        )

    build.state = state
    return build


def _result(report, name: str):
    return next(r for r in report.results if r.name == name)


def _outcome(report, name: str) -> Outcome:
    return _result(report, name).outcome


def test_healthy_stack(stack) -> None:
    """A fully healthy stack passes every category in the fixed order."""
    report = stack().run()
    assert [g.name for g in report.groups] == [
        "docker",
        "services",
        "application",
        "database",
        "cache",
        "proxy",
        "resources",
        "ssl",
        "backups",
        "monitoring",
    ]
    assert report.failed == 0
    assert report.warned == 0
    assert report.verdict == Verdict.HEALTHY
    assert report.exit_code == 0
    assert report.group("monitoring").results == []


@pytest.mark.parametrize(
    "percent,expected,threshold",
    [
        (50.0, Outcome.PASS, None),
        (85.0, Outcome.WARN, "warning threshold 80%"),
        (95.0, Outcome.WARN, "critical threshold 90%"),
    ],
)
def test_disk_thresholds(stack, percent: float, expected: Outcome, threshold) -> None:
    """Disk usage is advisory: both threshold bands are warnings naming the threshold."""
    stack.state["disk"] = DiskUsage(100, percent, 100 - percent, percent)
    report = stack().run("resources")
    result = _result(report, "Disk usage")
    assert result.outcome == expected
    assert result.critical is False
    if threshold:
        assert threshold in result.detail
    assert report.exit_code == 0


def test_backup_recency(stack, tmp_path: Path) -> None:
    """Missing or stale backups warn without failing the run."""
    backups = tmp_path / "volumes" / "backups"
    (backups / "20261017_110000").rmdir()
    report = stack().run("backups")
    assert _outcome(report, "Backup recency") == Outcome.WARN
    assert _result(report, "Backup recency").detail == "no backup found"

    (backups / "20261016_060000").mkdir()
    report = stack().run("backups")
    assert _outcome(report, "Backup recency") == Outcome.WARN
    assert "warning threshold 25 hours" in _result(report, "Backup recency").detail

    (backups / "20261016_060000").rename(backups / "20261015_060000")
    report = stack().run("backups")
    assert _outcome(report, "Backup recency") == Outcome.WARN
    assert "critical threshold 48 hours" in _result(report, "Backup recency").detail
    assert report.exit_code == 0


def test_fresh_install_is_healthy_with_warnings(stack, tmp_path: Path) -> None:
    """No backups and no certificate yet only produce warnings on a fresh install."""
    (tmp_path / "volumes" / "backups" / "20261017_110000").rmdir()
    (tmp_path / "nginx" / "ssl" / "fullchain.pem").unlink()

    report = stack().run()

    assert _outcome(report, "Backup recency") == Outcome.WARN
    assert _outcome(report, "SSL certificate") == Outcome.WARN
    assert report.failed == 0
    assert report.verdict == Verdict.HEALTHY_WITH_WARNINGS
    assert report.exit_code == 0


def test_application_endpoint_retries(stack) -> None:
    """The health endpoint is retried up to three times before it fails."""
    url = "http://localhost:5678/healthz"
    session = FakeSession({url: [requests.ConnectionError("refused"), 503, 200]})
    report = stack(session=session).run("application")
    assert _outcome(report, "n8n health endpoint") == Outcome.PASS
    assert session.calls.count(url) == 3

    session = FakeSession({url: [503]})
    report = stack(session=session).run("application")
    assert _outcome(report, "n8n health endpoint") == Outcome.FAIL
    assert session.calls.count(url) == 3


def test_critical_failure_does_not_stop_later_checks(stack, fake_compose) -> None:
    """Stopped services fail their checks while later categories still run."""
    fake_compose.running = set()
    report = stack().run()
    assert _outcome(report, "postgres service") == Outcome.FAIL
    assert _outcome(report, "PostgreSQL connection") == Outcome.FAIL
    assert _outcome(report, "Nginx configuration") == Outcome.FAIL
    assert _outcome(report, "Backup recency") == Outcome.PASS
    assert report.exit_code == 1
    assert report.verdict == Verdict.UNHEALTHY


def test_database_checks_run_inside_the_container(stack, fake_compose) -> None:
    """Without POSTGRES_HOST the database is checked with pg_isready and psql in its container."""
    report = stack().run("database")

    assert _outcome(report, "PostgreSQL connection") == Outcome.PASS
    assert _outcome(report, "Long-running queries") == Outcome.PASS
    calls = [(cmd, env) for service, cmd, env in fake_compose.exec_calls if service == "postgres"]
    assert calls[0] == (["pg_isready", "-U", "n8n_admin", "-d", "n8n"], {})
    psql, env = calls[1]
    assert psql[0] == "psql"
    assert "make_interval(mins => 5)" in psql[-1]
    assert env == {"PGPASSWORD": PASSWORD}
    assert all(PASSWORD not in arg for cmd, _ in calls for arg in cmd)


def test_database_not_ready_fails(stack, fake_compose) -> None:
    """A non-zero pg_isready is a critical failure carrying its output."""

    def refusing(service, command, env):
        if service == "postgres" and command[0] == "pg_isready":
            return completed(2, "/var/run/postgresql:5432 - no response\n")
        return _stack_exec(service, command, env)

    fake_compose.exec_handler = refusing
    report = stack().run("database")
    result = _result(report, "PostgreSQL connection")
    assert result.outcome == Outcome.FAIL
    assert result.detail == "/var/run/postgresql:5432 - no response"
    assert report.exit_code == 1


def test_configured_host_connects_directly(stack, make_settings, fake_compose) -> None:
    """With POSTGRES_HOST set the probes use the SQLAlchemy engine, not the container."""
    settings = make_settings(POSTGRES_HOST="db.internal", ENABLE_REDIS_CACHE="true")
    report = stack(settings_override=settings).run("database")

    assert _outcome(report, "PostgreSQL connection") == Outcome.PASS
    assert _result(report, "PostgreSQL connection").detail == "db.internal:5432"
    assert not [call for call in fake_compose.exec_calls if call[0] == "postgres"]


def test_https_probe_only_for_public_host(stack, make_settings) -> None:
    """The HTTPS reachability check is added only for a public N8N_HOST."""
    report = stack().run("proxy")
    assert [r.name for r in report.results] == ["Nginx configuration"]

    settings = make_settings(N8N_HOST="n8n.example.com", ENABLE_REDIS_CACHE="true")
    session = FakeSession({"https://n8n.example.com": 301})
    report = stack(session=session, settings_override=settings).run("proxy")
    assert _outcome(report, "HTTPS endpoint") == Outcome.PASS


def test_disabled_cache_has_no_checks(stack, make_settings) -> None:
    """With caching disabled the cache category is empty and reads as disabled."""
    runner = stack(settings_override=make_settings(ENABLE_REDIS_CACHE="false"))
    assert runner.run("cache").total == 0
    assert runner.cache_memory() == "disabled"


def test_unknown_component(stack) -> None:
    """An unregistered category name raises UnknownComponent."""
    with pytest.raises(UnknownComponent):
        stack().run("bogus")


def test_readings(stack, fake_compose) -> None:
    """Informational readings come from the containers, disk, certificate and bundles."""
    runner = stack()
    readings = runner.readings()
    assert readings["n8n version"] == "1.64.0"
    assert readings["PostgreSQL version"] == "16.4"
    assert readings["Redis memory"] == "1.50M"
    assert readings["Backups"] == "Latest: 20261017_110000 (1.0 hours ago)"
    assert readings["SSL certificate"].startswith("Expires in ")
    assert readings["Disk"].startswith("Used: ")
    assert runner.database_size() == "12 MB"

    fake_compose.running = set()
    assert runner.application_version() == NOT_RUNNING
    assert runner.cache_memory() == NOT_RUNNING


def test_accessors_never_raise(stack, make_settings) -> None:
    """Accessors fall back to "unknown" when the database cannot be reached."""

    def broken(settings, store):
        raise RuntimeError("no database")

    settings = make_settings(POSTGRES_HOST="db.internal", ENABLE_REDIS_CACHE="true")
    runner = stack(engine_factory=broken, settings_override=settings)
    assert runner.database_version() == UNKNOWN
    assert runner.database_size() == UNKNOWN
    assert _outcome(runner.run("database"), "PostgreSQL connection") == Outcome.FAIL


def test_snapshot_document(stack, fake_compose) -> None:
    """The status snapshot carries per-service flags, readings and the verdict."""
    fake_compose.running = {"postgres", "n8n"}
    runner = stack()
    report = runner.run("services")
    doc = runner.snapshot(report, readings={"n8n version": "1.64.0"})
    assert doc["services"] == {"postgres": True, "n8n": True, "nginx": False, "redis": False}
    assert doc["info"] == {"n8n version": "1.64.0"}
    assert doc["failed"] == 2
    assert doc["verdict"] == "UNHEALTHY"


def test_threshold_classifiers() -> None:
    """Readings below the warning threshold pass; anything beyond fails with the threshold named."""
    assert classify_disk_usage(79.9).ok
    assert "warning threshold" in classify_disk_usage(80).detail
    assert "critical threshold" in classify_disk_usage(90).detail
    assert not classify_disk_usage(90).ok
    assert classify_certificate(None).ok is False
    assert "critical threshold" in classify_certificate(6).detail
    assert "warning threshold" in classify_certificate(7).detail
    assert classify_certificate(30).ok
    assert classify_backup_age(25).ok
    assert "warning threshold" in classify_backup_age(25.5).detail
    assert not classify_backup_age(None).ok
