"""Health checks against the running stack.

:class:`HealthRunner` registers one check group per category and runs
them through the shared engine, so a failed critical check never stops
later checks; the exit code reflects the worst outcome.  Informational
accessors (versions, sizes, certificate and backup details) are for
display only and never raise.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import psutil
import requests
from sqlalchemy.engine import Engine

from .. import db
from ..backup.manifest import human_size
from ..backup.retention import bundle_time
from ..checks.engine import ALL, CheckGroup, CheckRegistry, GroupListener, ResultListener
from ..checks.harness import RetryPolicy
from ..checks.models import ProbeResult, Report
from ..config import LONG_QUERY_MINUTES, REQUIRED_SERVICES, SSL_CERT_PATH
from ..docker.compose import ComposeClient, Runner, run_command
from ..errors import StackguardError
from ..reporting import status_document
from ..secretstore.store import SecretStore
from ..settings.models import Settings
from ..validation import certificates
from .probes import (
    backup_age_hours,
    classify_backup_age,
    classify_certificate,
    classify_disk_usage,
    http_ok,
    https_reachable,
    latest_bundle,
)

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
NOT_RUNNING = "service not running"

# Health endpoint: 3 attempts, 1 s apart, 5 s per request.
APPLICATION_RETRY = RetryPolicy(attempts=3, delay=1.0)
APPLICATION_TIMEOUT = 5.0


class HealthRunner:
    """Run live health checks for the stack described by ``settings``.

    Args:
        settings: Runtime settings.
        store: Secret store; defaults to ``settings.secrets_dir``.
        compose: Compose client; defaults to one rooted at the project.
        session: ``requests`` session used by HTTP probes.
        engine_factory: ``(settings, store) -> Engine`` for database probes
            when ``POSTGRES_HOST`` is configured; otherwise the probes run
            inside the ``postgres`` container.
        runner: Command runner for ``openssl``.
        disk_usage: ``psutil.disk_usage`` compatible callable.
        retry: Retry policy for the application health endpoint.
        now: Clock for backup age, returning local naive time.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[SecretStore] = None,
        compose: Optional[ComposeClient] = None,
        *,
        session: Optional[requests.Session] = None,
        engine_factory: Callable[[Settings, SecretStore], Engine] = db.build_engine,
        runner: Runner = run_command,
        disk_usage: Callable[[str], Any] = psutil.disk_usage,
        retry: RetryPolicy = APPLICATION_RETRY,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.store = store or SecretStore(settings.secrets_dir)
        self.compose = compose or ComposeClient(settings.project_root)
        self.session = session or requests.Session()
        self.engine_factory = engine_factory
        self.runner = runner
        self.disk_usage = disk_usage
        self.retry = retry
        self.now = now
        self._engine: Optional[Engine] = None
        self.container_db = db.ContainerDatabase(self.compose, settings, self.store)
        self.registry = self._build_registry()

    # ------------------------------------------------------------------
    # Plumbing

    @property
    def direct_database(self) -> bool:
        return bool(self.settings.postgres_host)

    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self.engine_factory(self.settings, self.store)
        return self._engine

    def _redis_cli(self, *args: str):
        password = self.store.read("redis_password")
        return self.compose.exec("redis", ["redis-cli", *args], env={"REDISCLI_AUTH": password})

    @property
    def _cert(self):
        return self.settings.project_root / SSL_CERT_PATH

    # ------------------------------------------------------------------
    # Groups

    def _docker(self) -> CheckGroup:
        group = CheckGroup("docker")
        group.add("Docker daemon", self.compose.daemon_reachable)
        group.add("Docker Compose", self.compose.compose_available)
        group.add("Compose configuration", self.compose.config_valid)
        return group

    def _services(self) -> CheckGroup:
        group = CheckGroup("services")
        for service in REQUIRED_SERVICES:
            group.add(f"{service} service", lambda s=service: self.compose.is_running(s))
        return group

    def _application(self) -> CheckGroup:
        settings = self.settings
        group = CheckGroup("application")
        group.add(
            "n8n health endpoint",
            lambda: self.retry.run(
                lambda: http_ok(self.session, settings.n8n_health_url, APPLICATION_TIMEOUT)
            ),
        )
        group.add(
            "n8n metrics endpoint",
            lambda: http_ok(self.session, settings.n8n_metrics_url, APPLICATION_TIMEOUT),
            critical=False,
        )
        return group

    def _database(self) -> CheckGroup:
        group = CheckGroup("database")

        def connection() -> ProbeResult:
            if self.direct_database:
                db.select_one(self.engine())
                return ProbeResult.passed(f"{self.settings.postgres_host}:{self.settings.postgres_port}")
            if not self.compose.is_running("postgres"):
                return ProbeResult.failed("postgres is not running")
            self.container_db.ready()
            return ProbeResult.passed()

        def long_queries() -> ProbeResult:
            if self.direct_database:
                count = db.long_running_queries(self.engine())
            else:
                count = self.container_db.long_running_queries()
            if count:
                return ProbeResult.failed(
                    f"{count} queries running longer than {LONG_QUERY_MINUTES} minutes"
                )
            return ProbeResult.passed()

        group.add("PostgreSQL connection", connection)
        group.add("Long-running queries", long_queries, critical=False)
        return group

    def _cache(self) -> CheckGroup:
        group = CheckGroup("cache")
        if not self.settings.enable_redis_cache:
            return group

        def ping() -> ProbeResult:
            reply = (self._redis_cli("ping").stdout or "").strip()
            if reply == "PONG":
                return ProbeResult.passed()
            return ProbeResult.failed(f"unexpected reply {reply[:20]!r}")

        group.add("Redis connection", ping)
        return group

    def _proxy(self) -> CheckGroup:
        group = CheckGroup("proxy")

        def nginx_config() -> ProbeResult:
            if not self.compose.is_running("nginx"):
                return ProbeResult.failed("nginx is not running")
            proc = self.compose.exec("nginx", ["nginx", "-t"])
            if proc.returncode == 0:
                return ProbeResult.passed()
            lines = (proc.stderr or "").strip().splitlines()
            return ProbeResult.failed(lines[-1] if lines else "nginx -t failed")

        group.add("Nginx configuration", nginx_config)
        host = self.settings.n8n_host
        if host and host != "localhost":
            group.add("HTTPS endpoint", lambda: https_reachable(self.session, host), critical=False)
        return group

    def _resources(self) -> CheckGroup:
        group = CheckGroup("resources")
        group.add(
            "Disk usage",
            lambda: classify_disk_usage(self.disk_usage(str(self.settings.project_root)).percent),
            critical=False,
        )
        return group

    def _ssl(self) -> CheckGroup:
        group = CheckGroup("ssl")

        def expiry() -> ProbeResult:
            if not self._cert.is_file():
                return ProbeResult.failed("certificate not found")
            return classify_certificate(certificates.days_remaining(self._cert, self.runner))

        group.add("SSL certificate", expiry, critical=False)
        return group

    def _backups(self) -> CheckGroup:
        group = CheckGroup("backups")
        group.add(
            "Backup recency",
            lambda: classify_backup_age(backup_age_hours(self.settings.backup_root, self.now())),
            critical=False,
        )
        return group

    def _monitoring(self) -> CheckGroup:
        settings = self.settings
        group = CheckGroup("monitoring")
        if not settings.enable_monitoring:
            return group
        for name, url in (
            ("Prometheus", settings.prometheus_url),
            ("Grafana", settings.grafana_url),
            ("Loki", settings.loki_url),
        ):
            group.add(name, lambda url=url: http_ok(self.session, url), critical=False)
        return group

    def _build_registry(self) -> CheckRegistry:
        registry = CheckRegistry("health")
        registry.register("docker", self._docker)
        registry.register("services", self._services)
        registry.register("application", self._application)
        registry.register("database", self._database)
        registry.register("cache", self._cache)
        registry.register("proxy", self._proxy)
        registry.register("resources", self._resources)
        registry.register("ssl", self._ssl)
        registry.register("backups", self._backups)
        registry.register("monitoring", self._monitoring)
        return registry

    def run(
        self,
        component: str = ALL,
        on_result: Optional[ResultListener] = None,
        on_group: Optional[GroupListener] = None,
    ) -> Report:
        """Run every category, or only ``component``.

        Raises:
            UnknownComponent: If ``component`` is not a registered category.
        """
        return self.registry.run(component or ALL, on_result, on_group)

    # ------------------------------------------------------------------
    # Informational accessors (never raise)

    def _safe(self, fn: Callable[[], Optional[str]], default: str = UNKNOWN) -> str:
        try:
            value = fn()
        except Exception as exc:
            logger.debug("Reading failed: %s", exc)
            return default
        return value or default

    def application_version(self) -> str:
        def read() -> str:
            if not self.compose.is_running("n8n"):
                return NOT_RUNNING
            proc = self.compose.exec("n8n", ["n8n", "--version"])
            lines = (proc.stdout or "").strip().splitlines()
            return lines[0].strip() if proc.returncode == 0 and lines else UNKNOWN

        return self._safe(read)

    def database_version(self) -> str:
        if self.direct_database:
            return self._safe(lambda: db.server_version(self.engine()))
        return self._safe(self.container_db.server_version)

    def database_size(self) -> str:
        if self.direct_database:
            return self._safe(lambda: db.database_size(self.engine(), self.settings.postgres_db))
        return self._safe(self.container_db.database_size)

    def cache_memory(self) -> str:
        def read() -> Optional[str]:
            if not self.settings.enable_redis_cache:
                return "disabled"
            if not self.compose.is_running("redis"):
                return NOT_RUNNING
            for line in (self._redis_cli("INFO", "memory").stdout or "").splitlines():
                if line.startswith("used_memory_human:"):
                    return line.split(":", 1)[1].strip()
            return None

        return self._safe(read)

    def disk_info(self) -> str:
        def read() -> str:
            usage = self.disk_usage(str(self.settings.project_root))
            return (
                f"Used: {human_size(usage.used)} ({usage.percent:.0f}%) | "
                f"Available: {human_size(usage.free)}"
            )

        return self._safe(read)

    def certificate_info(self) -> str:
        def read() -> str:
            if not self._cert.is_file():
                return "Certificate file not found"
            expiry = certificates.expiry_date(self._cert, self.runner)
            if expiry is None:
                return "Invalid certificate"
            days = certificates.days_until(expiry)
            return f"Expires in {days} days ({expiry:%Y-%m-%d})"

        return self._safe(read)

    def backup_info(self) -> str:
        def read() -> str:
            latest = latest_bundle(self.settings.backup_root)
            if latest is None:
                return "No backups found"
            hours = (self.now() - bundle_time(latest)).total_seconds() / 3600
            return f"Latest: {latest.name} ({hours:.1f} hours ago)"

        return self._safe(read)

    def readings(self) -> Dict[str, str]:
        return {
            "n8n version": self.application_version(),
            "PostgreSQL version": self.database_version(),
            "Database size": self.database_size(),
            "Redis memory": self.cache_memory(),
            "Disk": self.disk_info(),
            "SSL certificate": self.certificate_info(),
            "Backups": self.backup_info(),
        }

    def services_status(self) -> Dict[str, bool]:
        status: Dict[str, bool] = {}
        for service in REQUIRED_SERVICES:
            try:
                status[service] = self.compose.is_running(service)
            except StackguardError:
                status[service] = False
        return status

    def snapshot(self, report: Report, readings: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Point-in-time status document for external monitoring."""
        return status_document(
            report,
            services=self.services_status(),
            extra={"info": readings if readings is not None else self.readings()},
        )


__all__ = ["HealthRunner", "UNKNOWN", "NOT_RUNNING"]
