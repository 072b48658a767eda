"""Producers for the per-subsystem backup artifacts.

Each :class:`Subsystem` knows how to write one raw artifact into the
bundle directory.  Producers raise :class:`ArtifactError` on failure and
return ``None`` when the subsystem is disabled; the pipeline decides
whether a failure is fatal from the subsystem's ``critical`` flag.
"""

from __future__ import annotations

import logging
import shlex
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..config import COMPOSE_FILE, COMPOSE_PROD_FILE
from ..docker.compose import ComposeClient
from ..errors import ArtifactError
from ..secretstore.store import SecretStore
from ..settings.models import Settings

logger = logging.getLogger(__name__)

DATABASE_FILE = "postgres_backup.dump"
CACHE_FILE = "redis_backup.rdb"
APP_DATA_FILE = "n8n_data.tar"
CONFIGURATION_FILE = "config_backup.tar"

POSTGRES_SIDECAR_IMAGE = "postgres:16-alpine"
POSTGRES_SIDECAR_USER = "70:70"
REDIS_SIDECAR_IMAGE = "redis:7-alpine"
REDIS_SIDECAR_USER = "999:999"
BACKEND_NETWORK = "n8n-backend"

DUMP_TIMEOUT = 3600.0
CONTAINER_DUMP_PATH = "/tmp/postgres_backup.dump"
REDIS_DUMP_PATH = "/data/dump.rdb"
# BGSAVE completion is polled through LASTSAVE.
BGSAVE_POLLS = 60
BGSAVE_INTERVAL = 1.0

CONFIGURATION_ITEMS = [
    COMPOSE_FILE,
    COMPOSE_PROD_FILE,
    ".env",
    "nginx",
    "monitoring",
    "security",
    "scripts",
]
EXCLUDED_NAMES = {"secrets", "volumes", ".git"}

Producer = Callable[[Path], Optional[Path]]


@dataclass
class Subsystem:
    """One backed-up subsystem.

    Attributes:
        name: Key used in ``services_backed_up``.
        filename: Name of the raw artifact inside the bundle.
        produce: ``(bundle_dir) -> path`` writing the raw artifact, or
            ``None`` when the subsystem is disabled.
        critical: A failure aborts the whole run when true.
    """

    name: str
    filename: str
    produce: Producer
    critical: bool = False


def _require_output(path: Path, label: str) -> Path:
    if not path.is_file() or path.stat().st_size == 0:
        raise ArtifactError(f"{label} produced no output")
    return path


def _stderr(proc) -> str:
    lines = (proc.stderr or "").strip().splitlines()
    return lines[-1] if lines else f"exit status {proc.returncode}"


def dump_database(
    settings: Settings,
    store: SecretStore,
    compose: ComposeClient,
    bundle: Path,
) -> Path:
    """Write a custom-format ``pg_dump`` of the application database."""
    target = bundle / DATABASE_FILE
    user = store.read_optional("postgres_user") or settings.postgres_user
    database = settings.postgres_db
    if not compose.is_running("postgres"):
        raise ArtifactError("PostgreSQL service is not running")

    if settings.use_sidecar:
        script = (
            'PGPASSWORD="$(cat /secrets/postgres_password.txt)" exec pg_dump -h postgres '
            f"-U {shlex.quote(user)} -d {shlex.quote(database)} "
            f"--no-owner --no-privileges --format=custom --file=/backup/{DATABASE_FILE}"
        )
        proc = compose.run_sidecar(
            POSTGRES_SIDECAR_IMAGE,
            ["sh", "-c", script],
            user=POSTGRES_SIDECAR_USER,
            network=compose.network_name(BACKEND_NETWORK),
            volumes={str(bundle): "/backup", str(settings.secrets_dir): "/secrets:ro"},
            timeout=DUMP_TIMEOUT,
        )
        if proc.returncode != 0:
            raise ArtifactError(f"PostgreSQL sidecar backup failed: {_stderr(proc)}")
        return _require_output(target, "PostgreSQL backup")

    proc = compose.exec(
        "postgres",
        [
            "pg_dump",
            "-U",
            user,
            "-d",
            database,
            "--no-owner",
            "--no-privileges",
            "--format=custom",
            f"--file={CONTAINER_DUMP_PATH}",
        ],
        timeout=DUMP_TIMEOUT,
    )
    if proc.returncode != 0:
        raise ArtifactError(f"pg_dump failed: {_stderr(proc)}")
    container = compose.container_id("postgres")
    if not container or not compose.copy_from(container, CONTAINER_DUMP_PATH, target):
        raise ArtifactError("Could not copy the database dump out of the container")
    compose.exec("postgres", ["rm", "-f", CONTAINER_DUMP_PATH])
    return _require_output(target, "PostgreSQL backup")


def dump_cache(
    settings: Settings,
    store: SecretStore,
    compose: ComposeClient,
    bundle: Path,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[Path]:
    """Snapshot Redis, or return ``None`` when the cache is disabled."""
    if not settings.enable_redis_cache:
        logger.info("Redis cache disabled, skipping backup")
        return None
    target = bundle / CACHE_FILE
    if not compose.is_running("redis"):
        raise ArtifactError("Redis service is not running")

    if settings.use_sidecar:
        script = (
            'export REDISCLI_AUTH="$(cat /secrets/redis_password.txt)"; '
            f"exec redis-cli -h redis --rdb /backup/{CACHE_FILE}"
        )
        proc = compose.run_sidecar(
            REDIS_SIDECAR_IMAGE,
            ["sh", "-c", script],
            user=REDIS_SIDECAR_USER,
            network=compose.network_name(BACKEND_NETWORK),
            volumes={str(bundle): "/backup", str(settings.secrets_dir): "/secrets:ro"},
            timeout=DUMP_TIMEOUT,
        )
        if proc.returncode != 0:
            raise ArtifactError(f"Redis sidecar backup failed: {_stderr(proc)}")
        return _require_output(target, "Redis backup")

    auth = {"REDISCLI_AUTH": store.read("redis_password")}

    def lastsave() -> str:
        return (compose.exec("redis", ["redis-cli", "LASTSAVE"], env=auth).stdout or "").strip()

    before = lastsave()
    proc = compose.exec("redis", ["redis-cli", "BGSAVE"], env=auth)
    if proc.returncode != 0:
        raise ArtifactError(f"Redis BGSAVE failed: {_stderr(proc)}")
    for _ in range(BGSAVE_POLLS):
        if lastsave() != before:
            break
        sleep(BGSAVE_INTERVAL)
    else:
        raise ArtifactError("Redis BGSAVE did not complete in time")
    container = compose.container_id("redis")
    if not container or not compose.copy_from(container, REDIS_DUMP_PATH, target):
        raise ArtifactError("Could not copy the Redis snapshot out of the container")
    return _require_output(target, "Redis backup")


def archive_app_data(settings: Settings, bundle: Path) -> Path:
    """Tar the application data volume."""
    source = settings.app_data_dir
    if not source.is_dir():
        raise ArtifactError(f"Application data directory not found: {source}")
    target = bundle / APP_DATA_FILE
    try:
        with tarfile.open(target, "w") as tar:
            tar.add(source, arcname=source.name)
    except (OSError, tarfile.TarError) as exc:
        raise ArtifactError(f"Failed to archive application data: {exc}") from exc
    return _require_output(target, "Application data backup")


def _exclude(info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
    parts = Path(info.name).parts
    if any(part in EXCLUDED_NAMES for part in parts) or info.name.endswith(".log"):
        return None
    return info


def archive_configuration(settings: Settings, bundle: Path) -> Path:
    """Tar compose files, ``.env`` and the config directories, never secrets."""
    root = settings.project_root
    present = [item for item in CONFIGURATION_ITEMS if (root / item).exists()]
    if not present:
        raise ArtifactError("No configuration files found")
    target = bundle / CONFIGURATION_FILE
    try:
        with tarfile.open(target, "w") as tar:
            for item in present:
                tar.add(root / item, arcname=item, filter=_exclude)
    except (OSError, tarfile.TarError) as exc:
        raise ArtifactError(f"Failed to archive configuration: {exc}") from exc
    return _require_output(target, "Configuration backup")


def default_subsystems(
    settings: Settings,
    store: SecretStore,
    compose: ComposeClient,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Subsystem]:
    """The four subsystems of a full bundle; only the database is critical."""
    return [
        Subsystem(
            "database",
            DATABASE_FILE,
            lambda bundle: dump_database(settings, store, compose, bundle),
            critical=True,
        ),
        Subsystem(
            "cache",
            CACHE_FILE,
            lambda bundle: dump_cache(settings, store, compose, bundle, sleep=sleep),
        ),
        Subsystem("app_data", APP_DATA_FILE, lambda bundle: archive_app_data(settings, bundle)),
        Subsystem(
            "configuration",
            CONFIGURATION_FILE,
            lambda bundle: archive_configuration(settings, bundle),
        ),
    ]


__all__ = [
    "Subsystem",
    "dump_database",
    "dump_cache",
    "archive_app_data",
    "archive_configuration",
    "default_subsystems",
]
