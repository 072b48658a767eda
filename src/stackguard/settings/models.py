"""Runtime settings for a Stackguard invocation.

A :class:`Settings` instance is built once at startup from the
effective environment mapping (process environment overlaid with the
loaded ``.env`` file) and passed explicitly into every component.
Nothing in the package reads ``os.environ`` after this point.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import AGE_RECIPIENTS_FILE

_TRUE = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _path(env: Mapping[str, str], name: str, default: Path, root: Path) -> Path:
    value = env.get(name)
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else root / path


class Settings(BaseModel):
    """Host-specific configuration shared by all commands.

    Attributes mirror the environment variables documented in the
    project README; see :meth:`from_environment` for the mapping.
    """

    model_config = ConfigDict(frozen=True)

    project_root: Path
    secrets_dir: Path
    log_file: Path
    log_level: str = "INFO"

    # Backups
    backup_root: Path
    retention_days: int = 30
    encryption_mode: str = "auto"
    encryption_required: bool = False
    use_sidecar: bool = False
    remote_type: str = ""
    remote_destination: str = ""
    s3_bucket: str = ""
    gcs_bucket: str = ""
    azure_container: str = ""
    azure_account: str = ""
    notification_webhook: str = ""

    # Application stack
    n8n_host: str = ""
    postgres_db: str = "n8n"
    postgres_user: str = "n8n_admin"
    # Empty: reach the database through the postgres container.
    postgres_host: str = ""
    postgres_port: int = 5432
    enable_redis_cache: bool = True
    enable_monitoring: bool = True
    n8n_health_url: str = "http://localhost:5678/healthz"
    n8n_metrics_url: str = "http://localhost:5678/metrics"
    prometheus_url: str = "http://localhost:9090/-/healthy"
    grafana_url: str = "http://localhost:3000/api/health"
    loki_url: str = "http://localhost:3100/ready"

    # Snapshot of the variables the settings were built from, for validators.
    environment: dict = Field(default_factory=dict, repr=False)

    @property
    def app_data_dir(self) -> Path:
        return self.project_root / "volumes" / "n8n"

    @property
    def age_recipients_file(self) -> Path:
        return self.secrets_dir / AGE_RECIPIENTS_FILE

    @classmethod
    def from_environment(
        cls,
        env: Mapping[str, str],
        project_root: Optional[Path] = None,
    ) -> "Settings":
        """Build settings from an environment mapping.

        Args:
            env: Effective variables (process environment plus ``.env``).
            project_root: Root of the deployment.  Falls back to
                ``STACKGUARD_PROJECT_ROOT`` and then the current directory.
        """
        root = Path(project_root or env.get("STACKGUARD_PROJECT_ROOT") or Path.cwd()).resolve()
        return cls(
            project_root=root,
            secrets_dir=_path(env, "SECRETS_DIR", root / "secrets", root),
            log_file=_path(env, "STACKGUARD_LOG_FILE", root / "logs" / "scripts.log", root),
            log_level=env.get("STACKGUARD_LOG_LEVEL") or "INFO",
            backup_root=_path(env, "BACKUP_ROOT", root / "volumes" / "backups", root),
            retention_days=_int(env, "BACKUP_RETENTION_DAYS", 30),
            encryption_mode=(env.get("BACKUP_ENCRYPTION_MODE") or "auto").lower(),
            encryption_required=_flag(env, "BACKUP_ENCRYPTION_REQUIRED", False),
            use_sidecar=_flag(env, "BACKUP_USE_SIDECAR", False),
            remote_type=(env.get("BACKUP_REMOTE_TYPE") or "").lower(),
            remote_destination=env.get("BACKUP_REMOTE_DESTINATION") or "",
            s3_bucket=env.get("BACKUP_S3_BUCKET") or "",
            gcs_bucket=env.get("BACKUP_GCS_BUCKET") or "",
            azure_container=env.get("BACKUP_REMOTE_CONTAINER") or "",
            azure_account=env.get("BACKUP_STORAGE_ACCOUNT") or "",
            notification_webhook=env.get("BACKUP_NOTIFICATION_WEBHOOK") or "",
            n8n_host=env.get("N8N_HOST") or "",
            postgres_db=env.get("POSTGRES_DB") or "n8n",
            postgres_user=env.get("POSTGRES_USER") or "n8n_admin",
            postgres_host=env.get("POSTGRES_HOST") or "",
            postgres_port=_int(env, "POSTGRES_PORT", 5432),
            enable_redis_cache=_flag(env, "ENABLE_REDIS_CACHE", True),
            enable_monitoring=_flag(env, "ENABLE_MONITORING", True),
            n8n_health_url=env.get("N8N_HEALTH_URL") or "http://localhost:5678/healthz",
            n8n_metrics_url=env.get("N8N_METRICS_URL") or "http://localhost:5678/metrics",
            prometheus_url=env.get("PROMETHEUS_HEALTH_URL") or "http://localhost:9090/-/healthy",
            grafana_url=env.get("GRAFANA_HEALTH_URL") or "http://localhost:3000/api/health",
            loki_url=env.get("LOKI_HEALTH_URL") or "http://localhost:3100/ready",
            environment=dict(env),
        )


__all__ = ["Settings"]
