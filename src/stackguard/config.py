"""
Configuration constants for the Stackguard project.

This module centralises the fixed values that describe the managed
stack: which services must exist, which secrets and tools are
required, and the thresholds used by validation and health checks.
Runtime settings that vary per host are modelled separately by
:class:`stackguard.settings.models.Settings`.  New values should be
added here deliberately.
"""

from typing import Final

PROJECT_NAME: Final[str] = "Stackguard"

# Version tag written into every status document and backup manifest.
VERSION: Final[str] = "1.0.0"

# Services defined by the compose file.  Order is preserved in reports.
REQUIRED_SERVICES: Final[list[str]] = ["postgres", "n8n", "nginx", "redis"]

# Optional monitoring services (only checked when monitoring is enabled).
MONITORING_SERVICES: Final[list[str]] = ["prometheus", "grafana", "loki"]

# Secrets that must exist under the secrets directory as ``<name>.txt``.
REQUIRED_SECRETS: Final[list[str]] = [
    "postgres_password",
    "n8n_password",
    "n8n_encryption_key",
    "redis_password",
    "grafana_password",
    "smtp_password",
]

# Secret generation lengths (characters).
SECRET_LENGTHS: Final[dict[str, int]] = {
    "postgres_password": 32,
    "n8n_password": 24,
    "n8n_encryption_key": 32,
    "redis_password": 32,
    "grafana_password": 24,
    "smtp_password": 24,
}

SECRET_MIN_LENGTH: Final[int] = 12
SECRET_FILE_MODE: Final[int] = 0o600
SECRET_DIR_MODE: Final[int] = 0o700
# Expected number of secret files for a fully provisioned deployment.
EXPECTED_SECRET_COUNT: Final[int] = 9

AGE_RECIPIENTS_FILE: Final[str] = "age-recipients.txt"
AGE_KEY_FILE: Final[str] = "age-key.txt"

# External tools that validation requires on the host.
REQUIRED_TOOLS: Final[list[str]] = [
    "docker",
    "openssl",
    "tar",
    "gzip",
    "curl",
    "find",
    "grep",
]

MIN_DOCKER_VERSION: Final[str] = "20.10.0"
MIN_COMPOSE_VERSION: Final[str] = "2.0.0"

COMPOSE_FILE: Final[str] = "compose.yml"
COMPOSE_PROD_FILE: Final[str] = "compose.prod.yml"

# Isolated networks that must be declared by the compose file.
EXPECTED_NETWORKS: Final[list[str]] = ["n8n-backend", "n8n-frontend"]

# Host ports the stack binds; other listeners on these ports are conflicts.
STACK_PORTS: Final[list[int]] = [80, 443, 5678, 5432, 6379, 9090, 3000]

# Non-root users the hardened containers are expected to run as.
CONTAINER_USERS: Final[dict[str, str]] = {
    "postgres": "70:70",
    "n8n": "1000:1000",
    "nginx": "101:101",
    "redis": "999:999",
}

SSL_CERT_PATH: Final[str] = "nginx/ssl/fullchain.pem"
SSL_KEY_PATH: Final[str] = "nginx/ssl/key.pem"

# Environment variables checked by the critical validator.
REQUIRED_ENV_VARS: Final[list[str]] = ["POSTGRES_DB"]
RECOMMENDED_ENV_VARS: Final[list[str]] = [
    "N8N_HOST",
    "N8N_PROTOCOL",
    "WEBHOOK_URL",
    "N8N_EDITOR_BASE_URL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_FROM",
    "ALERT_EMAIL_TO",
    "BACKUP_RETENTION_DAYS",
    "ENABLE_REDIS_CACHE",
    "ENABLE_MONITORING",
]

# Resource floors (advisory).
MIN_MEMORY_GB: Final[int] = 4
MIN_DISK_GB: Final[int] = 10
MIN_CPU_CORES: Final[int] = 2

# Health thresholds.
DISK_WARN_PERCENT: Final[int] = 80
DISK_CRITICAL_PERCENT: Final[int] = 90
CERT_WARN_DAYS: Final[int] = 30
CERT_CRITICAL_DAYS: Final[int] = 7
BACKUP_WARN_HOURS: Final[int] = 25
BACKUP_CRITICAL_HOURS: Final[int] = 48
LONG_QUERY_MINUTES: Final[int] = 5
HTTPS_ACCEPTED_CODES: Final[frozenset[int]] = frozenset({200, 301, 302, 401})

DEFAULT_CHECK_TIMEOUT: Final[float] = 30.0

# Bundle directories are named with this strftime pattern.
BUNDLE_TIMESTAMP_FORMAT: Final[str] = "%Y%m%d_%H%M%S"
BUNDLE_NAME_PATTERN: Final[str] = r"^\d{8}_\d{6}$"
MIN_BACKUP_FREE_GB: Final[int] = 3

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "REQUIRED_SERVICES",
    "MONITORING_SERVICES",
    "REQUIRED_SECRETS",
    "SECRET_LENGTHS",
    "SECRET_MIN_LENGTH",
    "SECRET_FILE_MODE",
    "SECRET_DIR_MODE",
    "EXPECTED_SECRET_COUNT",
    "AGE_RECIPIENTS_FILE",
    "AGE_KEY_FILE",
    "REQUIRED_TOOLS",
    "MIN_DOCKER_VERSION",
    "MIN_COMPOSE_VERSION",
    "COMPOSE_FILE",
    "COMPOSE_PROD_FILE",
    "EXPECTED_NETWORKS",
    "STACK_PORTS",
    "CONTAINER_USERS",
    "SSL_CERT_PATH",
    "SSL_KEY_PATH",
    "REQUIRED_ENV_VARS",
    "RECOMMENDED_ENV_VARS",
    "MIN_MEMORY_GB",
    "MIN_DISK_GB",
    "MIN_CPU_CORES",
    "DISK_WARN_PERCENT",
    "DISK_CRITICAL_PERCENT",
    "CERT_WARN_DAYS",
    "CERT_CRITICAL_DAYS",
    "BACKUP_WARN_HOURS",
    "BACKUP_CRITICAL_HOURS",
    "LONG_QUERY_MINUTES",
    "HTTPS_ACCEPTED_CODES",
    "DEFAULT_CHECK_TIMEOUT",
    "BUNDLE_TIMESTAMP_FORMAT",
    "BUNDLE_NAME_PATTERN",
    "MIN_BACKUP_FREE_GB",
]
