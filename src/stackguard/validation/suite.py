"""Validation and security-audit entry points.

``run_validation`` runs every registered category (or one of them)
and ``run_security_audit`` runs the security variant with
SECURE/INSECURE verdicts.  ``validation_document`` renders the JSON
report written after a validation run.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..checks.engine import ALL, CheckGroup, CheckRegistry, GroupListener, ResultListener
from ..checks.models import Report
from ..config import SSL_CERT_PATH
from ..errors import StackguardError, UnknownComponent
from ..reporting import status_document
from .configuration import compose_group, environment_group, secrets_group
from .context import ValidationContext
from .security import (
    audit_docker_group,
    audit_services_group,
    containers_group,
    network_group,
    secret_count_check,
    security_group,
    segmentation_group,
    ssl_group,
)
from .system import dependencies_group, docker_group, require_docker, resources_group

logger = logging.getLogger(__name__)

# Runs the health runner instead of a validation category.
HEALTH_COMPONENT = "health"


def validation_registry(ctx: ValidationContext) -> CheckRegistry:
    registry = CheckRegistry("health")
    registry.register("dependencies", lambda: dependencies_group(ctx))
    registry.register("docker", lambda: docker_group(ctx))
    registry.register("compose", lambda: compose_group(ctx))
    registry.register("environment", lambda: environment_group(ctx))
    registry.register("secrets", lambda: secrets_group(ctx))
    registry.register("network", lambda: network_group(ctx))
    registry.register("ssl", lambda: ssl_group(ctx))
    registry.register("security", lambda: security_group(ctx))
    registry.register("resources", lambda: resources_group(ctx))
    return registry


def valid_components(registry: CheckRegistry) -> list[str]:
    return [ALL, *registry.names(), HEALTH_COMPONENT]


def run_validation(
    ctx: ValidationContext,
    component: str = ALL,
    on_result: Optional[ResultListener] = None,
    on_group: Optional[GroupListener] = None,
) -> Report:
    """Run validation for ``component`` (``all`` or one category).

    Raises:
        UnknownComponent: For a name that is not a registered category.
        DependencyError: When docker is not installed at all.
    """
    registry = validation_registry(ctx)
    component = component or ALL
    if component != ALL and component not in registry:
        raise UnknownComponent(component, valid_components(registry))
    require_docker(ctx)
    return registry.run(component, on_result, on_group)


def _audit_secrets_group(ctx: ValidationContext) -> CheckGroup:
    group = secrets_group(ctx, comprehensive=False)
    group.add("Secret count", secret_count_check(ctx), critical=False)
    return group


def security_registry(ctx: ValidationContext) -> CheckRegistry:
    registry = CheckRegistry("security")
    registry.register("docker", lambda: audit_docker_group(ctx))
    registry.register("secrets", lambda: _audit_secrets_group(ctx))
    registry.register("services", lambda: audit_services_group(ctx))
    registry.register("containers", lambda: containers_group(ctx))
    registry.register("network", lambda: segmentation_group(ctx))
    registry.register("ssl", lambda: ssl_group(ctx))
    return registry


def run_security_audit(
    ctx: ValidationContext,
    component: str = ALL,
    on_result: Optional[ResultListener] = None,
    on_group: Optional[GroupListener] = None,
) -> Report:
    require_docker(ctx)
    return security_registry(ctx).run(component or ALL, on_result, on_group)


def system_info(ctx: ValidationContext) -> Dict[str, Any]:
    """Runtime versions and host resources for the report document."""
    info: Dict[str, Any] = {
        "docker_version": "unknown",
        "compose_version": "unknown",
        "total_memory_gb": None,
        "cpu_cores": None,
        "available_disk_gb": None,
    }
    try:
        info["docker_version"] = ctx.compose.docker_version() or "unknown"
        info["compose_version"] = ctx.compose.compose_version() or "unknown"
    except StackguardError as exc:
        logger.debug("Runtime version lookup failed: %s", exc)
    try:
        resources = ctx.resources(ctx.root)
        info.update(
            total_memory_gb=resources.memory_gb,
            cpu_cores=resources.cpu_cores,
            available_disk_gb=resources.free_disk_gb,
        )
    except OSError as exc:
        logger.debug("Host resource lookup failed: %s", exc)
    return info


def configuration_info(ctx: ValidationContext) -> Dict[str, Any]:
    return {
        "secrets_count": len(ctx.store.list()),
        "ssl_configured": (ctx.root / SSL_CERT_PATH).is_file(),
        "security_profiles": (ctx.root / "security").is_dir(),
    }


def validation_document(
    report: Report,
    ctx: ValidationContext,
    services: Optional[Dict[str, bool]] = None,
) -> Dict[str, Any]:
    doc = status_document(report, services=services)
    doc["system_info"] = system_info(ctx)
    doc["configuration"] = configuration_info(ctx)
    return doc


__all__ = [
    "HEALTH_COMPONENT",
    "validation_registry",
    "security_registry",
    "valid_components",
    "run_validation",
    "run_security_audit",
    "system_info",
    "configuration_info",
    "validation_document",
]
