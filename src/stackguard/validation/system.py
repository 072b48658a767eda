"""Host-level validation: required tools, container runtime, resources."""

from __future__ import annotations

from ..checks.engine import CheckGroup
from ..checks.models import ProbeResult
from ..checks.versions import version_at_least
from ..config import (
    MIN_COMPOSE_VERSION,
    MIN_CPU_CORES,
    MIN_DISK_GB,
    MIN_DOCKER_VERSION,
    MIN_MEMORY_GB,
    REQUIRED_TOOLS,
)
from ..errors import DependencyError
from .context import ValidationContext


def require_docker(ctx: ValidationContext) -> None:
    """Abort before any check runs when the container runtime is absent.

    Raises:
        DependencyError: If the ``docker`` executable cannot be found.
    """
    if ctx.which("docker") is None:
        raise DependencyError("docker is not installed; no validation is meaningful without it")


def dependencies_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("dependencies")
    for tool in REQUIRED_TOOLS:
        group.add(f"{tool} installed", lambda tool=tool: ctx.which(tool) is not None)
    return group


def _version_floor(read, minimum: str, label: str):
    def probe() -> ProbeResult:
        version = read()
        if not version:
            return ProbeResult.failed(f"{label} version unknown")
        if version_at_least(version, minimum):
            return ProbeResult.passed(version)
        return ProbeResult.failed(f"{label} {version} is older than recommended ({minimum}+)")

    return probe


def docker_group(ctx: ValidationContext) -> CheckGroup:
    compose = ctx.compose
    group = CheckGroup("docker")
    group.add("Docker daemon reachable", compose.daemon_reachable)
    group.add(
        "Docker version",
        _version_floor(compose.docker_version, MIN_DOCKER_VERSION, "Docker"),
        critical=False,
    )
    group.add("Docker Compose available", compose.compose_available)
    group.add(
        "Docker Compose version",
        _version_floor(compose.compose_version, MIN_COMPOSE_VERSION, "Docker Compose"),
        critical=False,
    )
    group.add("Docker permissions", compose.can_list_containers)
    return group


def resources_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("resources")

    def memory() -> ProbeResult:
        gb = ctx.resources(ctx.root).memory_gb
        if gb < MIN_MEMORY_GB:
            return ProbeResult.failed(f"{gb}GB RAM; minimum {MIN_MEMORY_GB}GB recommended")
        return ProbeResult.passed(f"{gb}GB RAM")

    def disk() -> ProbeResult:
        gb = ctx.resources(ctx.root).free_disk_gb
        if gb < MIN_DISK_GB:
            return ProbeResult.failed(f"{gb}GB free; minimum {MIN_DISK_GB}GB recommended")
        return ProbeResult.passed(f"{gb}GB free")

    def cpu() -> ProbeResult:
        cores = ctx.resources(ctx.root).cpu_cores
        if cores < MIN_CPU_CORES:
            return ProbeResult.failed(f"{cores} CPU core(s); minimum {MIN_CPU_CORES} recommended")
        return ProbeResult.passed(f"{cores} CPU cores")

    # Advisory only.
    group.add("Memory", memory, critical=False)
    group.add("Disk space", disk, critical=False)
    group.add("CPU cores", cpu, critical=False)
    return group


__all__ = ["dependencies_group", "docker_group", "resources_group", "require_docker"]
