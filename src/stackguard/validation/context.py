"""Shared inputs for validation and security-audit checks.

A :class:`ValidationContext` bundles the settings, secret store,
compose client and host probes that category builders close over.
Host access (tool lookup, ports, resources, files outside the project)
is held as plain callables and paths so tests can substitute them.
"""

from __future__ import annotations

import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import psutil

from ..docker.compose import ComposeClient, Runner, run_command
from ..secretstore.store import SecretStore
from ..settings.loader import ConfigEnvironment
from ..settings.models import Settings

GB = 1024 ** 3


@dataclass
class HostResources:
    memory_gb: int
    cpu_cores: int
    free_disk_gb: int


def host_resources(path: Path) -> HostResources:
    """Read memory, CPU and free disk at ``path`` via psutil."""
    return HostResources(
        memory_gb=int(psutil.virtual_memory().total // GB),
        cpu_cores=psutil.cpu_count() or 1,
        free_disk_gb=int(psutil.disk_usage(str(path)).free // GB),
    )


def port_in_use(port: int) -> bool:
    """True when something on this host listens on ``port`` (TCP or UDP)."""
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, OSError):
        return False
    for conn in connections:
        if not conn.laddr or conn.laddr.port != port:
            continue
        if conn.status == psutil.CONN_LISTEN or conn.type == socket.SOCK_DGRAM:
            return True
    return False


@dataclass
class ValidationContext:
    settings: Settings
    store: SecretStore
    compose: ComposeClient
    env: Optional[ConfigEnvironment] = None
    comprehensive: bool = True
    runner: Runner = run_command
    which: Callable[[str], Optional[str]] = shutil.which
    port_in_use: Callable[[int], bool] = port_in_use
    resources: Callable[[Path], HostResources] = host_resources
    daemon_config: Path = field(default=Path("/etc/docker/daemon.json"))

    @property
    def root(self) -> Path:
        return self.settings.project_root

    @property
    def environment(self) -> dict:
        return dict(self.settings.environment)

    @classmethod
    def create(
        cls,
        settings: Settings,
        store: Optional[SecretStore] = None,
        compose: Optional[ComposeClient] = None,
        **kwargs,
    ) -> "ValidationContext":
        return cls(
            settings=settings,
            store=store or SecretStore(settings.secrets_dir),
            compose=compose or ComposeClient(settings.project_root),
            **kwargs,
        )


__all__ = ["ValidationContext", "HostResources", "host_resources", "port_in_use"]
