"""Shared fakes for the Stackguard test suite.

Nothing here talks to a real container runtime: :class:`FakeCompose`
answers the same questions as :class:`stackguard.docker.ComposeClient`
from plain attributes, and :func:`completed` builds the process results
that fake runners return.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from stackguard.config import REQUIRED_SECRETS, REQUIRED_SERVICES
from stackguard.settings.models import Settings


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeCompose:
    """In-memory stand-in for ComposeClient."""

    def __init__(self) -> None:
        self.daemon = True
        self.compose_ok = True
        self.config_ok = True
        self.versions = {"docker": "24.0.7", "compose": "2.21.0"}
        self.service_names: List[str] = list(REQUIRED_SERVICES)
        self.network_names: List[str] = ["n8n-backend", "n8n-frontend"]
        self.existing: List[str] = ["stack_n8n-backend", "stack_n8n-frontend"]
        self.running = set(REQUIRED_SERVICES)
        self.ports: List[int] = []
        self.inspect_values: Dict[str, str] = {}
        self.exec_handler: Optional[Callable[..., subprocess.CompletedProcess]] = None
        self.exec_calls: List[tuple] = []
        self.sidecar_calls: List[dict] = []
        self.copies: Dict[str, bytes] = {}

    def daemon_reachable(self) -> bool:
        return self.daemon

    def compose_available(self) -> bool:
        return self.compose_ok

    def docker_version(self) -> Optional[str]:
        return self.versions.get("docker")

    def compose_version(self) -> Optional[str]:
        return self.versions.get("compose")

    def config_valid(self) -> bool:
        return self.config_ok

    def services(self) -> List[str]:
        return list(self.service_names)

    def networks(self) -> List[str]:
        return list(self.network_names)

    def network_name(self, network: str) -> Optional[str]:
        return f"stack_{network}"

    def existing_networks(self) -> List[str]:
        return list(self.existing)

    def container_id(self, service: str) -> Optional[str]:
        return f"{service}-cid" if service in self.running else None

    def is_running(self, service: str) -> bool:
        return service in self.running

    def can_list_containers(self) -> bool:
        return self.daemon

    def published_ports(self) -> List[int]:
        return list(self.ports)

    def inspect(self, container: str, fmt: str) -> Optional[str]:
        return self.inspect_values.get(fmt)

    def exec(self, service, command, *, env=None, text=True, timeout=None):
        self.exec_calls.append((service, list(command), dict(env or {})))
        if self.exec_handler is not None:
            return self.exec_handler(service, list(command), env or {})
        return completed(0, "")

    def copy_from(self, container: str, source: str, dest: Path) -> bool:
        if source not in self.copies:
            return False
        Path(dest).write_bytes(self.copies[source])
        return True

    def run_sidecar(self, image, command, *, user, network, volumes, timeout=None):
        self.sidecar_calls.append(
            {"image": image, "command": list(command), "user": user, "network": network, "volumes": dict(volumes)}
        )
        return completed(0, "")


@pytest.fixture
def fake_compose() -> FakeCompose:
    return FakeCompose()


@pytest.fixture
def secrets_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "secrets"
    directory.mkdir(mode=0o700)
    directory.chmod(0o700)
    for name in REQUIRED_SECRETS:
        path = directory / f"{name}.txt"
        path.write_text(f"{name}-value-0123456789\n", encoding="utf-8")
        path.chmod(0o600)
    return directory


@pytest.fixture
def make_settings(tmp_path: Path):
    """Build Settings rooted at ``tmp_path`` with optional overrides."""

    def factory(**env: str) -> Settings:
        values = {"POSTGRES_DB": "n8n", "ENABLE_MONITORING": "false"}
        values.update(env)
        return Settings.from_environment(values, project_root=tmp_path)

    return factory
