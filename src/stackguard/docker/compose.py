"""Thin wrapper around the ``docker`` and ``docker compose`` CLIs.

Every interaction with the container runtime goes through
:class:`ComposeClient`, which in turn shells out via an injectable
``runner``.  Tests replace the runner with a fake so that no docker
installation is needed.  All calls carry an explicit timeout.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..errors import DependencyError, ProbeTimeout

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0

Runner = Callable[..., subprocess.CompletedProcess]


def run_command(
    args: Sequence[str],
    *,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    cwd: Optional[Path] = None,
    input: Optional[bytes | str] = None,
    text: bool = True,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run an external command and capture its output.

    Args:
        args: The argument vector.  Never contains secret values; pass
            those through ``env`` instead.
        timeout: Seconds before the command is killed.
        cwd: Working directory.
        input: Data written to the command's stdin.
        text: Decode stdout/stderr as text (``False`` for binary dumps).
        env: Extra environment variables for the child process.

    Raises:
        DependencyError: If the executable is not installed.
        ProbeTimeout: If the command does not finish within ``timeout``.
    """
    child_env = None
    if env:
        child_env = dict(os.environ)
        child_env.update(env)
    logger.debug("Running %s", " ".join(args[:3]), extra={"event": "command", "argv0": args[0]})
    try:
        return subprocess.run(
            list(args),
            capture_output=True,
            text=text,
            timeout=timeout,
            cwd=str(cwd) if cwd else None,
            input=input,
            env=child_env,
            check=False,
        )
    except FileNotFoundError as exc:
        raise DependencyError(f"{args[0]} is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeTimeout(f"{args[0]} timed out after {timeout:g}s") from exc


class ComposeClient:
    """Read-mostly access to the compose project rooted at ``project_root``.

    The only mutating operations are :meth:`exec` and :meth:`run_sidecar`,
    which the backup pipeline uses to produce dumps; probes restrict
    themselves to inspection commands.
    """

    def __init__(
        self,
        project_root: Path,
        runner: Runner = run_command,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.project_root = Path(project_root)
        self.runner = runner
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Low level helpers

    def _run(self, args: Sequence[str], **kwargs: Any) -> subprocess.CompletedProcess:
        kwargs.setdefault("timeout", self.timeout)
        kwargs.setdefault("cwd", self.project_root)
        return self.runner(list(args), **kwargs)

    def _compose(self, *args: str, **kwargs: Any) -> subprocess.CompletedProcess:
        return self._run(["docker", "compose", *args], **kwargs)

    @staticmethod
    def _stdout(proc: subprocess.CompletedProcess) -> str:
        out = proc.stdout
        if isinstance(out, bytes):
            out = out.decode("utf-8", errors="replace")
        return (out or "").strip()

    # ------------------------------------------------------------------
    # Runtime

    def daemon_reachable(self) -> bool:
        return self._run(["docker", "info"]).returncode == 0

    def compose_available(self) -> bool:
        return self._compose("version").returncode == 0

    def docker_version(self) -> Optional[str]:
        """Return the server version reported by the daemon, if any."""
        proc = self._run(["docker", "version", "--format", "{{.Server.Version}}"])
        version = self._stdout(proc)
        return version if proc.returncode == 0 and version else None

    def compose_version(self) -> Optional[str]:
        proc = self._compose("version", "--short")
        version = self._stdout(proc).lstrip("v")
        return version if proc.returncode == 0 and version else None

    # ------------------------------------------------------------------
    # Compose definition

    def config_valid(self) -> bool:
        return self._compose("config", "--quiet").returncode == 0

    def config(self) -> Dict[str, Any]:
        """Return the fully resolved compose definition.

        Returns an empty dict when the definition cannot be rendered.
        """
        proc = self._compose("config", "--format", "json")
        if proc.returncode != 0:
            return {}
        try:
            return json.loads(self._stdout(proc))
        except ValueError:
            return {}

    def services(self) -> List[str]:
        return list(self.config().get("services", {}) or {})

    def networks(self) -> List[str]:
        """Names of the networks declared by the compose definition."""
        declared = self.config().get("networks", {}) or {}
        return list(declared)

    def network_name(self, network: str) -> Optional[str]:
        """Return the runtime name docker uses for a declared network."""
        declared = self.config().get("networks", {}) or {}
        entry = declared.get(network)
        if entry is None:
            return None
        return (entry or {}).get("name") or network

    def existing_networks(self) -> List[str]:
        proc = self._run(["docker", "network", "ls", "--format", "{{.Name}}"])
        if proc.returncode != 0:
            return []
        return [line.strip() for line in self._stdout(proc).splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Containers

    def container_id(self, service: str) -> Optional[str]:
        proc = self._compose("ps", "-q", service)
        cid = self._stdout(proc).splitlines()
        return cid[0] if proc.returncode == 0 and cid else None

    def is_running(self, service: str) -> bool:
        proc = self._compose("ps", "--status", "running", "-q", service)
        return proc.returncode == 0 and bool(self._stdout(proc))

    def can_list_containers(self) -> bool:
        return self._run(["docker", "ps", "-q"]).returncode == 0

    def published_ports(self) -> List[int]:
        """Host ports published by the project's running containers."""
        proc = self._compose("ps", "--format", "json")
        if proc.returncode != 0:
            return []
        text = self._stdout(proc)
        try:
            entries = json.loads(text) if text.startswith("[") else [
                json.loads(line) for line in text.splitlines() if line.strip()
            ]
        except ValueError:
            return []
        ports: List[int] = []
        for entry in entries:
            for publisher in entry.get("Publishers") or []:
                port = publisher.get("PublishedPort")
                if port:
                    ports.append(int(port))
        return sorted(set(ports))

    def inspect(self, container: str, fmt: str) -> Optional[str]:
        """Return one ``docker inspect --format`` field for a container."""
        proc = self._run(["docker", "inspect", "--format", fmt, container])
        return self._stdout(proc) if proc.returncode == 0 else None

    def exec(
        self,
        service: str,
        command: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        text: bool = True,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command inside a running service container.

        Variables in ``env`` are forwarded by name only (``-e NAME``) so
        their values never appear on a command line.
        """
        args = ["exec", "-T"]
        for name in env or {}:
            args += ["-e", name]
        args += [service, *command]
        return self._compose(*args, env=env, text=text, timeout=timeout or self.timeout)

    def copy_from(self, container: str, source: str, dest: Path) -> bool:
        proc = self._run(["docker", "cp", f"{container}:{source}", str(dest)])
        return proc.returncode == 0

    def run_sidecar(
        self,
        image: str,
        command: Sequence[str],
        *,
        user: str,
        network: Optional[str],
        volumes: Mapping[str, str],
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run a disposable, unprivileged, read-only helper container."""
        args = [
            "docker",
            "run",
            "--rm",
            "--user",
            user,
            "--read-only",
            "--security-opt",
            "no-new-privileges:true",
            "--cap-drop",
            "ALL",
            "--tmpfs",
            "/tmp:noexec,nosuid,size=100m",
        ]
        if network:
            args += ["--network", network]
        for host_path, container_path in volumes.items():
            args += ["-v", f"{host_path}:{container_path}"]
        args += [image, *command]
        return self._run(args, timeout=timeout or self.timeout)


__all__ = ["ComposeClient", "run_command", "DEFAULT_COMMAND_TIMEOUT"]
