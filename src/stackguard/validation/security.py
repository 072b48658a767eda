"""Network, TLS and host hardening checks, plus the security audit groups.

Hardening mechanisms themselves (AppArmor, seccomp, daemon options)
are only inspected here; nothing is changed.
"""

from __future__ import annotations

from ..checks.engine import CheckGroup
from ..checks.models import ProbeResult
from ..config import (
    CERT_WARN_DAYS,
    CONTAINER_USERS,
    EXPECTED_NETWORKS,
    EXPECTED_SECRET_COUNT,
    REQUIRED_SERVICES,
    SSL_CERT_PATH,
    SSL_KEY_PATH,
    STACK_PORTS,
)
from ..errors import StackguardError
from . import certificates
from .context import ValidationContext


def network_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("network")
    for network in EXPECTED_NETWORKS:
        def declared(network: str = network) -> ProbeResult:
            if network in ctx.compose.networks():
                return ProbeResult.passed()
            return ProbeResult.failed(f"network '{network}' not found in compose configuration")

        group.add(f"Network '{network}' declared", declared)

    cache: dict = {}

    def stack_ports() -> set:
        if "ports" not in cache:
            cache["ports"] = set(ctx.compose.published_ports())
        return cache["ports"]

    def free(port: int) -> ProbeResult:
        if not ctx.port_in_use(port):
            return ProbeResult.passed()
        if port in stack_ports():
            return ProbeResult.passed("bound by the stack")
        return ProbeResult.failed(f"port {port} already in use by another process")

    for port in STACK_PORTS:
        group.add(f"Port {port} available", lambda port=port: free(port), critical=False)
    return group


def ssl_group(ctx: ValidationContext) -> CheckGroup:
    """Certificate presence, expiry horizon and key binding.

    A missing pair or a near expiry is a warning; a certificate that
    does not match its key is a hard failure at every validation level.
    """
    cert = ctx.root / SSL_CERT_PATH
    key = ctx.root / SSL_KEY_PATH
    group = CheckGroup("ssl")

    def present() -> ProbeResult:
        missing = [p.name for p in (cert, key) if not p.is_file()]
        if missing:
            return ProbeResult.failed("not found: " + ", ".join(missing) + "; HTTPS will not work")
        return ProbeResult.passed()

    group.add("Certificate and key present", present, critical=False)
    if not (cert.is_file() and key.is_file()):
        return group

    def expiry() -> ProbeResult:
        days = certificates.days_remaining(cert, ctx.runner)
        if days is None:
            return ProbeResult.failed("could not read certificate expiry")
        if days < CERT_WARN_DAYS:
            return ProbeResult.failed(f"certificate expires in {days} days")
        return ProbeResult.passed(f"{days} days remaining")

    def binding() -> None:
        certificates.verify_pair(cert, key, ctx.runner)

    group.add(f"Certificate valid for {CERT_WARN_DAYS}+ days", expiry, critical=False)
    group.add("Certificate matches private key", binding)
    return group


def _apparmor_active(ctx: ValidationContext) -> ProbeResult:
    try:
        proc = ctx.runner(["systemctl", "is-active", "apparmor"], timeout=10)
    except StackguardError as exc:
        return ProbeResult.failed(str(exc))
    if proc.returncode == 0:
        return ProbeResult.passed()
    return ProbeResult.failed("AppArmor service not active")


def security_group(ctx: ValidationContext) -> CheckGroup:
    security_dir = ctx.root / "security"
    group = CheckGroup("security")
    group.add("Security directory", lambda: security_dir.is_dir(), critical=False)
    group.add(
        "Seccomp profile",
        lambda: (security_dir / "seccomp-profile.json").is_file(),
        critical=False,
    )
    group.add(
        "AppArmor profiles directory",
        lambda: (security_dir / "apparmor-profiles").is_dir(),
        critical=False,
    )
    if ctx.which("aa-status") is not None:
        group.add("AppArmor active", lambda: _apparmor_active(ctx), critical=False)
    if ctx.daemon_config.is_file():
        def no_new_privileges() -> ProbeResult:
            text = ctx.daemon_config.read_text(encoding="utf-8")
            if '"no-new-privileges": true' in text:
                return ProbeResult.passed()
            return ProbeResult.failed(f"consider enabling no-new-privileges in {ctx.daemon_config}")

        group.add("Docker daemon no-new-privileges", no_new_privileges, critical=False)
    return group


# ----------------------------------------------------------------------
# Security audit


def audit_docker_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("docker")
    group.add("Docker daemon", ctx.compose.daemon_reachable)
    group.add("Docker Compose", ctx.compose.compose_available)
    group.add("Docker Compose configuration", ctx.compose.config_valid)
    return group


def secret_count_check(ctx: ValidationContext):
    def probe() -> ProbeResult:
        count = len(ctx.store.list())
        if count >= EXPECTED_SECRET_COUNT:
            return ProbeResult.passed(f"{count} secret files")
        return ProbeResult.failed(f"found {count} secret files, expected {EXPECTED_SECRET_COUNT}")

    return probe


def audit_services_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("services")
    for service in REQUIRED_SERVICES:
        group.add(f"{service} service", lambda s=service: ctx.compose.is_running(s), critical=False)
    return group


def containers_group(ctx: ValidationContext) -> CheckGroup:
    """Per-service hardening: non-root user, read-only root fs, no-new-privileges."""
    group = CheckGroup("containers")

    def inspect(service: str, fmt: str):
        cid = ctx.compose.container_id(service)
        if not cid:
            return None
        return ctx.compose.inspect(cid, fmt)

    for service, expected in CONTAINER_USERS.items():
        def user(service: str = service, expected: str = expected) -> ProbeResult:
            actual = inspect(service, "{{.Config.User}}")
            if actual == expected:
                return ProbeResult.passed(f"running as {actual}")
            return ProbeResult.failed(f"expected user '{expected}', got '{actual or ''}'")

        def read_only(service: str = service) -> ProbeResult:
            if inspect(service, "{{.HostConfig.ReadonlyRootfs}}") == "true":
                return ProbeResult.passed()
            return ProbeResult.failed("read-only root filesystem not enabled")

        def no_new_privileges(service: str = service) -> ProbeResult:
            opts = inspect(service, "{{range .HostConfig.SecurityOpt}}{{.}} {{end}}") or ""
            if "no-new-privileges" in opts:
                return ProbeResult.passed()
            return ProbeResult.failed("missing no-new-privileges option")

        group.add(f"{service} non-root user", user, critical=False)
        group.add(f"{service} read-only filesystem", read_only, critical=False)
        group.add(f"{service} no-new-privileges", no_new_privileges, critical=False)
    return group


def segmentation_group(ctx: ValidationContext) -> CheckGroup:
    group = CheckGroup("network")

    def segmented() -> ProbeResult:
        found = [
            name
            for name in ctx.compose.existing_networks()
            if any(expected in name for expected in EXPECTED_NETWORKS)
        ]
        if len(found) >= len(EXPECTED_NETWORKS):
            return ProbeResult.passed(f"{len(found)} networks found")
        return ProbeResult.failed("network segmentation may not be properly configured")

    group.add("Network segmentation", segmented, critical=False)
    return group


__all__ = [
    "network_group",
    "ssl_group",
    "security_group",
    "audit_docker_group",
    "audit_services_group",
    "containers_group",
    "segmentation_group",
    "secret_count_check",
]
