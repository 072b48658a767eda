"""Certificate inspection through the ``openssl`` CLI.

Used by SSL validation, the security audit and the health runner.
Every function takes the command runner as an argument so tests can
substitute a fake or skip when ``openssl`` is not installed.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..docker.compose import Runner, run_command
from ..errors import IntegrityError, StackguardError

OPENSSL_TIMEOUT = 10.0
_ENDDATE_FORMAT = "%b %d %H:%M:%S %Y %Z"


def _openssl(args: list[str], runner: Runner) -> Optional[str]:
    try:
        proc = runner(["openssl", *args], timeout=OPENSSL_TIMEOUT)
    except StackguardError:
        return None
    if proc.returncode != 0:
        return None
    return (proc.stdout or "").strip()


def expiry_date(cert: Path, runner: Runner = run_command) -> Optional[datetime]:
    """Return the certificate's ``notAfter`` timestamp (UTC), or ``None``."""
    out = _openssl(["x509", "-enddate", "-noout", "-in", str(cert)], runner)
    if not out or "=" not in out:
        return None
    raw = " ".join(out.split("=", 1)[1].split())
    try:
        return datetime.strptime(raw, _ENDDATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def days_until(moment: datetime, now: Optional[datetime] = None) -> int:
    """Whole days between ``now`` and ``moment`` (negative when past)."""
    now = now or datetime.now(timezone.utc)
    return int((moment - now).total_seconds() // 86400)


def days_remaining(cert: Path, runner: Runner = run_command, now: Optional[datetime] = None) -> Optional[int]:
    expiry = expiry_date(cert, runner)
    if expiry is None:
        return None
    return days_until(expiry, now)


def _modulus_digest(args: list[str], runner: Runner) -> Optional[str]:
    out = _openssl(args, runner)
    if not out or "Modulus=" not in out:
        return None
    return hashlib.md5(out.encode("ascii"), usedforsecurity=False).hexdigest()


def pair_matches(cert: Path, key: Path, runner: Runner = run_command) -> bool:
    """True when the certificate's public modulus equals the key's modulus.

    A modulus that cannot be read on either side counts as a mismatch.
    """
    cert_digest = _modulus_digest(["x509", "-noout", "-modulus", "-in", str(cert)], runner)
    key_digest = _modulus_digest(["rsa", "-noout", "-modulus", "-in", str(key)], runner)
    return cert_digest is not None and cert_digest == key_digest


def verify_pair(cert: Path, key: Path, runner: Runner = run_command) -> None:
    """Raise :class:`IntegrityError` when certificate and key do not match."""
    if not pair_matches(cert, key, runner):
        raise IntegrityError(f"SSL certificate {cert.name} and private key {key.name} do not match")


__all__ = ["expiry_date", "days_until", "days_remaining", "pair_matches", "verify_pair"]
