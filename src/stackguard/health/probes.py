"""Threshold classification and HTTP helpers for health probes.

The classifiers are pure functions from a reading to a
:class:`ProbeResult`: below the warning threshold passes, anything else
fails with a detail naming the threshold that was crossed.  The checks
using them are advisory, so either band is reported as WARN.
"""

from __future__ import annotations

import warnings
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import requests

from ..backup.retention import bundle_dirs, bundle_time
from ..checks.models import ProbeResult
from ..config import (
    BACKUP_CRITICAL_HOURS,
    BACKUP_WARN_HOURS,
    CERT_CRITICAL_DAYS,
    CERT_WARN_DAYS,
    DISK_CRITICAL_PERCENT,
    DISK_WARN_PERCENT,
    HTTPS_ACCEPTED_CODES,
)

HTTP_TIMEOUT = 5.0


def classify_disk_usage(
    percent: float,
    warn: int = DISK_WARN_PERCENT,
    critical: int = DISK_CRITICAL_PERCENT,
) -> ProbeResult:
    detail = f"{percent:.0f}% used"
    if percent >= critical:
        return ProbeResult.failed(f"{detail} (critical threshold {critical}%)")
    if percent >= warn:
        return ProbeResult.failed(f"{detail} (warning threshold {warn}%)")
    return ProbeResult.passed(detail)


def classify_certificate(
    days_left: Optional[int],
    warn: int = CERT_WARN_DAYS,
    critical: int = CERT_CRITICAL_DAYS,
) -> ProbeResult:
    if days_left is None:
        return ProbeResult.failed("could not read certificate expiry")
    detail = f"expires in {days_left} days"
    if days_left < critical:
        return ProbeResult.failed(f"{detail} (critical threshold {critical} days)")
    if days_left < warn:
        return ProbeResult.failed(f"{detail} (warning threshold {warn} days)")
    return ProbeResult.passed(detail)


def classify_backup_age(
    hours: Optional[float],
    warn: int = BACKUP_WARN_HOURS,
    critical: int = BACKUP_CRITICAL_HOURS,
) -> ProbeResult:
    if hours is None:
        return ProbeResult.failed("no backup found")
    detail = f"latest backup is {hours:.1f} hours old"
    if hours > critical:
        return ProbeResult.failed(f"{detail} (critical threshold {critical} hours)")
    if hours > warn:
        return ProbeResult.failed(f"{detail} (warning threshold {warn} hours)")
    return ProbeResult.passed(detail)


def latest_bundle(backup_root: Path) -> Optional[Path]:
    """Newest bundle directory by its timestamp name."""
    bundles = bundle_dirs(backup_root)
    return max(bundles, key=lambda p: p.name) if bundles else None


def backup_age_hours(backup_root: Path, now: Optional[datetime] = None) -> Optional[float]:
    latest = latest_bundle(backup_root)
    if latest is None:
        return None
    now = now or datetime.now()
    return (now - bundle_time(latest)).total_seconds() / 3600


def http_ok(session: requests.Session, url: str, timeout: float = HTTP_TIMEOUT) -> ProbeResult:
    """GET ``url`` and pass on any status below 400."""
    try:
        response = session.get(url, timeout=timeout)
    except requests.RequestException as exc:
        return ProbeResult.failed(f"{url}: {exc.__class__.__name__}")
    if response.status_code < 400:
        return ProbeResult.passed(f"HTTP {response.status_code}")
    return ProbeResult.failed(f"{url} returned HTTP {response.status_code}")


def https_reachable(
    session: requests.Session,
    host: str,
    accepted: Iterable[int] = HTTPS_ACCEPTED_CODES,
    timeout: float = 10.0,
) -> ProbeResult:
    """Reach ``https://<host>`` without following redirects.

    Certificate verification is off: this is a reachability probe, and
    certificate health is checked separately.
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            response = session.get(
                f"https://{host}", timeout=timeout, verify=False, allow_redirects=False
            )
    except requests.RequestException as exc:
        return ProbeResult.failed(f"https://{host}: {exc.__class__.__name__}")
    if response.status_code in set(accepted):
        return ProbeResult.passed(f"HTTP {response.status_code}")
    return ProbeResult.failed(f"https://{host} returned HTTP {response.status_code}")


__all__ = [
    "classify_disk_usage",
    "classify_certificate",
    "classify_backup_age",
    "latest_bundle",
    "backup_age_hours",
    "http_ok",
    "https_reachable",
]
