"""Best-effort upload of a finished bundle to object storage.

Uploads shell out to the provider CLIs.  A failed upload is logged as a
warning and never fails the backup run.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from ..docker.compose import Runner, run_command
from ..errors import StackguardError
from ..settings.models import Settings

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 3600.0
REMOTE_PREFIX = "n8n-backups"


def upload_command(settings: Settings, bundle: Path) -> Optional[List[str]]:
    """Build the CLI invocation for ``settings.remote_type``, or ``None``."""
    kind = settings.remote_type
    name = bundle.name
    if kind in ("aws", "s3"):
        if not settings.s3_bucket:
            return None
        return ["aws", "s3", "sync", str(bundle), f"s3://{settings.s3_bucket}/{REMOTE_PREFIX}/{name}/"]
    if kind in ("gcp", "gcs"):
        if not settings.gcs_bucket:
            return None
        return ["gsutil", "-m", "cp", "-r", str(bundle), f"gs://{settings.gcs_bucket}/{REMOTE_PREFIX}/{name}/"]
    if kind == "azure":
        if not (settings.azure_container and settings.azure_account):
            return None
        return [
            "az",
            "storage",
            "blob",
            "upload-batch",
            "--destination",
            settings.azure_container,
            "--destination-path",
            f"{REMOTE_PREFIX}/{name}",
            "--source",
            str(bundle),
            "--account-name",
            settings.azure_account,
        ]
    return None


def upload_bundle(
    settings: Settings,
    bundle: Path,
    *,
    runner: Runner = run_command,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> bool:
    """Upload ``bundle`` when a remote destination is configured.

    Returns:
        True only when an upload ran and succeeded.
    """
    if not settings.remote_destination:
        return False
    args = upload_command(settings, bundle)
    if args is None:
        logger.warning(
            "Remote backup type '%s' is unsupported or incompletely configured",
            settings.remote_type,
        )
        return False
    if which(args[0]) is None:
        logger.warning("%s CLI not found, skipping remote upload", args[0])
        return False
    try:
        proc = runner(args, timeout=UPLOAD_TIMEOUT)
    except StackguardError as exc:
        logger.warning("Remote upload failed: %s", exc)
        return False
    if proc.returncode != 0:
        logger.warning("Remote upload failed: %s", (proc.stderr or "").strip()[:200])
        return False
    logger.info(
        "Uploaded %s to %s",
        bundle.name,
        settings.remote_type,
        extra={"event": "backup_uploaded", "bundle": bundle.name, "remote": settings.remote_type},
    )
    return True


__all__ = ["upload_command", "upload_bundle"]
