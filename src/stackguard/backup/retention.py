"""Bundle discovery and the age-based retention sweep."""

from __future__ import annotations

import logging
import re
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..config import BUNDLE_NAME_PATTERN, BUNDLE_TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)

_BUNDLE_NAME = re.compile(BUNDLE_NAME_PATTERN)


def is_bundle_name(name: str) -> bool:
    return bool(_BUNDLE_NAME.match(name))


def bundle_dirs(root: Path) -> List[Path]:
    """Directories under ``root`` named like ``YYYYMMDD_HHMMSS``, oldest first."""
    root = Path(root)
    if not root.is_dir():
        return []
    return sorted(p for p in root.iterdir() if p.is_dir() and is_bundle_name(p.name))


def bundle_time(bundle: Path) -> datetime:
    """Local creation time encoded in a bundle's directory name."""
    return datetime.strptime(bundle.name, BUNDLE_TIMESTAMP_FORMAT)


def apply_retention(
    root: Path,
    days: int,
    *,
    current: Optional[Path] = None,
    now: Optional[float] = None,
) -> List[Path]:
    """Delete whole bundles whose modification time is older than ``days``.

    Only timestamp-named directories are considered and ``current`` is
    never deleted.  Failures to delete are logged and skipped.

    Returns:
        The bundles that were removed.
    """
    cutoff = (now if now is not None else time.time()) - days * 86400
    keep = current.resolve() if current is not None else None
    removed: List[Path] = []
    for bundle in bundle_dirs(root):
        if keep is not None and bundle.resolve() == keep:
            continue
        try:
            if bundle.stat().st_mtime >= cutoff:
                continue
            shutil.rmtree(bundle)
        except OSError as exc:
            logger.warning("Could not remove old backup %s: %s", bundle.name, exc)
            continue
        removed.append(bundle)
        logger.info(
            "Removed old backup %s",
            bundle.name,
            extra={"event": "retention_removed", "bundle": bundle.name},
        )
    return removed


__all__ = ["is_bundle_name", "bundle_dirs", "bundle_time", "apply_retention"]
