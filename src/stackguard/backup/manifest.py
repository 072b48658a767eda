"""Bundle metadata, checksums and verification.

The metadata document is written first and then covered by
``checksums.sha256``, which uses the ``sha256sum`` text format so a
bundle can also be checked with ``sha256sum -c`` on any host.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, Field

from ..errors import IntegrityError

METADATA_FILE = "backup_metadata.json"
CHECKSUM_FILE = "checksums.sha256"
_CHUNK = 1024 * 1024


class EncryptionInfo(BaseModel):
    mode: str
    required: bool = False
    age_available: bool = False


class RunConfiguration(BaseModel):
    sidecar: bool = False
    retention_days: int = 30


class BackupMetadata(BaseModel):
    """Self-description of one bundle."""

    timestamp: str
    date: str
    version: str
    backup_type: str = "unified"
    encryption: EncryptionInfo
    configuration: RunConfiguration
    versions: Dict[str, str] = Field(default_factory=dict)
    files: List[str] = Field(default_factory=list)
    size_bytes: int = 0
    size: str = "0B"
    file_count: int = 0
    services_backed_up: Dict[str, bool] = Field(default_factory=dict)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def human_size(num: int) -> str:
    """``du -h`` style size string."""
    size = float(num)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


def bundle_files(bundle: Path) -> List[Path]:
    return sorted(p for p in Path(bundle).iterdir() if p.is_file())


def bundle_size(bundle: Path) -> int:
    return sum(p.stat().st_size for p in bundle_files(bundle))


def write_metadata(bundle: Path, metadata: BackupMetadata) -> Path:
    path = Path(bundle) / METADATA_FILE
    with path.open("w", encoding="utf-8") as f:
        json.dump(metadata.model_dump(mode="json"), f, indent=2, sort_keys=True)
    return path


def write_checksums(bundle: Path) -> Path:
    """Hash every file in the bundle except the checksum file itself."""
    lines = [
        f"{sha256_file(p)}  {p.name}\n"
        for p in bundle_files(bundle)
        if p.name != CHECKSUM_FILE
    ]
    path = Path(bundle) / CHECKSUM_FILE
    path.write_text("".join(lines), encoding="utf-8")
    return path


def read_checksums(path: Path) -> Dict[str, str]:
    entries: Dict[str, str] = {}
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        digest, _, name = line.partition("  ")
        entries[name.lstrip("*").strip()] = digest.strip()
    return entries


def verify_bundle(bundle: Path) -> List[str]:
    """Re-hash every listed file and compare against the manifest.

    Returns:
        The names of the verified files.

    Raises:
        IntegrityError: If the manifest is missing, a listed file is
            missing, or any digest differs.
    """
    bundle = Path(bundle)
    manifest = bundle / CHECKSUM_FILE
    if not manifest.is_file():
        raise IntegrityError(f"No {CHECKSUM_FILE} in {bundle}")
    expected = read_checksums(manifest)
    for name, digest in expected.items():
        path = bundle / name
        if not path.is_file():
            raise IntegrityError(f"{name} is listed in {CHECKSUM_FILE} but missing")
        if sha256_file(path) != digest:
            raise IntegrityError(f"Checksum mismatch for {name}")
    return sorted(expected)


__all__ = [
    "METADATA_FILE",
    "CHECKSUM_FILE",
    "BackupMetadata",
    "EncryptionInfo",
    "RunConfiguration",
    "sha256_file",
    "human_size",
    "bundle_files",
    "bundle_size",
    "write_metadata",
    "write_checksums",
    "read_checksums",
    "verify_bundle",
]
