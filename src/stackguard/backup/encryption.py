"""Encryption/compression strategy for backup artifacts.

The mode is resolved once per run and then applied uniformly to every
artifact.  Encryption is delegated to the ``age`` CLI; the fallback is
gzip compression through the standard library.
"""

from __future__ import annotations

import gzip
import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Optional

from ..docker.compose import Runner, run_command
from ..errors import ArtifactError, ConfigError, StackguardError

logger = logging.getLogger(__name__)

AGE_TIMEOUT = 1800.0


class EncryptionMode(str, Enum):
    AUTO = "auto"
    AGE = "age"
    GZIP = "gzip"
    NONE = "none"


SUFFIXES = {EncryptionMode.AGE: ".age", EncryptionMode.GZIP: ".gz", EncryptionMode.NONE: ""}


def resolve_encryption_mode(
    requested: str,
    *,
    age_available: bool,
    recipients_exists: bool,
    required: bool = False,
) -> EncryptionMode:
    """Pick the transform for this run.

    ``auto`` prefers age when the tool is installed and a recipients
    file exists, else gzip.  An explicit ``age`` that cannot be honoured
    fails when encryption is required and otherwise falls back to gzip.

    Raises:
        ConfigError: For an unknown mode, or when age is required but
            unavailable.
    """
    try:
        mode = EncryptionMode(str(requested).strip().lower())
    except ValueError:
        raise ConfigError(
            f"Invalid encryption mode: {requested}. Valid options: auto, age, gzip, none"
        ) from None
    if mode is EncryptionMode.AUTO:
        if age_available and recipients_exists:
            logger.info("Auto-detected age encryption availability")
            return EncryptionMode.AGE
        logger.info("Age encryption not available, using gzip compression")
        return EncryptionMode.GZIP
    if mode is EncryptionMode.AGE:
        problem = None
        if not age_available:
            problem = "age is not installed"
        elif not recipients_exists:
            problem = "age recipients file not found"
        if problem:
            if required:
                raise ConfigError(f"Age encryption required but unavailable: {problem}")
            logger.warning("%s, falling back to gzip compression", problem.capitalize())
            return EncryptionMode.GZIP
    return mode


def _check_source(path: Path) -> None:
    if not path.is_file():
        raise ArtifactError(f"Source file not found: {path.name}")
    if path.stat().st_size == 0:
        raise ArtifactError(f"Source file is empty: {path.name}")


def apply_transform(
    path: Path,
    mode: EncryptionMode,
    recipients: Optional[Path] = None,
    runner: Runner = run_command,
) -> Path:
    """Encrypt, compress or keep ``path`` and return the resulting file.

    The plaintext is deleted after a successful age or gzip transform.

    Raises:
        ArtifactError: If the source is missing or empty, or the
            transform fails.
    """
    path = Path(path)
    _check_source(path)
    if mode is EncryptionMode.NONE:
        return path
    target = path.with_name(path.name + SUFFIXES[mode])
    if mode is EncryptionMode.AGE:
        if recipients is None:
            raise ArtifactError("age encryption needs a recipients file")
        try:
            proc = runner(
                ["age", "-R", str(recipients), "-o", str(target), str(path)],
                timeout=AGE_TIMEOUT,
            )
        except StackguardError as exc:
            raise ArtifactError(f"Failed to encrypt {path.name}: {exc}") from exc
        if proc.returncode != 0:
            raise ArtifactError(f"Failed to encrypt {path.name}: {(proc.stderr or '').strip()}")
    elif mode is EncryptionMode.GZIP:
        try:
            with path.open("rb") as src, gzip.open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as exc:
            raise ArtifactError(f"Failed to compress {path.name}: {exc}") from exc
    else:
        raise ArtifactError(f"Unresolved encryption mode: {mode.value}")
    path.unlink()
    logger.info(
        "Processed %s",
        path.name,
        extra={"event": "artifact_transformed", "artifact": target.name, "mode": mode.value},
    )
    return target


def restore_artifact(
    path: Path,
    identity: Optional[Path] = None,
    dest: Optional[Path] = None,
    runner: Runner = run_command,
) -> Path:
    """Reverse :func:`apply_transform` into ``dest`` (default: suffix stripped).

    The transformed file is left in place.

    Raises:
        ArtifactError: If decryption or decompression fails.
    """
    path = Path(path)
    if path.suffix not in (".age", ".gz"):
        return path
    dest = Path(dest) if dest else path.with_suffix("")
    if path.suffix == ".age":
        if identity is None:
            raise ArtifactError("age decryption needs an identity file")
        try:
            proc = runner(
                ["age", "-d", "-i", str(identity), "-o", str(dest), str(path)],
                timeout=AGE_TIMEOUT,
            )
        except StackguardError as exc:
            raise ArtifactError(f"Failed to decrypt {path.name}: {exc}") from exc
        if proc.returncode != 0:
            raise ArtifactError(f"Failed to decrypt {path.name}: {(proc.stderr or '').strip()}")
        return dest
    try:
        with gzip.open(path, "rb") as src, dest.open("wb") as dst:
            shutil.copyfileobj(src, dst)
    except OSError as exc:
        raise ArtifactError(f"Failed to decompress {path.name}: {exc}") from exc
    return dest


__all__ = ["EncryptionMode", "resolve_encryption_mode", "apply_transform", "restore_artifact"]
