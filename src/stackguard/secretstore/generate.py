"""Secret generation for a fresh deployment.

Creates the secrets directory with owner-only permissions and writes
one random value per required secret.  Existing secrets are left
untouched unless ``force`` is set.  When the ``age-keygen`` tool is
installed an age identity and its recipients file are created as well
so that backups can be encrypted.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from ..config import AGE_KEY_FILE, AGE_RECIPIENTS_FILE, SECRET_DIR_MODE, SECRET_FILE_MODE, SECRET_LENGTHS
from ..docker.compose import run_command
from ..errors import DependencyError

logger = logging.getLogger(__name__)

# Base64 alphabet without the characters that need quoting in env files.
_ALPHABET = string.ascii_letters + string.digits


@dataclass
class GenerationResult:
    """Names of the secrets written, kept, and age files created."""

    written: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    age_files: List[str] = field(default_factory=list)
    age_available: bool = False


def generate_value(length: int) -> str:
    """Return a cryptographically random string of ``length`` characters."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _write_secret(path: Path, value: str) -> None:
    # Created owner-only; never briefly world-readable.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECRET_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(value)


def _generate_age_files(directory: Path, force: bool, result: GenerationResult) -> None:
    key_path = directory / AGE_KEY_FILE
    recipients_path = directory / AGE_RECIPIENTS_FILE
    if force or not key_path.exists():
        if key_path.exists():
            key_path.unlink()
        proc = run_command(["age-keygen", "-o", str(key_path)], timeout=30)
        if proc.returncode != 0:
            raise DependencyError(f"age-keygen failed: {proc.stderr.strip()}")
        result.age_files.append(AGE_KEY_FILE)
    if force or not recipients_path.exists():
        proc = run_command(["age-keygen", "-y", str(key_path)], timeout=30)
        if proc.returncode != 0:
            raise DependencyError(f"age-keygen -y failed: {proc.stderr.strip()}")
        _write_secret(recipients_path, proc.stdout.strip())
        result.age_files.append(AGE_RECIPIENTS_FILE)


def generate_secrets(
    directory: Path,
    *,
    force: bool = False,
    lengths: Dict[str, int] | None = None,
) -> GenerationResult:
    """Generate missing secrets (or all of them when ``force`` is set).

    Args:
        directory: The secrets directory; created with mode 0700 if absent.
        force: Regenerate secrets that already exist.
        lengths: Mapping of secret name to value length.  Defaults to
            :data:`stackguard.config.SECRET_LENGTHS`.

    Returns:
        A :class:`GenerationResult` listing what was written.
    """
    lengths = lengths or SECRET_LENGTHS
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    result = GenerationResult()
    for name, length in lengths.items():
        path = directory / f"{name}.txt"
        if path.exists() and not force:
            result.kept.append(name)
            continue
        _write_secret(path, generate_value(length))
        result.written.append(name)
        logger.info("Generated secret", extra={"event": "secret_generated", "secret": name})
    result.age_available = shutil.which("age-keygen") is not None
    if result.age_available:
        _generate_age_files(directory, force, result)
    else:
        logger.warning("age-keygen not found; backup encryption keys were not generated")
    # Normalise permissions on everything, including pre-existing files.
    for path in directory.glob("*.txt"):
        path.chmod(SECRET_FILE_MODE)
    directory.chmod(SECRET_DIR_MODE)
    return result


__all__ = ["GenerationResult", "generate_value", "generate_secrets"]
