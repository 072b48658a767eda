"""File-backed secret store.

Each secret lives in its own file under a single directory, named
``<name>.txt`` and containing the raw value with no trailing
structure.  The store is read-only: it never creates or modifies
secret files (see :mod:`stackguard.secretstore.generate` for that) and
never logs secret values.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import List, Optional

from ..errors import ConfigError


class SecretStore:
    """Read named secrets from individually permissioned files."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path(self, name: str) -> Path:
        """Return the file path for a secret name.

        Names without a suffix map to ``<name>.txt``; names that already
        carry a suffix (``age-recipients.txt``, ``cert.pem``) are used
        as given.
        """
        candidate = Path(name)
        if candidate.suffix:
            return self.directory / candidate
        return self.directory / f"{name}.txt"

    def exists(self, name: str) -> bool:
        path = self.path(name)
        return path.is_file()

    def read(self, name: str) -> str:
        """Return the trimmed value of a secret.

        Raises:
            ConfigError: If the secret file is missing or unreadable.
        """
        path = self.path(name)
        if not path.is_file():
            raise ConfigError(f"Secret file not found: {path}")
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"Secret file not readable: {path} ({exc.strerror})") from exc
        return raw.decode("utf-8", errors="replace").strip()

    def read_optional(self, name: str) -> Optional[str]:
        """Return the secret value, or ``None`` when it cannot be read."""
        try:
            return self.read(name)
        except ConfigError:
            return None

    def list(self) -> List[str]:
        """Return the sorted names of all ``*.txt`` secrets in the directory."""
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob("*.txt") if p.is_file())

    def file_mode(self, name: str) -> Optional[int]:
        """Return the permission bits of a secret file (e.g. ``0o600``)."""
        try:
            return stat.S_IMODE(self.path(name).stat().st_mode)
        except OSError:
            return None

    def dir_mode(self) -> Optional[int]:
        """Return the permission bits of the secrets directory."""
        try:
            return stat.S_IMODE(self.directory.stat().st_mode)
        except OSError:
            return None

    def __repr__(self) -> str:
        return f"SecretStore({str(self.directory)!r})"
