"""Secrets-aware loader for ``.env`` style environment definitions.

The loader reads ``KEY=VALUE`` lines, processes quoting, resolves
``file://`` indirection through a :class:`SecretStore` and refuses any
value that still contains command-substitution syntax.  Nothing is
ever executed or exported: the result is a plain mapping that callers
pass explicitly into :class:`stackguard.settings.models.Settings`.

In strict mode the first defect raises :class:`ConfigError`.  In
lenient mode each defective line is counted, recorded as an issue and
skipped so that one bad line degrades rather than aborts the run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional

from ..errors import ConfigError
from ..secretstore.store import SecretStore

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
EXPORT_PREFIX = re.compile(r"^export\s+")
SECRET_SCHEME = "file://"
# $( ... ), backticks and ${ ... } would be expanded by a shell that sources the file.
SUBSTITUTION_MARKERS = ("$(", "`", "${")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"'}


@dataclass
class ConfigEnvironment(Mapping[str, str]):
    """Resolved variables plus bookkeeping about how the load went.

    Attributes:
        values: Mapping of variable name to resolved string value.
        loaded: Number of lines that produced a value.
        errors: Number of lines rejected in lenient mode.
        issues: Human-readable description of every rejected line.
        source: The file the values were read from, if any.
    """

    values: Dict[str, str] = field(default_factory=dict)
    loaded: int = 0
    errors: int = 0
    issues: List[str] = field(default_factory=list)
    source: Optional[Path] = None

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


def _unescape(text: str) -> str:
    """Process backslash escapes inside a double-quoted value."""
    out: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in _ESCAPES:
            out.append(_ESCAPES[text[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return _unescape(value[1:-1])
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    return value


def _resolve_secret(reference: str, store: SecretStore) -> str:
    """Return the trimmed contents of a ``file://`` reference.

    Absolute paths are read directly; anything else is looked up
    inside the secrets directory and may not resolve outside it.
    Undecodable bytes are replaced, as :meth:`SecretStore.read` does.
    """
    target = reference[len(SECRET_SCHEME):].strip()
    if not target:
        raise ConfigError("Empty file:// reference")
    path = Path(target)
    if path.is_absolute():
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"Cannot read secret file {path}: {exc.strerror}") from exc
        return raw.decode("utf-8", errors="replace").strip()
    directory = store.directory.resolve()
    if directory not in store.path(target).resolve().parents:
        raise ConfigError(f"Secret reference outside the secrets directory: {target}")
    return store.read(target)


def _has_substitution(value: str) -> bool:
    return any(marker in value for marker in SUBSTITUTION_MARKERS)


def parse_line(line: str, store: SecretStore) -> Optional[tuple[str, str]]:
    """Parse one line into ``(key, value)``.

    Returns ``None`` for blank and comment lines.

    Raises:
        ConfigError: If the line is malformed, a secret reference cannot
            be resolved, or the value contains command substitution.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    stripped = EXPORT_PREFIX.sub("", stripped, count=1)
    if "=" not in stripped:
        raise ConfigError(f"Missing '=' in line: {stripped[:40]}")
    key, raw = stripped.split("=", 1)
    key = key.strip()
    if not KEY_PATTERN.match(key):
        raise ConfigError(f"Invalid variable name: {key!r}")
    value = _unquote(raw.strip())
    if value.startswith(SECRET_SCHEME):
        value = _resolve_secret(value, store)
    if _has_substitution(value):
        raise ConfigError(f"Command substitution is not allowed in {key}")
    return key, value


def load(
    source: Path,
    *,
    strict: bool = False,
    store: Optional[SecretStore] = None,
) -> ConfigEnvironment:
    """Load an environment definition file.

    Args:
        source: Path of the ``.env`` style file.
        strict: Raise on the first defect instead of skipping the line.
        store: Secret store used for relative ``file://`` references.
            Defaults to a store rooted at ``<source dir>/secrets``.

    Returns:
        A :class:`ConfigEnvironment` with the resolved values and the
        loaded/error counters.

    Raises:
        ConfigError: In strict mode, when the source is missing or any
            line is defective.
    """
    source = Path(source)
    store = store or SecretStore(source.parent / "secrets")
    env = ConfigEnvironment(source=source)
    if not source.is_file():
        if strict:
            raise ConfigError(f"Environment file not found: {source}")
        logger.warning("Environment file not found: %s", source, extra={"event": "env_missing"})
        return env
    with source.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            try:
                parsed = parse_line(line, store)
            except ConfigError as exc:
                if strict:
                    raise ConfigError(f"{source}:{lineno}: {exc}") from exc
                env.errors += 1
                env.issues.append(f"line {lineno}: {exc}")
                logger.warning(
                    "Skipped environment line %d: %s",
                    lineno,
                    exc,
                    extra={"event": "env_line_rejected", "line": lineno},
                )
                continue
            if parsed is None:
                continue
            key, value = parsed
            env.values[key] = value
            env.loaded += 1
    logger.info(
        "Loaded environment: %d values, %d errors",
        env.loaded,
        env.errors,
        extra={"event": "env_loaded", "loaded": env.loaded, "errors": env.errors},
    )
    return env


__all__ = ["ConfigEnvironment", "KEY_PATTERN", "parse_line", "load"]
