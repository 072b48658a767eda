"""Numeric version comparison.

Versions are compared as integers (``major * 10**6 + minor * 10**3 +
patch``) rather than as strings, so ``"9.0.0" < "10.0.0"`` holds.
"""

from __future__ import annotations

import re

_NUMBERS = re.compile(r"\d+")


def version_to_int(version: str) -> int:
    """Encode the first three numeric fields of ``version`` as an integer.

    Leading ``v`` and build suffixes (``-ce``, ``+dfsg``) are ignored;
    missing fields count as zero.

    >>> version_to_int("20.10.7")
    20010007
    """
    core = re.split(r"[-+ ]", version.strip().lstrip("vV"), maxsplit=1)[0]
    parts = [int(p) for p in _NUMBERS.findall(core)[:3]]
    parts += [0] * (3 - len(parts))
    major, minor, patch = parts
    return major * 1_000_000 + minor * 1_000 + patch


def version_at_least(version: str, minimum: str) -> bool:
    return version_to_int(version) >= version_to_int(minimum)


__all__ = ["version_to_int", "version_at_least"]
