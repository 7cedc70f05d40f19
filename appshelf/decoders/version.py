"""Semantic version canonicalisation and ordering.

Versions reported by packages are loose (``1.2``, ``3``, ``v2.0.1-beta+42``).
They are stored as ``vMAJOR.MINOR.PATCH[-PRERELEASE]``; anything that does not
parse becomes the empty string and never takes part in "latest" selection.
"""

from __future__ import annotations

import re

_SEMVER_RE = re.compile(
    r"""
    ^v
    (?P<major>0|[1-9]\d*)
    (?:\.(?P<minor>0|[1-9]\d*)
       (?:\.(?P<patch>0|[1-9]\d*)
          (?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
          (?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?
       )?
    )?
    $
    """,
    re.VERBOSE,
)


def canonical(version: str) -> str:
    """Canonical ``v``-prefixed form of ``version``, or ``""`` if invalid.

    Missing minor/patch components default to zero; build metadata is
    dropped. Prerelease and build suffixes are only accepted on a full
    three-component version.
    """
    version = version.strip()
    if not version:
        return ""
    if not version.startswith("v"):
        version = "v" + version
    match = _SEMVER_RE.match(version)
    if match is None:
        return ""
    pre = match.group("pre")
    if pre and any(
        part.isdigit() and len(part) > 1 and part.startswith("0") for part in pre.split(".")
    ):
        return ""
    out = f"v{match.group('major')}.{match.group('minor') or 0}.{match.group('patch') or 0}"
    if pre:
        out += f"-{pre}"
    return out


def is_valid(version: str) -> bool:
    return bool(version) and canonical(version) == version


def _pre_key(pre: str) -> tuple:
    # A release sorts after every prerelease of the same core version.
    if not pre:
        return (1,)
    parts = []
    for ident in pre.split("."):
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


def sort_key(version: str) -> tuple:
    """Ordering key for a canonical version. Raises ValueError if invalid."""
    match = _SEMVER_RE.match(version)
    if not version or match is None or canonical(version) != version:
        raise ValueError(f"not a canonical semantic version: {version!r}")
    return (
        int(match.group("major")),
        int(match.group("minor")),
        int(match.group("patch")),
        _pre_key(match.group("pre") or ""),
    )
