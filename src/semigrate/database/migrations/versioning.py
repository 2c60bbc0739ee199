"""
Semantic version helpers

Versions travel through the engine as canonical strings
(``major.minor.patch[-prerelease]``); comparisons always go through semver.
"""

from typing import Iterable, List, Optional, Sequence, TypeVar

import semver

T = TypeVar("T")


def parse_version(version: str) -> semver.Version:
    return semver.Version.parse(version)


def canonical_version(text: Optional[str]) -> Optional[str]:
    """
    Validate ``text`` as a semantic version

    A leading ``v`` or ``=`` is tolerated and build metadata is dropped.

    Returns:
        Canonical version string, or None when ``text`` is not a version
    """
    if not text:
        return None
    candidate = text.strip().lstrip("=v").strip()
    try:
        version = semver.Version.parse(candidate)
    except (ValueError, TypeError):
        return None
    return str(version.replace(build=None))


def latest_version(versions: Iterable[Optional[str]]) -> Optional[str]:
    """Highest release version in ``versions``; invalid and prerelease entries are ignored"""
    best = None
    for text in versions:
        version = canonical_version(text)
        if version is None:
            continue
        parsed = parse_version(version)
        if parsed.prerelease:
            continue
        if best is None or parsed > best:
            best = parsed
    return str(best) if best is not None else None


def compare_versions(a: str, b: str) -> int:
    return parse_version(a).compare(b)


def is_newer(version: str, other: str) -> bool:
    """True when ``version`` sorts strictly after ``other``"""
    return compare_versions(version, other) > 0


def is_compatible(version: str, base: str) -> bool:
    """
    Caret compatibility: does ``version`` satisfy ``^base``?

    ``^1.2.3`` accepts ``>=1.2.3 <2.0.0``, ``^0.2.3`` accepts ``>=0.2.3 <0.3.0``
    and ``^0.0.3`` accepts only ``0.0.3``.
    """
    v = parse_version(version)
    b = parse_version(base)
    if v < b:
        return False
    if v.prerelease and (v.major, v.minor, v.patch) != (b.major, b.minor, b.patch):
        return False
    if b.major:
        return v.major == b.major
    if b.minor:
        return v.major == 0 and v.minor == b.minor
    return (v.major, v.minor, v.patch) == (0, 0, b.patch)


def pending(units: Sequence[T], version: Optional[str]) -> List[T]:
    """Units newer than ``version`` (all of them when it is None), order preserved"""
    if version is None:
        return list(units)
    return [unit for unit in units if is_newer(unit.version, version)]
