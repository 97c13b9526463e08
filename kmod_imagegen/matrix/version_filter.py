"""Platform version matching.

A filter is either a full version (``4.16.2``), which must match exactly,
or a minor line (``4.16``), which matches ``4.16.<patch>`` and nothing else.
``None`` or an empty string means no filter. Anything else is a
configuration error, never a silent non-match.
"""

from __future__ import annotations

import re

from kmod_imagegen.errors import InvalidFilterFormatError

FULL_VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")
MINOR_VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+")
VERSION_TOKEN_PATTERN = re.compile(r"[0-9]+|[A-Za-z]+")


def validate_filter(version_filter: str | None) -> str | None:
    """Validate a platform version filter.

    Args:
        version_filter: Filter string, or None/"" for no filter.

    Returns:
        The filter, or None when it selects everything.

    Raises:
        InvalidFilterFormatError: If the filter has any other shape.
    """
    if version_filter is None or version_filter == "":
        return None
    if FULL_VERSION_PATTERN.fullmatch(version_filter):
        return version_filter
    if MINOR_VERSION_PATTERN.fullmatch(version_filter):
        return version_filter
    raise InvalidFilterFormatError(version_filter)


def matches_prefix(candidate: str, prefix: str) -> bool:
    """Check whether ``candidate`` is ``prefix`` plus exactly one ``.<int>``.

    Args:
        candidate: Concrete platform version (e.g. '4.16.2').
        prefix: Minor line (e.g. '4.16').

    Returns:
        True if candidate belongs to the minor line.
    """
    if not candidate.startswith(prefix + "."):
        return False
    patch = candidate[len(prefix) + 1 :]
    return bool(re.fullmatch(r"[0-9]+", patch))


def matches(candidate: str, version_filter: str | None = None) -> bool:
    """Check whether a platform version satisfies a filter.

    Args:
        candidate: Concrete platform version.
        version_filter: Full version, minor line, or None/"" for no filter.

    Returns:
        True if the candidate is selected by the filter.

    Raises:
        InvalidFilterFormatError: If the filter is malformed.
    """
    normalized = validate_filter(version_filter)
    if normalized is None:
        return True
    if FULL_VERSION_PATTERN.fullmatch(normalized):
        return candidate == normalized
    return matches_prefix(candidate, normalized)


def minor_line(version: str) -> str:
    """Return the MAJOR.MINOR part of a version string."""
    return ".".join(version.split(".")[:2])


def version_key(version: str) -> tuple[tuple[int, int, str], ...]:
    """Sort key ordering versions by their numeric components.

    Digit and letter runs are compared separately, so ``5.14.0-9`` sorts
    before ``5.14.0-10``. Letter runs sort after numbers at the same position.
    """
    key: list[tuple[int, int, str]] = []
    for token in VERSION_TOKEN_PATTERN.findall(version):
        if token.isdigit():
            key.append((0, int(token), ""))
        else:
            key.append((1, 0, token))
    return tuple(key)


__all__ = [
    "FULL_VERSION_PATTERN",
    "MINOR_VERSION_PATTERN",
    "VERSION_TOKEN_PATTERN",
    "matches",
    "matches_prefix",
    "minor_line",
    "validate_filter",
    "version_key",
]
