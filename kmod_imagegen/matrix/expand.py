"""Build matrix expansion.

Turns the matrix rules of a driver version into the concrete catalog
entries (OpenShift release + driver-toolkit image) to consider for the run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from kmod_imagegen.errors import DriverNotInMatrixError, NoMatchingVersionsError
from kmod_imagegen.matrix.version_filter import (
    matches,
    matches_prefix,
    validate_filter,
    version_key,
)
from kmod_imagegen.types import CatalogEntry, MatrixRule

logger = logging.getLogger(__name__)


def select_rules(rules: Sequence[MatrixRule], driver_version: str) -> list[MatrixRule]:
    """Return the matrix rules declared for a driver version.

    Args:
        rules: All matrix rules.
        driver_version: Driver version requested for the run.

    Returns:
        Rules for the driver, in file order.

    Raises:
        DriverNotInMatrixError: If the matrix has no rule for the driver.
    """
    selected = [r for r in rules if r.driver_version == driver_version]
    if not selected:
        raise DriverNotInMatrixError(driver_version)
    return selected


def expand(
    rules: Sequence[MatrixRule],
    catalog: Sequence[CatalogEntry],
    version_filter: str | None = None,
) -> list[CatalogEntry]:
    """Select the catalog entries targeted by matrix rules.

    An entry is selected when its platform version is ``<prefix>.<patch>``
    for one of a rule's prefixes and it satisfies the optional filter.

    Args:
        rules: Matrix rules to expand.
        catalog: Catalog entries.
        version_filter: Optional user filter (MAJOR.MINOR or MAJOR.MINOR.PATCH).

    Returns:
        Selected entries, unique by platform version, in version order.

    Raises:
        InvalidFilterFormatError: If the filter is malformed.
        NoMatchingVersionsError: If any driver version selects nothing.
    """
    version_filter = validate_filter(version_filter)

    by_driver: dict[str, list[str]] = {}
    for rule in rules:
        prefixes = by_driver.setdefault(rule.driver_version, [])
        prefixes.extend(
            p for p in rule.platform_version_prefixes if p not in prefixes
        )

    selected: dict[str, CatalogEntry] = {}
    for driver_version, prefixes in by_driver.items():
        driver_selection = [
            entry
            for entry in catalog
            if any(matches_prefix(entry.platform_version, p) for p in prefixes)
            and matches(entry.platform_version, version_filter)
        ]
        if not driver_selection:
            raise NoMatchingVersionsError(driver_version, version_filter)

        logger.info(
            "Driver %s: %d platform version(s) selected from %s",
            driver_version,
            len(driver_selection),
            ", ".join(prefixes),
        )
        for entry in driver_selection:
            selected.setdefault(entry.platform_version, entry)

    return sorted(selected.values(), key=lambda e: version_key(e.platform_version))


__all__ = ["expand", "select_rules"]
