"""Dual-tag repair.

Older publishes pushed only the platform alias tag. For every platform
version whose alias exists but whose kernel tag does not, the alias image
is pulled, tagged with the kernel tag and pushed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from kmod_imagegen.errors import KmodImagegenError
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.registry.targets import PublishTarget
from kmod_imagegen.types import RepairAction, ResolvedJob

logger = logging.getLogger(__name__)


@dataclass
class RepairResult:
    """Repair outcome for one platform version."""

    platform_version: str
    kernel_version: str
    kernel_tag: str
    alias_tag: str
    action: RepairAction
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "platform_version": self.platform_version,
            "kernel_version": self.kernel_version,
            "kernel_tag": self.kernel_tag,
            "alias_tag": self.alias_tag,
            "action": self.action.value,
            "error": self.error,
        }


def repair_dual_tags(
    client: ContainerClient,
    target: PublishTarget,
    driver_version: str,
    jobs: Iterable[ResolvedJob],
) -> list[RepairResult]:
    """Create missing kernel tags from existing platform alias tags.

    Args:
        client: Container client used for lookups, pull, tag and push.
        target: Repository to repair.
        driver_version: Driver version whose tags are repaired.
        jobs: Resolved platform versions to check.

    Returns:
        One result per job, in input order. Failures are recorded, not raised.
    """
    results: list[RepairResult] = []
    published: dict[str, bool] = {}

    for job in jobs:
        kernel_tag = target.kernel_tag(driver_version, job.kernel_version)
        alias_tag = target.alias_tag(driver_version, job.platform_version)
        kernel_ref = target.image_ref(kernel_tag)
        alias_ref = target.image_ref(alias_tag)
        result = RepairResult(
            platform_version=job.platform_version,
            kernel_version=job.kernel_version,
            kernel_tag=kernel_tag,
            alias_tag=alias_tag,
            action=RepairAction.FAILED,
        )
        results.append(result)

        try:
            if kernel_ref not in published:
                published[kernel_ref] = client.tag_exists(kernel_ref)
            if published[kernel_ref]:
                result.action = RepairAction.PRESENT
                continue

            if not client.tag_exists(alias_ref):
                logger.warning(
                    "Neither %s nor %s exists; nothing to repair", kernel_tag, alias_tag
                )
                result.action = RepairAction.MISSING_ALIAS
                continue

            logger.info("Creating %s from %s", kernel_tag, alias_tag)
            client.pull(alias_ref)
            try:
                client.tag(alias_ref, kernel_ref)
                client.push(kernel_ref)
            finally:
                client.remove_images(alias_ref, kernel_ref)
            published[kernel_ref] = True
            result.action = RepairAction.CREATED
        except KmodImagegenError as e:
            logger.error("Failed to repair %s: %s", kernel_tag, e)
            result.error = str(e)

    return results


__all__ = ["RepairResult", "repair_dual_tags"]
