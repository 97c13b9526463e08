"""Driver-toolkit image mirroring.

Copies the driver-toolkit image of every selected catalog entry into a
private repository, tagged with its platform version. Entries whose tag
is already present are left alone. Each copied image is removed from
local storage afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from kmod_imagegen.errors import KmodImagegenError
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.registry.targets import PublishTarget
from kmod_imagegen.types import CatalogEntry, MirrorAction

logger = logging.getLogger(__name__)


@dataclass
class MirrorResult:
    """Mirror outcome for one catalog entry."""

    platform_version: str
    source_ref: str
    target_ref: str
    action: MirrorAction
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "platform_version": self.platform_version,
            "source_ref": self.source_ref,
            "target_ref": self.target_ref,
            "action": self.action.value,
            "error": self.error,
        }


def mirror_build_env_images(
    client: ContainerClient,
    target: PublishTarget,
    entries: Iterable[CatalogEntry],
    platform: str | None = None,
) -> list[MirrorResult]:
    """Copy driver-toolkit images into the target repository.

    Args:
        client: Container client used for lookups, pull, tag and push.
        target: Repository receiving the images.
        entries: Catalog entries to mirror.
        platform: Platform to pull (e.g. 'linux/amd64').

    Returns:
        One result per entry, in input order. Failures are recorded, not raised.
    """
    results: list[MirrorResult] = []

    for entry in entries:
        target_ref = target.image_ref(entry.platform_version)
        result = MirrorResult(
            platform_version=entry.platform_version,
            source_ref=entry.build_env_ref,
            target_ref=target_ref,
            action=MirrorAction.FAILED,
        )
        results.append(result)

        try:
            present = client.tag_exists(target_ref)
        except KmodImagegenError as e:
            logger.warning("Existence check for %s inconclusive: %s", target_ref, e)
            present = False
        if present:
            logger.info(
                "Driver-toolkit for %s already mirrored", entry.platform_version
            )
            result.action = MirrorAction.PRESENT
            continue

        try:
            client.pull(entry.build_env_ref, platform=platform)
            try:
                client.tag(entry.build_env_ref, target_ref)
                client.push(target_ref)
            finally:
                client.remove_images(entry.build_env_ref, target_ref)
            logger.info("Mirrored %s to %s", entry.build_env_ref, target_ref)
            result.action = MirrorAction.MIRRORED
        except KmodImagegenError as e:
            logger.error(
                "Failed to mirror driver-toolkit for %s: %s", entry.platform_version, e
            )
            result.error = str(e)

    return results


__all__ = ["MirrorResult", "mirror_build_env_images"]
