"""Publish gate: decide whether a kernel group needs building.

The gate checks the primary kernel tag on the target registry. When the
lookup itself fails, the group is built.
"""

from __future__ import annotations

import logging
from typing import Protocol

from kmod_imagegen.registry.targets import PublishTarget
from kmod_imagegen.types import KernelGroup, PublishAction, PublishDecision

logger = logging.getLogger(__name__)


class TagLookup(Protocol):
    """Anything that can tell whether a remote image reference exists."""

    def tag_exists(self, ref: str) -> bool: ...


class PublishGate:
    """Build/skip decisions for one driver version."""

    def __init__(self, lookup: TagLookup, driver_version: str) -> None:
        self.lookup = lookup
        self.driver_version = driver_version

    def decide(
        self, group: KernelGroup, target: PublishTarget, force: bool = False
    ) -> PublishDecision:
        """Decide whether to build a kernel group.

        Args:
            group: Kernel group to decide for.
            target: Registry the group would be published to.
            force: Rebuild even if the kernel tag exists.

        Returns:
            PublishDecision; any lookup failure becomes BUILD.
        """
        tag = target.kernel_tag(self.driver_version, group.kernel_version)
        if force:
            return PublishDecision(group, PublishAction.BUILD, "forced rebuild")

        ref = target.image_ref(tag)
        try:
            exists = self.lookup.tag_exists(ref)
        except Exception as e:
            logger.warning("Existence check for %s inconclusive: %s", ref, e)
            return PublishDecision(
                group, PublishAction.BUILD, f"existence check inconclusive: {e}"
            )

        if exists:
            logger.info("Kernel %s already published as %s", group.kernel_version, tag)
            return PublishDecision(group, PublishAction.SKIP, f"{tag} already published")
        return PublishDecision(group, PublishAction.BUILD, f"{tag} not published")


__all__ = ["PublishGate", "TagLookup"]
