"""Kernel version resolution for driver-toolkit images.

This module handles:
- Extracting the release descriptor from a driver-toolkit image
- Parsing and validating the KERNEL_VERSION it declares
- Memoizing results per image reference for the duration of a run

Many platform versions share one driver-toolkit image, so each reference
is inspected at most once per run, failures included.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from kmod_imagegen.config import DEFAULT_DTK_RELEASE_PATH
from kmod_imagegen.errors import KmodImagegenError, ResolutionError
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.types import CatalogEntry, DroppedEntry, ResolvedJob

logger = logging.getLogger(__name__)

KERNEL_VERSION_FIELD = "KERNEL_VERSION"

# Kernel versions start with MAJOR.MINOR.PATCH; the distro suffix is free-form
KERNEL_VERSION_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")


class MetadataExtractor(Protocol):
    """Reads the release descriptor of a build environment image."""

    def extract(self, build_env_ref: str) -> dict[str, Any]: ...


class ContainerMetadataExtractor:
    """Extract the descriptor by copying it out of a stopped container.

    The image is pulled only if absent locally, and removed again afterwards
    if this extractor pulled it.
    """

    def __init__(
        self,
        client: ContainerClient,
        descriptor_path: str = DEFAULT_DTK_RELEASE_PATH,
    ) -> None:
        self.client = client
        self.descriptor_path = descriptor_path

    def extract(self, build_env_ref: str) -> dict[str, Any]:
        """Read the release descriptor of an image.

        Args:
            build_env_ref: Driver-toolkit image reference.

        Returns:
            Parsed descriptor.

        Raises:
            ResolutionError: If the image cannot be pulled or inspected, or
                the descriptor is missing or not a JSON object.
        """
        pulled = False
        container_id: str | None = None
        try:
            if not self.client.image_exists(build_env_ref):
                self.client.pull(build_env_ref)
                pulled = True

            container_id = self.client.create_container(build_env_ref)
            with tempfile.TemporaryDirectory(prefix="kmod-dtk-") as tmp:
                dest = Path(tmp) / "driver-toolkit-release.json"
                self.client.copy_from_container(
                    container_id, self.descriptor_path, dest
                )
                text = dest.read_text(encoding="utf-8")
        except KmodImagegenError as e:
            raise ResolutionError(build_env_ref, str(e)) from e
        except OSError as e:
            raise ResolutionError(
                build_env_ref, f"Failed to read {self.descriptor_path}: {e}"
            ) from e
        finally:
            if container_id:
                self.client.remove_container(container_id)
            if pulled:
                self.client.remove_images(build_env_ref)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ResolutionError(
                build_env_ref, f"Invalid JSON in {self.descriptor_path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise ResolutionError(
                build_env_ref, f"{self.descriptor_path} is not a JSON object"
            )
        return data


def parse_kernel_version(build_env_ref: str, descriptor: dict[str, Any]) -> str:
    """Return the validated kernel version declared by a descriptor.

    Raises:
        ResolutionError: If the field is missing, null, the string "null",
            or does not start with MAJOR.MINOR.PATCH.
    """
    value = descriptor.get(KERNEL_VERSION_FIELD)
    if value is None or value == "null" or value == "":
        raise ResolutionError(build_env_ref, f"{KERNEL_VERSION_FIELD} is not set")
    if not isinstance(value, str):
        raise ResolutionError(
            build_env_ref,
            f"{KERNEL_VERSION_FIELD} must be a string, got {type(value).__name__}",
        )
    value = value.strip()
    if not KERNEL_VERSION_PATTERN.match(value):
        raise ResolutionError(
            build_env_ref, f"Malformed {KERNEL_VERSION_FIELD}: {value!r}"
        )
    return value


class KernelResolver:
    """Resolve build env refs to kernel versions, memoized per reference."""

    def __init__(self, extractor: MetadataExtractor) -> None:
        self.extractor = extractor
        self._memo: dict[str, str | ResolutionError] = {}

    def resolve(self, build_env_ref: str) -> str:
        """Return the kernel version of a build environment image.

        Raises:
            ResolutionError: If the kernel version cannot be determined. A
                failed reference fails again without being re-inspected.
        """
        cached = self._memo.get(build_env_ref)
        if isinstance(cached, ResolutionError):
            raise cached
        if cached is not None:
            return cached

        try:
            descriptor = self.extractor.extract(build_env_ref)
            kernel_version = parse_kernel_version(build_env_ref, descriptor)
        except ResolutionError as e:
            self._memo[build_env_ref] = e
            raise

        logger.debug("Resolved %s to kernel %s", build_env_ref, kernel_version)
        self._memo[build_env_ref] = kernel_version
        return kernel_version

    def resolve_entries(
        self, entries: Iterable[CatalogEntry]
    ) -> tuple[list[ResolvedJob], list[DroppedEntry]]:
        """Resolve every entry, dropping the ones that fail.

        Returns:
            Tuple of (resolved jobs, dropped entries), both in input order.
        """
        jobs: list[ResolvedJob] = []
        dropped: list[DroppedEntry] = []
        for entry in entries:
            try:
                kernel_version = self.resolve(entry.build_env_ref)
            except ResolutionError as e:
                logger.warning(
                    "Skipping platform version %s: %s", entry.platform_version, e
                )
                dropped.append(
                    DroppedEntry(
                        platform_version=entry.platform_version,
                        build_env_ref=entry.build_env_ref,
                        error=str(e),
                    )
                )
                continue
            jobs.append(
                ResolvedJob(
                    platform_version=entry.platform_version,
                    build_env_ref=entry.build_env_ref,
                    kernel_version=kernel_version,
                )
            )
        return jobs, dropped


__all__ = [
    "KERNEL_VERSION_PATTERN",
    "ContainerMetadataExtractor",
    "KernelResolver",
    "MetadataExtractor",
    "parse_kernel_version",
]
