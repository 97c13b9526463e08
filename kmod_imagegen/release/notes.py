"""Release notes synchronization.

Renders the catalog of published kernel module images for a driver version
and writes it to a document store only when its content changed. Running
twice with the same groups and tag listing leaves the stored document
untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Protocol

from kmod_imagegen.errors import KmodImagegenError, ReleaseNotesError
from kmod_imagegen.matrix.version_filter import version_key
from kmod_imagegen.types import KernelGroup, SyncStatus

logger = logging.getLogger(__name__)

NOT_PUBLISHED = "not published"

KernelTagFunc = Callable[[str, str], str]


class DocumentStore(Protocol):
    """Named text documents, created if absent."""

    def read(self, name: str) -> str | None: ...

    def write(self, name: str, content: str) -> None: ...


def document_name(driver_version: str) -> str:
    """Name under which a driver version's release document is stored."""
    return f"kmod-{driver_version}"


def normalize(text: str) -> str:
    """Normalize line endings and trailing whitespace for comparison."""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip("\n") + "\n"


def render_release_notes(
    driver_version: str,
    groups: Mapping[str, KernelGroup],
    published_tags: Iterable[str],
    kernel_tag: KernelTagFunc,
    repository: str | None = None,
) -> str:
    """Render the release document for a driver version.

    The output depends only on its inputs: kernels in numeric order,
    platform versions in numeric order, no timestamps.

    Args:
        driver_version: Driver version the document describes.
        groups: Kernel version -> group mapping of the run.
        published_tags: Tags currently present in the repository.
        kernel_tag: Primary tag of a (driver, kernel) pair on the target.
        repository: Image repository shown in the header.

    Returns:
        Markdown document.
    """
    published = set(published_tags)
    lines = [f"# Neuron kernel module images: driver {driver_version}", ""]
    if repository:
        lines.extend([f"Repository: `{repository}`", ""])
    lines.extend(
        [
            "| Kernel | OpenShift versions | Image tag |",
            "|--------|--------------------|-----------|",
        ]
    )
    for kernel_version in sorted(groups, key=version_key):
        group = groups[kernel_version]
        platforms = ", ".join(sorted(group.platform_versions, key=version_key))
        tag = kernel_tag(driver_version, kernel_version)
        tag_cell = f"`{tag}`" if tag in published else f"`{tag}` ({NOT_PUBLISHED})"
        lines.append(f"| {kernel_version} | {platforms} | {tag_cell} |")
    return "\n".join(lines) + "\n"


class ReleaseNotesSynchronizer:
    """Keep the stored release document in line with the run's grouping.

    Attributes:
        store: Where documents are read from and written to.
        tag_lister: Returns the tags currently in the image repository.
        kernel_tag: Primary tag of a (driver, kernel) pair on the target.
        repository: Image repository named in the document header.
    """

    def __init__(
        self,
        store: DocumentStore,
        tag_lister: Callable[[], Iterable[str]],
        kernel_tag: KernelTagFunc,
        repository: str | None = None,
    ) -> None:
        self.store = store
        self.tag_lister = tag_lister
        self.kernel_tag = kernel_tag
        self.repository = repository

    def sync(self, driver_version: str, groups: Mapping[str, KernelGroup]) -> SyncStatus:
        """Render and store the release document if it changed.

        Returns:
            SyncStatus.UPDATED if the document was written, UNCHANGED otherwise.

        Raises:
            ReleaseNotesError: If the tag listing or the store fails.
        """
        name = document_name(driver_version)
        try:
            tags = list(self.tag_lister())
        except KmodImagegenError as e:
            raise ReleaseNotesError(
                f"Failed to list published tags: {e}", code="tag_listing_failed"
            ) from e

        rendered = render_release_notes(
            driver_version, groups, tags, self.kernel_tag, self.repository
        )
        current = self.store.read(name)
        if current is not None and normalize(current) == normalize(rendered):
            logger.info("Release document %s is up to date", name)
            return SyncStatus.UNCHANGED

        self.store.write(name, rendered)
        logger.info(
            "Release document %s %s", name, "created" if current is None else "updated"
        )
        return SyncStatus.UPDATED


__all__ = [
    "DocumentStore",
    "KernelTagFunc",
    "ReleaseNotesSynchronizer",
    "document_name",
    "normalize",
    "render_release_notes",
]
