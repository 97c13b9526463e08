"""Image pair CSV export.

Lists, for every platform version of a driver whose kernel image is
published, the platform alias tag, the kernel tag and the pull URL.
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from kmod_imagegen.errors import KmodImagegenError
from kmod_imagegen.matrix.version_filter import version_key
from kmod_imagegen.registry.targets import PublishTarget
from kmod_imagegen.types import KernelGroup

logger = logging.getLogger(__name__)

CSV_HEADER = ("alias_tag", "kernel_tag", "pull_url")


@dataclass(frozen=True)
class ImagePair:
    """Alias and kernel tag of one published platform version."""

    alias_tag: str
    kernel_tag: str
    pull_url: str


def collect_image_pairs(
    target: PublishTarget,
    driver_version: str,
    groups: Mapping[str, KernelGroup],
    published_tags: Iterable[str],
) -> list[ImagePair]:
    """Return the image pairs whose kernel tag is published.

    Rows are ordered by platform version.
    """
    published = set(published_tags)
    pairs: list[tuple[str, ImagePair]] = []
    for kernel_version, group in groups.items():
        kernel_tag = target.kernel_tag(driver_version, kernel_version)
        if kernel_tag not in published:
            logger.debug("Skipping unpublished kernel tag %s", kernel_tag)
            continue
        for platform_version in group.platform_versions:
            alias_tag = target.alias_tag(driver_version, platform_version)
            pairs.append(
                (
                    platform_version,
                    ImagePair(alias_tag, kernel_tag, target.image_ref(alias_tag)),
                )
            )
    pairs.sort(key=lambda item: version_key(item[0]))
    return [pair for _, pair in pairs]


def render_csv(pairs: Iterable[ImagePair]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for pair in pairs:
        writer.writerow((pair.alias_tag, pair.kernel_tag, pair.pull_url))
    return buffer.getvalue()


def write_csv(pairs: Iterable[ImagePair], output: Path) -> int:
    """Write image pairs to a CSV file.

    Returns:
        Number of rows written, header excluded.

    Raises:
        KmodImagegenError: If the file cannot be written.
    """
    pairs = list(pairs)
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(render_csv(pairs), encoding="utf-8")
    except OSError as e:
        raise KmodImagegenError(
            f"Failed to write {output}: {e}", code="export_failed"
        ) from e
    logger.info("Wrote %d image pair(s) to %s", len(pairs), output)
    return len(pairs)


__all__ = [
    "CSV_HEADER",
    "ImagePair",
    "collect_image_pairs",
    "render_csv",
    "write_csv",
]
