"""Group resolved jobs by kernel version.

One image is built per distinct kernel and reused by every platform
version that ships it. State lives on the cache instance, created per run.
"""

from __future__ import annotations

from collections.abc import Iterable

from kmod_imagegen.matrix.version_filter import version_key
from kmod_imagegen.types import KernelGroup, ResolvedJob


class KernelGroupingCache:
    """Kernel version -> platform versions mapping for one run."""

    def __init__(self) -> None:
        self._platforms: dict[str, dict[str, str]] = {}

    def add(self, job: ResolvedJob) -> None:
        """Record a resolved job under its kernel version."""
        platforms = self._platforms.setdefault(job.kernel_version, {})
        platforms.setdefault(job.platform_version, job.build_env_ref)

    def __len__(self) -> int:
        return len(self._platforms)

    def __contains__(self, kernel_version: object) -> bool:
        return kernel_version in self._platforms

    def compatible_platform_versions(self, kernel_version: str) -> list[str]:
        """Platform versions served by a kernel, in version order."""
        return sorted(self._platforms.get(kernel_version, {}), key=version_key)

    def groups(self) -> dict[str, KernelGroup]:
        """Return one group per kernel version, in kernel version order.

        The sample build env ref of each group is the one recorded for the
        lexicographically smallest platform version.
        """
        result: dict[str, KernelGroup] = {}
        for kernel_version in sorted(self._platforms, key=version_key):
            platforms = self._platforms[kernel_version]
            sample = min(platforms)
            result[kernel_version] = KernelGroup(
                kernel_version=kernel_version,
                platform_versions=set(platforms),
                sample_build_env_ref=platforms[sample],
            )
        return result


def group(jobs: Iterable[ResolvedJob]) -> dict[str, KernelGroup]:
    """Group resolved jobs by kernel version.

    Args:
        jobs: Resolved jobs, in any order.

    Returns:
        Mapping of kernel version to its group; every input platform version
        appears in exactly one group.
    """
    cache = KernelGroupingCache()
    for job in jobs:
        cache.add(job)
    return cache.groups()


__all__ = ["KernelGroupingCache", "group"]
