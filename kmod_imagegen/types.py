"""Shared type definitions for kmod_imagegen.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PublishAction(str, Enum):
    """Decision taken by the publish gate for one kernel group."""

    BUILD = "build"
    SKIP = "skip"


class JobOutcome(str, Enum):
    """Final state of one kernel group in a run."""

    BUILT = "built"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncStatus(str, Enum):
    """Result of a release document synchronization."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"


class TargetMode(str, Enum):
    """Publish target variant."""

    LOCAL = "local"
    CI = "ci"


class RepairAction(str, Enum):
    """Outcome of repairing the tags of one platform version."""

    CREATED = "created"
    PRESENT = "present"
    MISSING_ALIAS = "missing_alias"
    FAILED = "failed"


class MirrorAction(str, Enum):
    """Outcome of mirroring one driver-toolkit image."""

    MIRRORED = "mirrored"
    PRESENT = "present"
    FAILED = "failed"


@dataclass(frozen=True)
class CatalogEntry:
    """One OpenShift release and its driver-toolkit image."""

    platform_version: str
    build_env_ref: str
    arch: str = "x86_64"


@dataclass(frozen=True)
class MatrixRule:
    """The OpenShift minor lines a driver version targets."""

    driver_version: str
    platform_version_prefixes: tuple[str, ...]


@dataclass(frozen=True)
class ResolvedJob:
    """A catalog entry whose driver-toolkit kernel version is known."""

    platform_version: str
    build_env_ref: str
    kernel_version: str


@dataclass
class KernelGroup:
    """One kernel version and every platform version it serves.

    Attributes:
        kernel_version: The deduplication key.
        platform_versions: Platform versions shipping this kernel.
        sample_build_env_ref: Build env ref of the lexicographically smallest
            platform version; the one used for the build.
    """

    kernel_version: str
    platform_versions: set[str]
    sample_build_env_ref: str

    @property
    def sample_platform_version(self) -> str:
        """Platform version whose build env ref is used for the build."""
        return min(self.platform_versions)


@dataclass(frozen=True)
class PublishDecision:
    """Build or skip decision for a kernel group on one target."""

    group: KernelGroup
    action: PublishAction
    reason: str


@dataclass
class JobResult:
    """Outcome of processing one kernel group."""

    kernel_version: str
    outcome: JobOutcome
    error: str | None = None
    platform_versions: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "kernel_version": self.kernel_version,
            "outcome": self.outcome.value,
            "error": self.error,
            "reason": self.reason,
            "platform_versions": list(self.platform_versions),
            "tags": list(self.tags),
        }


@dataclass
class DroppedEntry:
    """A platform version excluded from the run because resolution failed."""

    platform_version: str
    build_env_ref: str
    error: str


@dataclass
class RunResult:
    """Aggregate outcome of one run for a driver version."""

    driver_version: str
    results: list[JobResult] = field(default_factory=list)
    dropped: list[DroppedEntry] = field(default_factory=list)
    release_notes: SyncStatus | None = None
    release_notes_error: str | None = None

    def count(self, outcome: JobOutcome) -> int:
        """Number of kernel groups that ended in ``outcome``."""
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def built(self) -> int:
        return self.count(JobOutcome.BUILT)

    @property
    def skipped(self) -> int:
        return self.count(JobOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(JobOutcome.FAILED)

    @property
    def success(self) -> bool:
        """True unless a group failed or the release document sync failed."""
        return self.failed == 0 and self.release_notes_error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "driver_version": self.driver_version,
            "success": self.success,
            "built": self.built,
            "skipped": self.skipped,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "dropped": [
                {
                    "platform_version": d.platform_version,
                    "build_env_ref": d.build_env_ref,
                    "error": d.error,
                }
                for d in self.dropped
            ],
            "release_notes": self.release_notes.value if self.release_notes else None,
            "release_notes_error": self.release_notes_error,
        }


__all__ = [
    "CatalogEntry",
    "DroppedEntry",
    "JobOutcome",
    "JobResult",
    "KernelGroup",
    "MatrixRule",
    "MirrorAction",
    "PublishAction",
    "PublishDecision",
    "RepairAction",
    "ResolvedJob",
    "RunResult",
    "SyncStatus",
    "TargetMode",
]
