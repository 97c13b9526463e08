"""Build orchestration for one driver version.

This module handles:
- Expanding the matrix, resolving kernels and grouping by kernel
- Consulting the publish gate for every kernel group
- Building, tagging and pushing each group that needs it
- Releasing per-group work directories and local images
- Synchronizing the release document after unfiltered runs

Each group moves through ``pending -> gate -> skipped | building ->
built | failed``. Configuration errors abort before the first group;
build and publish failures are recorded and the next group proceeds.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kmod_imagegen.builds.executor import BuildExecutor, BuildRequest, BuildResult
from kmod_imagegen.errors import (
    BuildError,
    PublishError,
    RegistryCommandError,
    ReleaseNotesError,
)
from kmod_imagegen.kernels.grouping import KernelGroupingCache
from kmod_imagegen.kernels.resolver import KernelResolver
from kmod_imagegen.matrix.expand import expand, select_rules
from kmod_imagegen.matrix.version_filter import validate_filter, version_key
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.registry.gate import PublishGate
from kmod_imagegen.registry.targets import PublishTarget
from kmod_imagegen.release.notes import ReleaseNotesSynchronizer
from kmod_imagegen.types import (
    CatalogEntry,
    DroppedEntry,
    JobOutcome,
    JobResult,
    KernelGroup,
    MatrixRule,
    PublishAction,
    PublishDecision,
    RunResult,
)

logger = logging.getLogger(__name__)

KERNEL_VERSION_LABEL = "kernel-version"


@dataclass
class RunPlan:
    """Gate decisions for a driver version, computed without building."""

    driver_version: str
    target: PublishTarget
    decisions: list[PublishDecision] = field(default_factory=list)
    dropped: list[DroppedEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "driver_version": self.driver_version,
            "target": self.target.mode.value,
            "image_base": self.target.image_base,
            "groups": [
                {
                    "kernel_version": d.group.kernel_version,
                    "platform_versions": sorted(
                        d.group.platform_versions, key=version_key
                    ),
                    "build_env_ref": d.group.sample_build_env_ref,
                    "action": d.action.value,
                    "reason": d.reason,
                    "tags": self.target.tags_for(self.driver_version, d.group),
                }
                for d in self.decisions
            ],
            "dropped": [
                {"platform_version": d.platform_version, "error": d.error}
                for d in self.dropped
            ],
        }


class BuildOrchestrator:
    """Drive one run for a driver version against one publish target.

    Args:
        resolver: Kernel resolver (memoized for the run).
        gate: Publish gate for the driver version.
        executor: Image build executor.
        client: Container client used to tag, push and clean up.
        target: Registry the images are published to.
        log_dir: Directory receiving per-kernel build logs.
        synchronizer: Release document synchronizer, or None to skip.
        tmp_dir: Parent of per-group work directories (system default if None).
    """

    def __init__(
        self,
        resolver: KernelResolver,
        gate: PublishGate,
        executor: BuildExecutor,
        client: ContainerClient,
        target: PublishTarget,
        log_dir: Path,
        synchronizer: ReleaseNotesSynchronizer | None = None,
        tmp_dir: Path | None = None,
    ) -> None:
        self.resolver = resolver
        self.gate = gate
        self.executor = executor
        self.client = client
        self.target = target
        self.log_dir = log_dir
        self.synchronizer = synchronizer
        self.tmp_dir = tmp_dir

    @property
    def driver_version(self) -> str:
        return self.gate.driver_version

    def prepare(
        self,
        rules: Sequence[MatrixRule],
        catalog: Sequence[CatalogEntry],
        version_filter: str | None = None,
    ) -> tuple[dict[str, KernelGroup], list[DroppedEntry]]:
        """Expand, resolve and group the platform versions of the run.

        Returns:
            Tuple of (kernel groups in kernel version order, dropped entries).

        Raises:
            ConfigurationError: If the filter is malformed, the driver is not
                in the matrix, or nothing is selected.
        """
        version_filter = validate_filter(version_filter)
        selected_rules = select_rules(rules, self.driver_version)
        entries = expand(selected_rules, catalog, version_filter)

        jobs, dropped = self.resolver.resolve_entries(entries)
        if not jobs:
            logger.warning(
                "No platform version of driver %s could be resolved to a kernel",
                self.driver_version,
            )

        cache = KernelGroupingCache()
        for job in jobs:
            cache.add(job)
        groups = cache.groups()
        logger.info(
            "%d platform version(s) share %d distinct kernel(s)",
            len(jobs),
            len(groups),
        )
        return groups, dropped

    def plan(
        self,
        rules: Sequence[MatrixRule],
        catalog: Sequence[CatalogEntry],
        version_filter: str | None = None,
        force: bool = False,
    ) -> RunPlan:
        """Compute gate decisions without building anything."""
        groups, dropped = self.prepare(rules, catalog, version_filter)
        plan = RunPlan(self.driver_version, self.target, dropped=dropped)
        for group in groups.values():
            plan.decisions.append(self.gate.decide(group, self.target, force))
        return plan

    def run(
        self,
        rules: Sequence[MatrixRule],
        catalog: Sequence[CatalogEntry],
        version_filter: str | None = None,
        force: bool = False,
    ) -> RunResult:
        """Run the full pipeline for the driver version.

        Args:
            rules: All matrix rules.
            catalog: Catalog entries.
            version_filter: Optional platform version filter.
            force: Rebuild groups whose kernel tag already exists.

        Returns:
            RunResult with one JobResult per kernel group.

        Raises:
            ConfigurationError: Before any group is processed.
        """
        version_filter = validate_filter(version_filter)
        groups, dropped = self.prepare(rules, catalog, version_filter)
        result = RunResult(driver_version=self.driver_version, dropped=dropped)

        for group in groups.values():
            decision = self.gate.decide(group, self.target, force)
            result.results.append(self.process(decision))

        logger.info(
            "Driver %s: %d built, %d skipped, %d failed, %d dropped",
            self.driver_version,
            result.built,
            result.skipped,
            result.failed,
            len(result.dropped),
        )

        if self.synchronizer is None:
            return result
        if version_filter is not None:
            logger.info("Filtered run; release document not updated")
            return result
        try:
            result.release_notes = self.synchronizer.sync(self.driver_version, groups)
        except ReleaseNotesError as e:
            logger.error("Release document sync failed: %s", e)
            result.release_notes_error = str(e)
        return result

    def process(self, decision: PublishDecision) -> JobResult:
        """Process one kernel group according to its gate decision."""
        group = decision.group
        job = JobResult(
            kernel_version=group.kernel_version,
            outcome=JobOutcome.SKIPPED,
            platform_versions=sorted(group.platform_versions, key=version_key),
            reason=decision.reason,
        )
        if decision.action is PublishAction.SKIP:
            logger.info("Skipping kernel %s: %s", group.kernel_version, decision.reason)
            return job

        request = BuildRequest(
            driver_version=self.driver_version,
            kernel_version=group.kernel_version,
            build_env_ref=group.sample_build_env_ref,
            platform_version=group.sample_platform_version,
        )
        log_path = self.log_dir / self.driver_version / f"{group.kernel_version}.log"
        work_dir: Path | None = None
        local_refs: list[str] = []
        try:
            work_dir = self._make_work_dir()
            built = self.executor.build(request, work_dir, log_path)
            local_refs.append(built.local_ref)
            self._check_kernel_label(built, group)
            job.tags = self._publish(built, group, local_refs)
            job.outcome = JobOutcome.BUILT
            logger.info(
                "Published kernel %s as %s", group.kernel_version, ", ".join(job.tags)
            )
        except (BuildError, PublishError) as e:
            logger.error("Kernel %s failed: %s", group.kernel_version, e)
            job.outcome = JobOutcome.FAILED
            job.error = str(e)
        finally:
            if local_refs:
                self.client.remove_images(*local_refs)
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)
        return job

    def _make_work_dir(self) -> Path:
        try:
            return Path(tempfile.mkdtemp(prefix="kmod_build_", dir=self.tmp_dir))
        except OSError as e:
            raise BuildError(
                f"Failed to create work directory: {e}", code="execution_error"
            ) from e

    def _check_kernel_label(self, built: BuildResult, group: KernelGroup) -> None:
        try:
            label = self.client.inspect_label(built.image_id, KERNEL_VERSION_LABEL)
        except RegistryCommandError as e:
            raise BuildError(
                f"Failed to inspect built image {built.image_id[:12]}: {e}",
                log_path=str(built.log_path),
            ) from e
        if label is not None and label != group.kernel_version:
            raise BuildError(
                f"Built image is labelled for kernel {label}, "
                f"expected {group.kernel_version}",
                log_path=str(built.log_path),
                code="kernel_mismatch",
            )

    def _publish(
        self, built: BuildResult, group: KernelGroup, local_refs: list[str]
    ) -> list[str]:
        tags = self.target.tags_for(self.driver_version, group)
        primary = self.target.kernel_tag(self.driver_version, group.kernel_version)
        # The gate only checks the primary tag, so it must be pushed last.
        for tag in [t for t in tags if t != primary] + [primary]:
            ref = self.target.image_ref(tag)
            try:
                self.client.tag(built.image_id, ref)
                local_refs.append(ref)
                self.client.push(ref)
            except RegistryCommandError as e:
                raise PublishError(f"Failed to publish {tag}: {e}", tag=tag) from e
        return tags


__all__ = ["KERNEL_VERSION_LABEL", "BuildOrchestrator", "RunPlan"]
