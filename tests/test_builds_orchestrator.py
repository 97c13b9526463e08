"""Tests for builds/orchestrator.py module.

End-to-end runs with a fake registry, extractor and executor.
"""

from pathlib import Path

import pytest

from conftest import DTK_A, DTK_B, DTK_BAD, FakeExecutor, FakeExtractor, FakeRegistry
from kmod_imagegen.builds.executor import BuildExecutor
from kmod_imagegen.builds.orchestrator import BuildOrchestrator
from kmod_imagegen.errors import (
    DriverNotInMatrixError,
    InvalidFilterFormatError,
    NoMatchingVersionsError,
    ReleaseNotesError,
)
from kmod_imagegen.kernels.resolver import KernelResolver
from kmod_imagegen.registry.gate import PublishGate
from kmod_imagegen.registry.targets import PrivateEcrTarget, PublicRegistryTarget
from kmod_imagegen.release.notes import ReleaseNotesSynchronizer
from kmod_imagegen.release.stores import FileDocumentStore
from kmod_imagegen.types import (
    CatalogEntry,
    JobOutcome,
    MatrixRule,
    PublishAction,
    SyncStatus,
)

IMAGE_BASE = "public.ecr.aws/q5p6u7h8/neuron/kmod"


class Harness:
    """Wires an orchestrator to fakes."""

    def __init__(
        self,
        tmp_path: Path,
        extractor: FakeExtractor,
        registry: FakeRegistry | None = None,
        executor: FakeExecutor | None = None,
        target=None,
        with_notes: bool = False,
    ) -> None:
        self.registry = registry or FakeRegistry()
        self.executor = executor or FakeExecutor()
        self.target = target or PublicRegistryTarget(IMAGE_BASE)
        self.store = FileDocumentStore(tmp_path / "notes")
        synchronizer = None
        if with_notes:
            synchronizer = ReleaseNotesSynchronizer(
                self.store,
                lambda: self.registry.list_tags(self.target.image_base),
                self.target.kernel_tag,
                repository=self.target.image_base,
            )
        self.work_root = tmp_path / "work"
        self.work_root.mkdir()
        self.orchestrator = BuildOrchestrator(
            resolver=KernelResolver(extractor),
            gate=PublishGate(self.registry, "1.0.0"),
            executor=self.executor,
            client=self.registry,
            target=self.target,
            log_dir=tmp_path / "logs",
            synchronizer=synchronizer,
            tmp_dir=self.work_root,
        )


class TestScenarios:
    """End-to-end orchestration scenarios."""

    def test_scenario_a_one_build_per_kernel(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """Three platform versions sharing two kernels produce two builds."""
        h = Harness(tmp_path, scenario_extractor)
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        assert len(h.executor.requests) == 2
        assert {r.kernel_version for r in h.executor.requests} == {
            "5.14.0-1",
            "5.14.0-2",
        }
        by_kernel = {r.kernel_version: r for r in result.results}
        assert by_kernel["5.14.0-1"].platform_versions == ["4.16.1", "4.16.2"]
        assert by_kernel["5.14.0-2"].platform_versions == ["4.17.0"]
        assert result.built == 2
        assert result.success is True

    def test_scenario_a_uses_sample_build_env(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        h = Harness(tmp_path, scenario_extractor)
        h.orchestrator.run(scenario_rules, scenario_catalog)

        request = next(r for r in h.executor.requests if r.kernel_version == "5.14.0-1")
        assert request.platform_version == "4.16.1"
        assert request.build_env_ref == DTK_A
        assert scenario_extractor.calls == [DTK_A, DTK_B]

    def test_scenario_b_filter(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """A full version filter selects one entry and one build."""
        h = Harness(tmp_path, scenario_extractor)
        result = h.orchestrator.run(scenario_rules, scenario_catalog, "4.16.1")

        assert len(h.executor.requests) == 1
        assert len(result.results) == 1
        assert result.results[0].platform_versions == ["4.16.1"]

    def test_scenario_c_skip_and_force(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """A published kernel is skipped unless forced."""
        registry = FakeRegistry({f"{IMAGE_BASE}:1.0.0-5.14.0-1"})
        h = Harness(tmp_path, scenario_extractor, registry=registry)

        result = h.orchestrator.run(scenario_rules, scenario_catalog)
        outcomes = {r.kernel_version: r.outcome for r in result.results}
        assert outcomes == {
            "5.14.0-1": JobOutcome.SKIPPED,
            "5.14.0-2": JobOutcome.BUILT,
        }
        assert [r.kernel_version for r in h.executor.requests] == ["5.14.0-2"]

        forced = h.orchestrator.run(scenario_rules, scenario_catalog, force=True)
        assert forced.built == 2

    def test_scenario_d_malformed_descriptor(
        self, tmp_path: Path, scenario_rules: list[MatrixRule]
    ) -> None:
        """A "null" kernel drops its platform version without aborting."""
        catalog = [
            CatalogEntry("4.16.1", DTK_A),
            CatalogEntry("4.16.2", DTK_BAD),
            CatalogEntry("4.17.0", DTK_B),
        ]
        extractor = FakeExtractor(
            {
                DTK_A: {"KERNEL_VERSION": "5.14.0-1"},
                DTK_B: {"KERNEL_VERSION": "5.14.0-2"},
                DTK_BAD: {"KERNEL_VERSION": "null"},
            }
        )
        h = Harness(tmp_path, extractor)
        result = h.orchestrator.run(scenario_rules, catalog)

        assert [d.platform_version for d in result.dropped] == ["4.16.2"]
        served = {pv for r in result.results for pv in r.platform_versions}
        assert "4.16.2" not in served
        assert result.built == 2
        assert result.success is True

    def test_scenario_e_build_failure_continues(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """One failing group does not stop the other; the run fails."""
        executor = FakeExecutor(fail_kernels={"5.14.0-1"})
        h = Harness(tmp_path, scenario_extractor, executor=executor)
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        outcomes = {r.kernel_version: r.outcome for r in result.results}
        assert outcomes["5.14.0-1"] is JobOutcome.FAILED
        assert outcomes["5.14.0-2"] is JobOutcome.BUILT
        failed = next(r for r in result.results if r.outcome is JobOutcome.FAILED)
        assert "exit code 2" in (failed.error or "")
        assert result.success is False


class TestConfigurationErrors:
    """Configuration errors abort before any build."""

    @pytest.mark.parametrize(
        ("rules", "version_filter", "error"),
        [
            ([MatrixRule("1.0.0", ("4.16",))], "4.16.x", InvalidFilterFormatError),
            ([MatrixRule("2.0.0", ("4.16",))], None, DriverNotInMatrixError),
            ([MatrixRule("1.0.0", ("4.18",))], None, NoMatchingVersionsError),
            ([MatrixRule("1.0.0", ("4.16",))], "4.17", NoMatchingVersionsError),
        ],
    )
    def test_aborts_before_work(
        self,
        tmp_path: Path,
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
        rules: list[MatrixRule],
        version_filter: str | None,
        error: type[Exception],
    ) -> None:
        h = Harness(tmp_path, scenario_extractor)
        with pytest.raises(error):
            h.orchestrator.run(rules, scenario_catalog, version_filter)
        assert scenario_extractor.calls == []
        assert h.executor.requests == []

    def test_all_entries_dropped_is_not_fatal(
        self, tmp_path: Path, scenario_rules: list[MatrixRule]
    ) -> None:
        catalog = [CatalogEntry("4.16.1", DTK_BAD)]
        h = Harness(tmp_path, FakeExtractor({}))
        result = h.orchestrator.run(scenario_rules, catalog)
        assert result.results == []
        assert len(result.dropped) == 1
        assert result.success is True


class TestPublishing:
    """Tagging, pushing and cleanup."""

    def test_pushes_all_tags_private_target(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        target = PrivateEcrTarget("1", "us-east-2", "kmod")
        h = Harness(tmp_path, scenario_extractor, target=target)
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        job = next(r for r in result.results if r.kernel_version == "5.14.0-1")
        assert job.tags == [
            "1.0.0-5.14.0-1",
            "1.0.0-ocp4.16-5.14.0-1",
            "neuron-driver1.0.0-ocp4.16.1",
            "neuron-driver1.0.0-ocp4.16.2",
        ]
        assert {target.image_ref(t) for t in job.tags} <= set(h.registry.pushed)
        sources = {src for src, dst in h.registry.tagged if dst.endswith("5.14.0-1")}
        assert sources == {"sha256:5.14.0-1"}

    def test_push_failure_fails_group(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """A failed alias push makes the group FAILED, not BUILT."""
        registry = FakeRegistry()
        registry.push_error_for = {f"{IMAGE_BASE}:1.0.0-ocp4.16.2"}
        h = Harness(tmp_path, scenario_extractor, registry=registry)
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        outcomes = {r.kernel_version: r.outcome for r in result.results}
        assert outcomes == {"5.14.0-1": JobOutcome.FAILED, "5.14.0-2": JobOutcome.BUILT}
        failed = next(r for r in result.results if r.outcome is JobOutcome.FAILED)
        assert "1.0.0-ocp4.16.2" in (failed.error or "")

    def test_primary_tag_pushed_last(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        h = Harness(tmp_path, scenario_extractor)
        h.orchestrator.run(scenario_rules, scenario_catalog, "4.16")
        assert h.registry.pushed == [
            f"{IMAGE_BASE}:1.0.0-ocp4.16.1",
            f"{IMAGE_BASE}:1.0.0-ocp4.16.2",
            f"{IMAGE_BASE}:1.0.0-5.14.0-1",
        ]

    def test_failed_alias_push_is_retried_next_run(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """A group whose alias push failed is not treated as published."""
        registry = FakeRegistry()
        registry.push_error_for = {f"{IMAGE_BASE}:1.0.0-ocp4.16.2"}
        h = Harness(tmp_path, scenario_extractor, registry=registry)
        first = h.orchestrator.run(scenario_rules, scenario_catalog)
        assert {r.kernel_version: r.outcome for r in first.results} == {
            "5.14.0-1": JobOutcome.FAILED,
            "5.14.0-2": JobOutcome.BUILT,
        }
        assert f"{IMAGE_BASE}:1.0.0-5.14.0-1" not in registry.existing

        registry.push_error_for = set()
        second = h.orchestrator.run(scenario_rules, scenario_catalog)
        assert {r.kernel_version: r.outcome for r in second.results} == {
            "5.14.0-1": JobOutcome.BUILT,
            "5.14.0-2": JobOutcome.SKIPPED,
        }
        assert f"{IMAGE_BASE}:1.0.0-ocp4.16.2" in registry.existing

    def test_unusable_log_dir_fails_groups(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """Filesystem errors while preparing a build fail the group, not the run."""
        containerfile = tmp_path / "Containerfile"
        containerfile.write_text("FROM scratch\n")
        executor = BuildExecutor(containerfile, tmp_path)
        h = Harness(tmp_path, scenario_extractor, executor=executor)
        h.orchestrator.log_dir = tmp_path / "Containerfile"

        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        assert result.failed == 2
        assert all("build directories" in (r.error or "") for r in result.results)
        assert list(h.work_root.iterdir()) == []

    def test_unusable_tmp_dir_fails_groups(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        h = Harness(tmp_path, scenario_extractor)
        h.orchestrator.tmp_dir = blocker

        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        assert result.failed == 2
        assert h.executor.requests == []
        assert all("work directory" in (r.error or "") for r in result.results)

    def test_kernel_label_mismatch_fails_group(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        registry = FakeRegistry()
        registry.labels["sha256:5.14.0-2"] = "5.14.0-99"
        h = Harness(tmp_path, scenario_extractor, registry=registry)
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        outcomes = {r.kernel_version: r.outcome for r in result.results}
        assert outcomes["5.14.0-2"] is JobOutcome.FAILED
        assert not any("5.14.0-2" in ref for ref in registry.pushed)

    def test_cleanup_on_success_and_failure(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        """Work directories and local images are released for every group."""
        registry = FakeRegistry()
        registry.push_error_for = {f"{IMAGE_BASE}:1.0.0-5.14.0-2"}
        h = Harness(tmp_path, scenario_extractor, registry=registry)
        h.orchestrator.run(scenario_rules, scenario_catalog)

        assert len(h.executor.work_dirs) == 2
        assert not any(d.exists() for d in h.executor.work_dirs)
        assert list(h.work_root.iterdir()) == []
        for request in h.executor.requests:
            assert request.local_ref in registry.removed
        assert f"{IMAGE_BASE}:1.0.0-5.14.0-2" in registry.removed

    def test_failed_build_leaves_no_work_dir(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        executor = FakeExecutor(fail_kernels={"5.14.0-1", "5.14.0-2"})
        h = Harness(tmp_path, scenario_extractor, executor=executor)
        h.orchestrator.run(scenario_rules, scenario_catalog)
        assert list(h.work_root.iterdir()) == []


class TestPlan:
    """Tests for BuildOrchestrator.plan."""

    def test_plan_does_not_build(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        registry = FakeRegistry({f"{IMAGE_BASE}:1.0.0-5.14.0-2"})
        h = Harness(tmp_path, scenario_extractor, registry=registry)
        plan = h.orchestrator.plan(scenario_rules, scenario_catalog)

        assert h.executor.requests == []
        actions = {d.group.kernel_version: d.action for d in plan.decisions}
        assert actions == {"5.14.0-1": PublishAction.BUILD, "5.14.0-2": PublishAction.SKIP}

        data = plan.to_dict()
        assert data["target"] == "ci"
        assert data["groups"][0]["platform_versions"] == ["4.16.1", "4.16.2"]
        assert data["groups"][0]["tags"][0] == "1.0.0-5.14.0-1"


class TestReleaseNotes:
    """Release document synchronization at the end of a run."""

    def test_unfiltered_run_syncs(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        h = Harness(tmp_path, scenario_extractor, with_notes=True)
        first = h.orchestrator.run(scenario_rules, scenario_catalog)
        assert first.release_notes is SyncStatus.UPDATED

        content = h.store.read("kmod-1.0.0")
        assert content is not None
        assert "4.16.1, 4.16.2" in content
        assert "not published" not in content

        second = h.orchestrator.run(scenario_rules, scenario_catalog)
        assert second.release_notes is SyncStatus.UNCHANGED
        assert second.built == 0
        assert second.skipped == 2

    def test_filtered_run_does_not_sync(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        h = Harness(tmp_path, scenario_extractor, with_notes=True)
        result = h.orchestrator.run(scenario_rules, scenario_catalog, "4.16")
        assert result.release_notes is None
        assert h.store.read("kmod-1.0.0") is None

    def test_sync_failure_fails_run(
        self,
        tmp_path: Path,
        scenario_rules: list[MatrixRule],
        scenario_catalog: list[CatalogEntry],
        scenario_extractor: FakeExtractor,
    ) -> None:
        h = Harness(tmp_path, scenario_extractor, with_notes=True)

        def broken_sync(driver_version, groups):
            raise ReleaseNotesError("API rate limited", code="http_error")

        h.orchestrator.synchronizer.sync = broken_sync  # type: ignore[union-attr]
        result = h.orchestrator.run(scenario_rules, scenario_catalog)

        assert result.built == 2
        assert result.release_notes_error is not None
        assert result.success is False
