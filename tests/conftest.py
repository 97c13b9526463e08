"""Shared fixtures for kmod_imagegen tests.

The fakes stand in for the container tool, the registry and the build
executor so that orchestration can be tested without podman or a network.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from kmod_imagegen.builds.executor import BuildRequest, BuildResult
from kmod_imagegen.errors import BuildError, RegistryCommandError, ResolutionError
from kmod_imagegen.types import CatalogEntry, MatrixRule

DTK_A = "quay.io/openshift-release-dev/ocp-v4.0-art-dev@sha256:aaaa"
DTK_B = "quay.io/openshift-release-dev/ocp-v4.0-art-dev@sha256:bbbb"
DTK_BAD = "quay.io/openshift-release-dev/ocp-v4.0-art-dev@sha256:dead"


class FakeExtractor:
    """Metadata extractor returning canned descriptors."""

    def __init__(self, descriptors: dict[str, Any]) -> None:
        self.descriptors = descriptors
        self.calls: list[str] = []

    def extract(self, build_env_ref: str) -> dict[str, Any]:
        self.calls.append(build_env_ref)
        value = self.descriptors.get(build_env_ref)
        if value is None:
            raise ResolutionError(build_env_ref, "image not found")
        if isinstance(value, Exception):
            raise value
        return value


class FakeRegistry:
    """In-memory stand-in for ContainerClient."""

    def __init__(self, existing: set[str] | None = None) -> None:
        self.existing: set[str] = set(existing or ())
        self.lookup_error: Exception | None = None
        self.push_error_for: set[str] = set()
        self.labels: dict[str, str] = {}
        self.tagged: list[tuple[str, str]] = []
        self.pushed: list[str] = []
        self.pulled: list[str] = []
        self.removed: list[str] = []
        self.logins: list[tuple[str, str]] = []

    def login(self, registry: str, username: str, password: str) -> None:
        self.logins.append((registry, username))

    def tag_exists(self, ref: str) -> bool:
        if self.lookup_error is not None:
            raise self.lookup_error
        return ref in self.existing

    def list_tags(self, repository: str) -> list[str]:
        prefix = f"{repository}:"
        return sorted(r[len(prefix) :] for r in self.existing if r.startswith(prefix))

    def pull(self, ref: str, platform: str | None = None) -> None:
        self.pulled.append(ref)

    def tag(self, source: str, target: str) -> None:
        self.tagged.append((source, target))

    def push(self, ref: str) -> None:
        if ref in self.push_error_for:
            raise RegistryCommandError(f"push {ref} denied", exit_code=125)
        self.pushed.append(ref)
        self.existing.add(ref)

    def inspect_label(self, ref: str, label: str) -> str | None:
        return self.labels.get(ref)

    def remove_images(self, *refs: str) -> bool:
        self.removed.extend(refs)
        return True


class FakeExecutor:
    """Build executor recording requests; fails for selected kernels."""

    def __init__(self, fail_kernels: set[str] | None = None) -> None:
        self.fail_kernels = set(fail_kernels or ())
        self.requests: list[BuildRequest] = []
        self.work_dirs: list[Path] = []

    def build(self, request: BuildRequest, work_dir: Path, log_path: Path) -> BuildResult:
        self.requests.append(request)
        self.work_dirs.append(work_dir)
        if request.kernel_version in self.fail_kernels:
            raise BuildError("Build failed with exit code 2", exit_code=2)
        now = datetime.now(timezone.utc)
        return BuildResult(
            image_id=f"sha256:{request.kernel_version}",
            local_ref=request.local_ref,
            log_path=log_path,
            started_at=now,
            finished_at=now,
            command="podman build",
        )


@pytest.fixture
def scenario_catalog() -> list[CatalogEntry]:
    """Catalog with two 4.16 releases sharing a toolkit image and one 4.17."""
    return [
        CatalogEntry("4.16.1", DTK_A),
        CatalogEntry("4.16.2", DTK_A),
        CatalogEntry("4.17.0", DTK_B),
    ]


@pytest.fixture
def scenario_rules() -> list[MatrixRule]:
    return [MatrixRule("1.0.0", ("4.16", "4.17"))]


@pytest.fixture
def scenario_extractor() -> FakeExtractor:
    return FakeExtractor(
        {
            DTK_A: {"KERNEL_VERSION": "5.14.0-1", "RT_KERNEL_VERSION": "5.14.0-1.rt"},
            DTK_B: {"KERNEL_VERSION": "5.14.0-2"},
        }
    )


@pytest.fixture
def matrix_file(tmp_path: Path) -> Path:
    path = tmp_path / "build-matrix.json"
    path.write_text(
        json.dumps([{"driver": "1.0.0", "ocp_versions": ["4.16", "4.17"]}])
    )
    return path


@pytest.fixture
def catalog_file(tmp_path: Path) -> Path:
    path = tmp_path / "driver-toolkit.json"
    path.write_text(
        json.dumps(
            [
                {"version": "4.16.1", "arch": "x86_64", "dtk": DTK_A},
                {"version": "4.16.2", "arch": "x86_64", "dtk": DTK_A},
                {"version": "4.17.0", "arch": "x86_64", "dtk": DTK_B},
            ]
        )
    )
    return path
