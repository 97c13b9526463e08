"""High-level operations for one driver version.

This module wires settings, external tool wrappers, the publish target and
the release document store into the orchestrator, and exposes the
operations used by the CLI:

- build_driver: full run (build, publish, release document)
- plan_driver: gate decisions only
- repair_driver_tags: create missing kernel tags from platform aliases
- export_driver_images: CSV of published image pairs
- mirror_build_envs: copy driver-toolkit images into private ECR

Every configuration problem (bad filter, unknown driver, unreadable input
files, missing credentials, failed registry login) raises
ConfigurationError before the first image is built or pushed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from kmod_imagegen.builds.executor import BuildExecutor
from kmod_imagegen.builds.orchestrator import BuildOrchestrator, RunPlan
from kmod_imagegen.config import Settings, get_settings
from kmod_imagegen.errors import (
    NO_MATCHING_VERSIONS,
    ConfigurationError,
    MissingCredentialError,
)
from kmod_imagegen.kernels.grouping import group
from kmod_imagegen.kernels.resolver import ContainerMetadataExtractor, KernelResolver
from kmod_imagegen.matrix.expand import expand, select_rules
from kmod_imagegen.matrix.io import load_catalog, load_matrix
from kmod_imagegen.matrix.version_filter import matches, validate_filter
from kmod_imagegen.registry.auth import AwsCli, login_build_env_registry
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.registry.gate import PublishGate
from kmod_imagegen.registry.mirror import MirrorResult, mirror_build_env_images
from kmod_imagegen.registry.repair import RepairResult, repair_dual_tags
from kmod_imagegen.registry.targets import (
    PublishTarget,
    private_ecr_target,
    select_target,
)
from kmod_imagegen.release.export import collect_image_pairs, write_csv
from kmod_imagegen.release.notes import DocumentStore, ReleaseNotesSynchronizer
from kmod_imagegen.release.stores import FileDocumentStore, GitHubReleaseStore
from kmod_imagegen.types import CatalogEntry, MatrixRule, RunResult, TargetMode

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Everything a driver operation needs, validated and authenticated."""

    settings: Settings
    driver_version: str
    version_filter: str | None
    rules: list[MatrixRule]
    catalog: list[CatalogEntry]
    client: ContainerClient
    aws: AwsCli
    target: PublishTarget

    def resolver(self) -> KernelResolver:
        extractor = ContainerMetadataExtractor(
            self.client, self.settings.dtk_release_path
        )
        return KernelResolver(extractor)

    def selected_entries(self) -> list[CatalogEntry]:
        return expand(
            select_rules(self.rules, self.driver_version),
            self.catalog,
            self.version_filter,
        )


def create_tools(
    settings: Settings,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> tuple[ContainerClient, AwsCli]:
    """Build the external tool wrappers that were not passed in."""
    if client is None:
        client = ContainerClient(
            tool=settings.container_tool,
            skopeo=settings.skopeo_tool,
            timeout=settings.command_timeout,
        )
    if aws is None:
        aws = AwsCli(tool=settings.aws_tool, timeout=settings.command_timeout)
    return client, aws


def login_build_env_source(settings: Settings, client: ContainerClient) -> bool:
    """Log into the registry hosting driver-toolkit images, if credentials exist."""
    return login_build_env_registry(
        client,
        settings.dtk_registry,
        settings.quay_username,
        settings.quay_password.get_secret_value() if settings.quay_password else None,
    )


def open_context(
    driver_version: str,
    version_filter: str | None = None,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> RunContext:
    """Load inputs, select the target and log into the registries.

    Raises:
        ConfigurationError: On any problem found before work starts.
    """
    if settings is None:
        settings = get_settings()
    version_filter = validate_filter(version_filter)

    rules = load_matrix(settings.matrix_file)
    catalog = load_catalog(settings.catalog_file)
    # Fail on unknown drivers and empty selections before touching registries
    expand(select_rules(rules, driver_version), catalog, version_filter)

    client, aws = create_tools(settings, client, aws)
    target = select_target(settings, aws)
    target.login(client, aws)
    login_build_env_source(settings, client)

    return RunContext(
        settings=settings,
        driver_version=driver_version,
        version_filter=version_filter,
        rules=rules,
        catalog=catalog,
        client=client,
        aws=aws,
        target=target,
    )


def create_document_store(settings: Settings, target: PublishTarget) -> DocumentStore:
    """Select where release documents live for a target.

    Raises:
        MissingCredentialError: If CI mode lacks GitHub settings.
    """
    if target.mode is TargetMode.LOCAL:
        return FileDocumentStore(settings.release_notes_dir)
    if not settings.github_token:
        raise MissingCredentialError("GITHUB_TOKEN")
    if not settings.github_repository:
        raise MissingCredentialError(
            "GITHUB_REPOSITORY", "GITHUB_REPOSITORY must be set to publish release notes"
        )
    return GitHubReleaseStore(
        repository=settings.github_repository,
        token=settings.github_token.get_secret_value(),
        api_url=settings.github_api_url,
        timeout=settings.http_timeout,
    )


def create_orchestrator(
    ctx: RunContext, store: DocumentStore | None = None
) -> BuildOrchestrator:
    """Assemble the orchestrator for a context."""
    synchronizer = None
    if store is not None:
        synchronizer = ReleaseNotesSynchronizer(
            store,
            lambda: ctx.client.list_tags(ctx.target.image_base),
            ctx.target.kernel_tag,
            repository=ctx.target.image_base,
        )
    executor = BuildExecutor(
        containerfile=ctx.settings.containerfile,
        context=ctx.settings.build_context,
        tool=ctx.settings.container_tool,
        timeout=ctx.settings.build_timeout,
    )
    return BuildOrchestrator(
        resolver=ctx.resolver(),
        gate=PublishGate(ctx.client, ctx.driver_version),
        executor=executor,
        client=ctx.client,
        target=ctx.target,
        log_dir=ctx.settings.log_dir,
        synchronizer=synchronizer,
        tmp_dir=ctx.settings.tmp_dir,
    )


def build_driver(
    driver_version: str,
    version_filter: str | None = None,
    force: bool = False,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> RunResult:
    """Build and publish every kernel image of a driver version.

    Args:
        driver_version: Driver version to build.
        version_filter: Optional platform version filter.
        force: Rebuild even when the kernel tag exists (OR-ed with settings).
        settings: Optional settings; loaded from the environment if omitted.
        client: Optional container client.
        aws: Optional credential source.

    Returns:
        RunResult of the run.

    Raises:
        ConfigurationError: If the run cannot start.
    """
    if settings is None:
        settings = get_settings()
    if not settings.containerfile.is_file():
        raise ConfigurationError(f"Containerfile not found: {settings.containerfile}")

    ctx = open_context(driver_version, version_filter, settings, client, aws)
    store = (
        create_document_store(settings, ctx.target)
        if ctx.version_filter is None
        else None
    )
    try:
        orchestrator = create_orchestrator(ctx, store)
        return orchestrator.run(
            ctx.rules,
            ctx.catalog,
            ctx.version_filter,
            force=force or settings.force_rebuild,
        )
    finally:
        if isinstance(store, GitHubReleaseStore):
            store.close()


def plan_driver(
    driver_version: str,
    version_filter: str | None = None,
    force: bool = False,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> RunPlan:
    """Compute the gate decisions of a run without building."""
    ctx = open_context(driver_version, version_filter, settings, client, aws)
    orchestrator = create_orchestrator(ctx)
    return orchestrator.plan(
        ctx.rules,
        ctx.catalog,
        ctx.version_filter,
        force=force or ctx.settings.force_rebuild,
    )


def repair_driver_tags(
    driver_version: str,
    version_filter: str | None = None,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> list[RepairResult]:
    """Create missing kernel tags of a driver from its platform alias tags."""
    ctx = open_context(driver_version, version_filter, settings, client, aws)
    jobs, _ = ctx.resolver().resolve_entries(ctx.selected_entries())
    return repair_dual_tags(ctx.client, ctx.target, driver_version, jobs)


def export_driver_images(
    driver_version: str,
    output: Path,
    version_filter: str | None = None,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> int:
    """Write the published image pairs of a driver to a CSV file.

    Returns:
        Number of rows written.
    """
    ctx = open_context(driver_version, version_filter, settings, client, aws)
    jobs, _ = ctx.resolver().resolve_entries(ctx.selected_entries())
    published = ctx.client.list_tags(ctx.target.image_base)
    pairs = collect_image_pairs(ctx.target, driver_version, group(jobs), published)
    return write_csv(pairs, output)


def mirror_build_envs(
    version_filter: str | None = None,
    settings: Settings | None = None,
    client: ContainerClient | None = None,
    aws: AwsCli | None = None,
) -> list[MirrorResult]:
    """Mirror the driver-toolkit images of the catalog into private ECR.

    Args:
        version_filter: Optional platform version filter.
        settings: Optional settings; loaded from the environment if omitted.
        client: Optional container client.
        aws: Optional credential source.

    Returns:
        One MirrorResult per selected catalog entry.

    Raises:
        ConfigurationError: If the filter selects nothing, or the mirror
            repository cannot be reached.
    """
    if settings is None:
        settings = get_settings()
    version_filter = validate_filter(version_filter)
    catalog = load_catalog(settings.catalog_file)
    entries = [e for e in catalog if matches(e.platform_version, version_filter)]
    if not entries:
        raise ConfigurationError(
            f"No catalog entries match filter {version_filter}",
            code=NO_MATCHING_VERSIONS,
        )

    client, aws = create_tools(settings, client, aws)
    target = private_ecr_target(settings, aws, settings.dtk_ecr_repository)
    target.login(client, aws)
    login_build_env_source(settings, client)
    logger.info(
        "Mirroring %d driver-toolkit image(s) to %s", len(entries), target.image_base
    )
    return mirror_build_env_images(client, target, entries, settings.dtk_platform)


__all__ = [
    "RunContext",
    "build_driver",
    "create_document_store",
    "create_orchestrator",
    "create_tools",
    "export_driver_images",
    "login_build_env_source",
    "mirror_build_envs",
    "open_context",
    "plan_driver",
    "repair_driver_tags",
]
