"""Publish targets.

A run publishes to exactly one of two registries:

- ``PrivateEcrTarget`` (local mode): a private ECR repository in the
  caller's account. Images carry per-minor-line tags and
  ``neuron-driver``-prefixed aliases.
- ``PublicRegistryTarget`` (CI mode): the public repository. Images carry
  the kernel tag and ``{driver}-ocp{version}`` aliases.

Both share the primary ``{driver}-{kernel}`` tag that the publish gate
checks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from kmod_imagegen.config import Settings
from kmod_imagegen.errors import ConfigurationError, MissingCredentialError
from kmod_imagegen.matrix.version_filter import minor_line, version_key
from kmod_imagegen.registry.auth import AwsCli, registry_login
from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.types import KernelGroup, TargetMode

logger = logging.getLogger(__name__)

ECR_LOGIN_USERNAME = "AWS"


class PublishTarget(ABC):
    """Registry repository that built images are pushed to."""

    mode: TargetMode

    def __init__(self, image_base: str) -> None:
        self.image_base = image_base.rstrip("/")

    @property
    def registry(self) -> str:
        """Registry host of the image base."""
        return self.image_base.split("/", 1)[0]

    def image_ref(self, tag: str) -> str:
        """Full image reference for a tag in this repository."""
        return f"{self.image_base}:{tag}"

    def kernel_tag(self, driver_version: str, kernel_version: str) -> str:
        """Primary tag; its presence means the kernel is already published."""
        return f"{driver_version}-{kernel_version}"

    @abstractmethod
    def full_tags(self, driver_version: str, group: KernelGroup) -> list[str]:
        """Tags identifying the image by kernel."""

    @abstractmethod
    def alias_tag(self, driver_version: str, platform_version: str) -> str:
        """Tag identifying the image by platform version."""

    def alias_tags(self, driver_version: str, group: KernelGroup) -> list[str]:
        """One alias tag per platform version of the group, in version order."""
        return [
            self.alias_tag(driver_version, pv)
            for pv in sorted(group.platform_versions, key=version_key)
        ]

    def tags_for(self, driver_version: str, group: KernelGroup) -> list[str]:
        """Every tag to push for a group, primary first, without duplicates."""
        tags = self.full_tags(driver_version, group) + self.alias_tags(
            driver_version, group
        )
        return list(dict.fromkeys(tags))

    @abstractmethod
    def login(self, client: ContainerClient, aws: AwsCli) -> None:
        """Authenticate the container tool against this target.

        Raises:
            ConfigurationError: If authentication is impossible.
        """

    def describe(self) -> str:
        return f"{self.mode.value} ({self.image_base})"


class PrivateEcrTarget(PublishTarget):
    """Private ECR repository used for local builds."""

    mode = TargetMode.LOCAL

    def __init__(self, account_id: str, region: str, repository: str) -> None:
        self.account_id = account_id
        self.region = region
        self.repository = repository
        super().__init__(f"{account_id}.dkr.ecr.{region}.amazonaws.com/{repository}")

    def full_tags(self, driver_version: str, group: KernelGroup) -> list[str]:
        primary = self.kernel_tag(driver_version, group.kernel_version)
        minors = sorted(
            {minor_line(pv) for pv in group.platform_versions}, key=version_key
        )
        return [primary] + [
            f"{driver_version}-ocp{minor}-{group.kernel_version}" for minor in minors
        ]

    def alias_tag(self, driver_version: str, platform_version: str) -> str:
        return f"neuron-driver{driver_version}-ocp{platform_version}"

    def login(self, client: ContainerClient, aws: AwsCli) -> None:
        password = aws.ecr_login_password(self.region)
        registry_login(client, self.registry, ECR_LOGIN_USERNAME, password)
        if not aws.repository_exists(self.repository, self.region):
            raise ConfigurationError(
                f"ECR repository {self.repository} does not exist in {self.region}",
                code="repository_not_found",
            )


class PublicRegistryTarget(PublishTarget):
    """Public repository used from CI."""

    mode = TargetMode.CI

    def __init__(self, image_base: str, region: str = "us-east-1") -> None:
        super().__init__(image_base)
        self.region = region

    def full_tags(self, driver_version: str, group: KernelGroup) -> list[str]:
        return [self.kernel_tag(driver_version, group.kernel_version)]

    def alias_tag(self, driver_version: str, platform_version: str) -> str:
        return f"{driver_version}-ocp{platform_version}"

    def login(self, client: ContainerClient, aws: AwsCli) -> None:
        password = aws.ecr_public_login_password(self.region)
        registry_login(client, self.registry, ECR_LOGIN_USERNAME, password)


def private_ecr_target(
    settings: Settings, aws: AwsCli, repository: str
) -> PrivateEcrTarget:
    """Private ECR repository in the caller's account and region.

    Raises:
        MissingCredentialError: If no valid AWS credentials or region exist.
    """
    account_id = settings.aws_account_id or aws.caller_account_id()
    region = settings.aws_region or aws.configured_region()
    if not region:
        raise MissingCredentialError(
            "AWS_REGION",
            "AWS region not set: export AWS_REGION or run 'aws configure'",
        )
    return PrivateEcrTarget(account_id, region, repository)


def select_target(settings: Settings, aws: AwsCli) -> PublishTarget:
    """Select the publish target once per run from the environment.

    Args:
        settings: Application settings.
        aws: Credential source used to discover account and region.

    Returns:
        PublicRegistryTarget when a CI indicator is set, else PrivateEcrTarget.

    Raises:
        MissingCredentialError: If local mode lacks a repository, valid AWS
            credentials or a region.
    """
    if settings.ci_mode:
        target: PublishTarget = PublicRegistryTarget(
            settings.public_image_base, settings.public_registry_region
        )
    else:
        if not settings.ecr_repository:
            raise MissingCredentialError(
                "ECR_REPOSITORY",
                "ECR_REPOSITORY must be set for local builds",
            )
        target = private_ecr_target(settings, aws, settings.ecr_repository)

    logger.info("Publish target: %s", target.describe())
    return target


__all__ = [
    "PrivateEcrTarget",
    "PublicRegistryTarget",
    "PublishTarget",
    "private_ecr_target",
    "select_target",
]
