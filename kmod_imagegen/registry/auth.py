"""Registry credentials.

This module handles:
- AWS identity, region and ECR login passwords through the aws CLI
- ECR repository existence checks
- Logging into the registry that hosts driver-toolkit images
"""

from __future__ import annotations

import logging

from kmod_imagegen.errors import (
    ConfigurationError,
    MissingCredentialError,
    RegistryCommandError,
)
from kmod_imagegen.registry.client import (
    DEFAULT_COMMAND_TIMEOUT,
    CommandResult,
    ContainerClient,
    run_command,
)

logger = logging.getLogger(__name__)


class AwsCli:
    """Credential source backed by the aws CLI."""

    def __init__(self, tool: str = "aws", timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        self.tool = tool
        self.timeout = timeout

    def _run(self, *args: str, check: bool = True) -> CommandResult:
        return run_command(
            [self.tool, *args, "--no-cli-pager"], check=check, timeout=self.timeout
        )

    def caller_account_id(self) -> str:
        """Return the account ID of the current credentials.

        Raises:
            MissingCredentialError: If no valid AWS credentials are available.
        """
        try:
            result = self._run(
                "sts", "get-caller-identity", "--query", "Account", "--output", "text"
            )
        except RegistryCommandError as e:
            raise MissingCredentialError(
                "AWS credentials", f"Unable to validate AWS credentials: {e}"
            ) from e
        account_id = result.stdout.strip()
        if not account_id or account_id == "None":
            raise MissingCredentialError(
                "AWS credentials", "AWS caller identity returned no account ID"
            )
        return account_id

    def configured_region(self) -> str | None:
        """Return the region from the aws CLI configuration, if any."""
        result = self._run("configure", "get", "region", check=False)
        region = result.stdout.strip()
        return region if result.ok and region else None

    def ecr_login_password(self, region: str) -> str:
        """Return a login password for private ECR in ``region``."""
        return self._login_password("ecr", region)

    def ecr_public_login_password(self, region: str) -> str:
        """Return a login password for ECR Public (always us-east-1 in practice)."""
        return self._login_password("ecr-public", region)

    def _login_password(self, service: str, region: str) -> str:
        try:
            result = self._run(service, "get-login-password", "--region", region)
        except RegistryCommandError as e:
            raise MissingCredentialError(
                f"{service} login", f"Failed to get {service} login password: {e}"
            ) from e
        password = result.stdout.strip()
        if not password:
            raise MissingCredentialError(
                f"{service} login", f"Empty {service} login password"
            )
        return password

    def repository_exists(self, repository: str, region: str) -> bool:
        """Check whether a private ECR repository exists."""
        result = self._run(
            "ecr",
            "describe-repositories",
            "--repository-names",
            repository,
            "--region",
            region,
            check=False,
        )
        if not result.ok:
            logger.debug(
                "describe-repositories for %s exited %d: %s",
                repository,
                result.returncode,
                result.stderr.strip(),
            )
        return result.ok


def registry_login(
    client: ContainerClient, registry: str, username: str, password: str
) -> None:
    """Log into a publish registry, turning failure into a configuration error."""
    try:
        client.login(registry, username, password)
    except RegistryCommandError as e:
        raise ConfigurationError(
            f"Failed to log into {registry}: {e}", code="registry_login_failed"
        ) from e


def login_build_env_registry(
    client: ContainerClient,
    registry: str,
    username: str | None,
    password: str | None,
) -> bool:
    """Log into the registry hosting driver-toolkit images.

    Without credentials, pulls are attempted anonymously.

    Returns:
        True if a login was performed.
    """
    if not username or not password:
        logger.warning(
            "No credentials for %s; driver-toolkit images will be pulled anonymously",
            registry,
        )
        return False
    registry_login(client, registry, username, password)
    return True


__all__ = ["AwsCli", "login_build_env_registry", "registry_login"]
