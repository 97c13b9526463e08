"""Container tool and registry command wrappers.

This module handles:
- Running external CLI commands with timeouts and captured output
- Local image operations through the container tool (podman)
- Remote tag existence checks and tag listings through skopeo

Every failure is raised as RegistryCommandError so callers can decide
whether it is fatal, recoverable or inconclusive.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from kmod_imagegen.errors import RegistryCommandError

logger = logging.getLogger(__name__)

# Default timeout for registry and container commands (seconds)
DEFAULT_COMMAND_TIMEOUT = 600

# skopeo stderr fragments meaning "the tag or repository does not exist"
NOT_FOUND_MARKERS = (
    "manifest unknown",
    "name unknown",
    "repository not found",
    "requested image not found",
    "does not exist",
    "404 (not found)",
)


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        command: The argument vector that was executed.
        returncode: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(
    args: list[str],
    input_text: str | None = None,
    check: bool = True,
    timeout: float | None = DEFAULT_COMMAND_TIMEOUT,
) -> CommandResult:
    """Run an external command and capture its output.

    Args:
        args: Command and arguments.
        input_text: Optional text sent to stdin (e.g. a password).
        check: Raise on non-zero exit code.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        CommandResult with exit code and output.

    Raises:
        RegistryCommandError: If the command cannot be started, times out,
            or (with check=True) exits non-zero.
    """
    cmd_str = shlex.join(args)
    logger.debug("Running: %s", cmd_str)

    try:
        completed = subprocess.run(
            args,
            input=input_text,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise RegistryCommandError(
            f"Command timed out after {timeout}s: {cmd_str}",
            command=args,
            code="timeout",
        ) from e
    except OSError as e:
        raise RegistryCommandError(
            f"Failed to execute {args[0]}: {e}",
            command=args,
            code="execution_error",
        ) from e

    result = CommandResult(
        command=args,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if check and not result.ok:
        raise RegistryCommandError(
            f"Command failed with exit code {result.returncode}: "
            f"{shlex.join(args[:2])}: {result.stderr.strip()}",
            command=args,
            exit_code=result.returncode,
            stderr=result.stderr,
        )
    return result


def is_not_found(stderr: str) -> bool:
    """Check whether registry error output means the reference is absent."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in NOT_FOUND_MARKERS)


class ContainerClient:
    """Thin wrapper around the container tool and skopeo.

    Attributes:
        tool: Container CLI executable (podman).
        skopeo: skopeo executable, used for remote-only operations.
        timeout: Default command timeout in seconds.
    """

    def __init__(
        self,
        tool: str = "podman",
        skopeo: str = "skopeo",
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.tool = tool
        self.skopeo = skopeo
        self.timeout = timeout

    def _run(
        self, args: list[str], input_text: str | None = None, check: bool = True
    ) -> CommandResult:
        return run_command(args, input_text=input_text, check=check, timeout=self.timeout)

    # Authentication

    def login(self, registry: str, username: str, password: str) -> None:
        """Log in to a registry, passing the password on stdin."""
        logger.info("Logging into %s", registry)
        self._run(
            [self.tool, "login", "--username", username, "--password-stdin", registry],
            input_text=password,
        )

    # Local images

    def pull(self, ref: str, platform: str | None = None) -> None:
        """Pull an image into local storage."""
        args = [self.tool, "pull", "--quiet"]
        if platform:
            args.extend(["--platform", platform])
        args.append(ref)
        logger.info("Pulling %s", ref)
        self._run(args)

    def image_exists(self, ref: str) -> bool:
        """Check whether an image is present in local storage."""
        return self._run([self.tool, "image", "exists", ref], check=False).ok

    def inspect_label(self, ref: str, label: str) -> str | None:
        """Read a label from a local image.

        Returns:
            The label value, or None if the image has no such label.
        """
        result = self._run(
            [
                self.tool,
                "inspect",
                "--format",
                f'{{{{ index .Config.Labels "{label}" }}}}',
                ref,
            ]
        )
        value = result.stdout.strip()
        if not value or value == "<no value>":
            return None
        return value

    def tag(self, source: str, target: str) -> None:
        """Add a tag to a local image."""
        logger.debug("Tagging %s as %s", source, target)
        self._run([self.tool, "tag", source, target])

    def push(self, ref: str) -> None:
        """Push a local tag to its registry."""
        logger.info("Pushing %s", ref)
        self._run([self.tool, "push", ref])

    def remove_images(self, *refs: str) -> bool:
        """Remove local images or tags, ignoring references already gone.

        Returns:
            True if the removal command succeeded.
        """
        if not refs:
            return True
        try:
            result = self._run([self.tool, "rmi", "--force", *refs], check=False)
        except RegistryCommandError as e:
            logger.warning("Image cleanup for %s failed: %s", ", ".join(refs), e)
            return False
        if not result.ok:
            logger.debug(
                "Image cleanup for %s exited %d: %s",
                ", ".join(refs),
                result.returncode,
                result.stderr.strip(),
            )
        return result.ok

    # Containers

    def create_container(self, ref: str) -> str:
        """Create (but do not start) a container from an image.

        Returns:
            Container ID.
        """
        result = self._run([self.tool, "create", ref])
        container_id = result.stdout.strip().splitlines()[-1] if result.stdout else ""
        if not container_id:
            raise RegistryCommandError(
                f"No container ID returned for {ref}",
                command=result.command,
            )
        return container_id

    def copy_from_container(self, container_id: str, source: str, dest: Path) -> None:
        """Copy a file out of a container."""
        self._run([self.tool, "cp", f"{container_id}:{source}", str(dest)])

    def remove_container(self, container_id: str) -> None:
        """Remove a container, logging instead of raising on failure."""
        try:
            result = self._run([self.tool, "rm", "--force", container_id], check=False)
        except RegistryCommandError as e:
            logger.warning("Failed to remove container %s: %s", container_id[:12], e)
            return
        if not result.ok:
            logger.warning(
                "Failed to remove container %s: %s",
                container_id[:12],
                result.stderr.strip(),
            )

    # Remote registry

    def tag_exists(self, ref: str) -> bool:
        """Check whether a tag exists in its remote registry.

        Returns:
            True if the manifest exists, False if the registry reports it
            as unknown.

        Raises:
            RegistryCommandError: If the check itself failed (auth, network,
                timeout); the caller decides how to treat an inconclusive check.
        """
        result = self._run(
            [self.skopeo, "inspect", "--raw", f"docker://{ref}"], check=False
        )
        if result.ok:
            return True
        if is_not_found(result.stderr):
            return False
        raise RegistryCommandError(
            f"Could not determine whether {ref} exists: {result.stderr.strip()}",
            command=result.command,
            exit_code=result.returncode,
            stderr=result.stderr,
            code="lookup_inconclusive",
        )

    def list_tags(self, repository: str) -> list[str]:
        """List the tags of a remote repository.

        Returns:
            Tag names; empty if the repository does not exist.
        """
        result = self._run(
            [self.skopeo, "list-tags", f"docker://{repository}"], check=False
        )
        if not result.ok:
            if is_not_found(result.stderr):
                return []
            raise RegistryCommandError(
                f"Failed to list tags of {repository}: {result.stderr.strip()}",
                command=result.command,
                exit_code=result.returncode,
                stderr=result.stderr,
            )
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise RegistryCommandError(
                f"Unparsable tag listing for {repository}: {e}",
                command=result.command,
            ) from e
        return list(data.get("Tags") or [])


__all__ = [
    "DEFAULT_COMMAND_TIMEOUT",
    "CommandResult",
    "ContainerClient",
    "is_not_found",
    "run_command",
]
