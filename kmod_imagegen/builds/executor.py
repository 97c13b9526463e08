"""Build executor for kernel module images.

This module handles:
- Composing `podman build` commands for a kernel group
- Executing builds with subprocess
- Capturing build output to log files
- Enforcing build timeouts
- Reading the built image ID from the iidfile
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from kmod_imagegen.errors import BuildError

logger = logging.getLogger(__name__)

LOCAL_IMAGE_REPOSITORY = "localhost/kmod-imagegen"


@dataclass(frozen=True)
class BuildRequest:
    """Inputs of one kernel module image build.

    Attributes:
        driver_version: Driver version compiled into the image.
        kernel_version: Kernel the module is built against.
        build_env_ref: Driver-toolkit image used as the build stage.
        platform_version: Platform version the build env ref belongs to.
    """

    driver_version: str
    kernel_version: str
    build_env_ref: str
    platform_version: str

    @property
    def local_ref(self) -> str:
        """Local tag given to the built image."""
        return f"{LOCAL_IMAGE_REPOSITORY}:{self.driver_version}-{self.kernel_version}"

    def build_args(self) -> dict[str, str]:
        """Build arguments consumed by the Containerfile."""
        return {
            "NEURON_DRIVER_VERSION": self.driver_version,
            "DTK_IMAGE": self.build_env_ref,
            "KERNEL_VERSION": self.kernel_version,
            "OCP_VERSION": self.platform_version,
        }


@dataclass
class BuildResult:
    """Result of a successful build.

    Attributes:
        image_id: ID of the built image.
        local_ref: Local tag of the built image.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
    """

    image_id: str
    local_ref: str
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def compose_build_command(
    tool: str,
    containerfile: Path,
    context: Path,
    request: BuildRequest,
    iidfile: Path,
) -> list[str]:
    """Compose the image build command for a request.

    Args:
        tool: Container CLI executable.
        containerfile: Containerfile to build.
        context: Build context directory.
        request: Build inputs.
        iidfile: File the container tool writes the image ID to.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        tool,
        "build",
        "--file",
        str(containerfile),
        "--iidfile",
        str(iidfile),
        "--tag",
        request.local_ref,
    ]
    for name, value in request.build_args().items():
        cmd.extend(["--build-arg", f"{name}={value}"])
    cmd.append(str(context))
    return cmd


def append_log(log_path: Path, text: str) -> None:
    """Append a footer to a build log; a failed write is only logged."""
    try:
        with log_path.open("a") as log_file:
            log_file.write(text)
    except OSError as e:
        logger.warning("Could not append to build log %s: %s", log_path, e)


class BuildExecutor:
    """Runs image builds through the container tool."""

    def __init__(
        self,
        containerfile: Path,
        context: Path,
        tool: str = "podman",
        timeout: int | None = None,
    ) -> None:
        self.containerfile = containerfile
        self.context = context
        self.tool = tool
        self.timeout = timeout

    def build(self, request: BuildRequest, work_dir: Path, log_path: Path) -> BuildResult:
        """Build the image for a request.

        Args:
            request: Build inputs.
            work_dir: Scratch directory for this build (holds the iidfile).
            log_path: File receiving the build output.

        Returns:
            BuildResult with the built image ID.

        Raises:
            BuildError: If the build fails, times out, cannot start, or
                produces no image ID.
        """
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            message = f"Failed to prepare build directories: {e}"
            logger.error(message)
            raise BuildError(
                message, log_path=str(log_path), code="execution_error"
            ) from e
        iidfile = work_dir / "image.iid"

        cmd = compose_build_command(
            self.tool, self.containerfile, self.context, request, iidfile
        )
        cmd_str = shlex.join(cmd)
        logger.info(
            "Building driver %s for kernel %s (from %s)",
            request.driver_version,
            request.kernel_version,
            request.platform_version,
        )
        logger.debug("Executing build: %s", cmd_str)

        started_at = datetime.now(timezone.utc)
        try:
            with log_path.open("w") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {self.context}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=self.timeout,
                    check=False,
                )
        except subprocess.TimeoutExpired as e:
            message = f"Build timed out after {self.timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            append_log(log_path, f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise BuildError(
                message, exit_code=-1, log_path=str(log_path), code="build_timeout"
            ) from e
        except OSError as e:
            message = f"Failed to execute build: {e}"
            logger.error(message)
            raise BuildError(
                message, log_path=str(log_path), code="execution_error"
            ) from e

        finished_at = datetime.now(timezone.utc)
        exit_code = result.returncode
        duration = (finished_at - started_at).total_seconds()
        append_log(
            log_path,
            f"\n# Finished: {finished_at.isoformat()}\n"
            f"# Exit code: {exit_code}\n"
            f"# Duration: {duration:.1f}s\n",
        )

        if exit_code != 0:
            message = f"Build failed with exit code {exit_code}"
            logger.error("%s. See log: %s", message, log_path)
            raise BuildError(message, exit_code=exit_code, log_path=str(log_path))

        try:
            image_id = iidfile.read_text().strip() if iidfile.exists() else ""
        except OSError as e:
            raise BuildError(
                f"Failed to read image ID: {e}",
                exit_code=exit_code,
                log_path=str(log_path),
                code="missing_image_id",
            ) from e
        if not image_id:
            raise BuildError(
                "Build finished without producing an image ID",
                exit_code=exit_code,
                log_path=str(log_path),
                code="missing_image_id",
            )

        return BuildResult(
            image_id=image_id,
            local_ref=request.local_ref,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
            command=cmd_str,
        )


__all__ = [
    "LOCAL_IMAGE_REPOSITORY",
    "BuildExecutor",
    "BuildRequest",
    "BuildResult",
    "append_log",
    "compose_build_command",
]
