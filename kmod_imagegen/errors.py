"""Error definitions for kmod_imagegen.

Every error carries a stable ``code`` for structured handling. The
hierarchy separates fatal configuration errors, which abort a run before
any build starts, from per-platform and per-kernel errors, which are
recorded and the run continues.
"""

# Error code constants
CONFIGURATION_ERROR = "configuration_error"
INVALID_FILTER_FORMAT = "invalid_filter_format"
INVALID_SETTINGS = "invalid_settings"
NO_MATCHING_VERSIONS = "no_matching_versions"
DRIVER_NOT_IN_MATRIX = "driver_not_in_matrix"
MISSING_CREDENTIAL = "missing_credential"
RESOLUTION_ERROR = "resolution_error"
BUILD_ERROR = "build_failed"
PUBLISH_ERROR = "publish_failed"
REGISTRY_COMMAND_ERROR = "registry_command_error"
RELEASE_NOTES_ERROR = "release_notes_error"


class KmodImagegenError(Exception):
    """Base error for kmod_imagegen operations."""

    def __init__(self, message: str, code: str = "kmod_imagegen_error") -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(KmodImagegenError):
    """Raised for errors that must stop the run before any job executes."""

    def __init__(self, message: str, code: str = CONFIGURATION_ERROR) -> None:
        super().__init__(message, code)


class InvalidFilterFormatError(ConfigurationError):
    """Raised when a platform version filter is neither X.Y nor X.Y.Z."""

    def __init__(self, version_filter: str) -> None:
        super().__init__(
            f"Invalid platform version filter {version_filter!r}: "
            "expected MAJOR.MINOR or MAJOR.MINOR.PATCH",
            code=INVALID_FILTER_FORMAT,
        )
        self.version_filter = version_filter


class NoMatchingVersionsError(ConfigurationError):
    """Raised when a driver's matrix selects no catalog entries."""

    def __init__(self, driver_version: str, version_filter: str | None = None) -> None:
        message = f"No platform versions selected for driver {driver_version}"
        if version_filter:
            message += f" with filter {version_filter}"
        super().__init__(message, code=NO_MATCHING_VERSIONS)
        self.driver_version = driver_version
        self.version_filter = version_filter


class DriverNotInMatrixError(ConfigurationError):
    """Raised when the requested driver version has no matrix rule."""

    def __init__(self, driver_version: str) -> None:
        super().__init__(
            f"Driver version {driver_version} is not in the build matrix",
            code=DRIVER_NOT_IN_MATRIX,
        )
        self.driver_version = driver_version


class MissingCredentialError(ConfigurationError):
    """Raised when a credential required by the selected target is missing."""

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(
            message or f"Missing required credential: {name}",
            code=MISSING_CREDENTIAL,
        )
        self.name = name


class ResolutionError(KmodImagegenError):
    """Raised when the kernel version of a build env ref cannot be determined."""

    def __init__(
        self, build_env_ref: str, message: str, code: str = RESOLUTION_ERROR
    ) -> None:
        super().__init__(f"{build_env_ref}: {message}", code)
        self.build_env_ref = build_env_ref


class BuildError(KmodImagegenError):
    """Raised when an image build fails or produces no image."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        log_path: str | None = None,
        code: str = BUILD_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.log_path = log_path


class PublishError(KmodImagegenError):
    """Raised when tagging or pushing a built image fails."""

    def __init__(self, message: str, tag: str, code: str = PUBLISH_ERROR) -> None:
        super().__init__(message, code)
        self.tag = tag


class RegistryCommandError(KmodImagegenError):
    """Raised when an external container, registry or AWS command fails."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        exit_code: int | None = None,
        stderr: str | None = None,
        code: str = REGISTRY_COMMAND_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.command = command or []
        self.exit_code = exit_code
        self.stderr = stderr


class ReleaseNotesError(KmodImagegenError):
    """Raised when the release document cannot be read, rendered or written."""

    def __init__(self, message: str, code: str = RELEASE_NOTES_ERROR) -> None:
        super().__init__(message, code)


__all__ = [
    "BUILD_ERROR",
    "CONFIGURATION_ERROR",
    "DRIVER_NOT_IN_MATRIX",
    "INVALID_FILTER_FORMAT",
    "INVALID_SETTINGS",
    "MISSING_CREDENTIAL",
    "NO_MATCHING_VERSIONS",
    "PUBLISH_ERROR",
    "REGISTRY_COMMAND_ERROR",
    "RELEASE_NOTES_ERROR",
    "RESOLUTION_ERROR",
    "BuildError",
    "ConfigurationError",
    "DriverNotInMatrixError",
    "InvalidFilterFormatError",
    "KmodImagegenError",
    "MissingCredentialError",
    "NoMatchingVersionsError",
    "PublishError",
    "RegistryCommandError",
    "ReleaseNotesError",
    "ResolutionError",
]
