"""Configuration settings for kmod_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Most settings use the KMOD_IMG_ prefix. The well-known variables that CI
workflows and AWS tooling already export (ECR_REPOSITORY, AWS_REGION,
GITHUB_TOKEN, ...) are accepted as aliases.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from kmod_imagegen.errors import INVALID_SETTINGS, ConfigurationError
from kmod_imagegen.types import TargetMode

DEFAULT_PUBLIC_IMAGE_BASE = (
    "public.ecr.aws/q5p6u7h8/neuron-openshift/neuron-kernel-module"
)
DEFAULT_DTK_RELEASE_PATH = "/etc/driver-toolkit-release.json"


def _default_log_dir() -> Path:
    """Return the default directory for build logs."""
    return Path.home() / ".cache" / "kmod-imagegen" / "logs"


def _aliases(name: str, *extra: str) -> AliasChoices:
    return AliasChoices(f"KMOD_IMG_{name.upper()}", *extra)


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the KMOD_IMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="KMOD_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Input files
    matrix_file: Path = Field(
        default=Path("build-matrix.json"),
        description="Driver to OpenShift version matrix (JSON or YAML)",
    )
    catalog_file: Path = Field(
        default=Path("driver-toolkit") / "driver-toolkit.json",
        description="OpenShift release to driver-toolkit image catalog",
    )
    containerfile: Path = Field(
        default=Path("Containerfile"),
        description="Containerfile used to build the kernel module image",
    )
    build_context: Path = Field(
        default=Path("."),
        description="Build context directory passed to the container tool",
    )

    # Working paths
    tmp_dir: Path | None = Field(
        default=None,
        description="Temporary directory for builds (uses system default if not set)",
    )
    log_dir: Path = Field(
        default_factory=_default_log_dir,
        description="Directory for per-kernel build logs",
    )
    release_notes_dir: Path = Field(
        default=Path("release-notes"),
        description="Directory for release documents in local mode",
    )

    # External tools
    container_tool: str = Field(default="podman", description="Container CLI")
    skopeo_tool: str = Field(default="skopeo", description="Remote registry CLI")
    aws_tool: str = Field(default="aws", description="AWS CLI")

    # Operational modes
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    force_rebuild: bool = Field(
        default=False,
        validation_alias=_aliases("force_rebuild", "FORCE_REBUILD"),
        description="Rebuild and republish even if the kernel tag exists",
    )
    ci_indicator: str | None = Field(
        default=None,
        validation_alias=_aliases("ci", "GITHUB_ACTIONS"),
        description="Set by CI runners; selects the public registry target",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single image build",
    )
    command_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for registry and credential commands",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for release document API requests",
    )

    # Private ECR target (local mode)
    ecr_repository: str | None = Field(
        default=None,
        validation_alias=_aliases("ecr_repository", "ECR_REPOSITORY"),
        description="ECR repository name for local builds",
    )
    aws_account_id: str | None = Field(
        default=None,
        validation_alias=_aliases("aws_account_id", "AWS_ACCOUNT_ID"),
        description="AWS account ID (discovered from caller identity if unset)",
    )
    aws_region: str | None = Field(
        default=None,
        validation_alias=_aliases("aws_region", "AWS_REGION"),
        description="AWS region (read from the AWS CLI config if unset)",
    )

    # Public target (CI mode)
    public_image_base: str = Field(
        default=DEFAULT_PUBLIC_IMAGE_BASE,
        description="Public image repository used from CI",
    )
    public_registry_region: str = Field(
        default="us-east-1",
        description="Region for ECR Public authentication",
    )

    # Driver-toolkit images
    dtk_release_path: str = Field(
        default=DEFAULT_DTK_RELEASE_PATH,
        description="Path of the release descriptor inside driver-toolkit images",
    )
    dtk_registry: str = Field(
        default="quay.io",
        description="Registry hosting driver-toolkit images",
    )
    quay_username: str | None = Field(
        default=None,
        validation_alias=_aliases("quay_username", "QUAY_USERNAME"),
    )
    quay_password: SecretStr | None = Field(
        default=None,
        validation_alias=_aliases("quay_password", "QUAY_PASSWORD"),
    )
    dtk_ecr_repository: str = Field(
        default="neuron-operator/driver-toolkit",
        validation_alias=_aliases("dtk_ecr_repository", "DTK_ECR_REPOSITORY_NAME"),
        description="Private ECR repository that driver-toolkit images are mirrored to",
    )
    dtk_platform: str = Field(
        default="linux/amd64",
        description="Platform pulled when mirroring driver-toolkit images",
    )

    # Release documents
    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=_aliases("github_token", "GITHUB_TOKEN"),
    )
    github_repository: str | None = Field(
        default=None,
        validation_alias=_aliases("github_repository", "GITHUB_REPOSITORY"),
        description="owner/name of the repository holding release documents",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        validation_alias=_aliases("github_api_url", "GITHUB_API_URL"),
    )

    @property
    def ci_mode(self) -> bool:
        """Whether a CI runner indicator is present."""
        return bool(self.ci_indicator)

    @property
    def target_mode(self) -> TargetMode:
        """Publish target variant selected by the environment."""
        return TargetMode.CI if self.ci_mode else TargetMode.LOCAL


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If an environment value fails validation.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid settings: {e}", code=INVALID_SETTINGS
        ) from e


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secrets are masked by pydantic's SecretStr serialization.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_DTK_RELEASE_PATH",
    "DEFAULT_PUBLIC_IMAGE_BASE",
    "Settings",
    "get_settings",
    "print_settings_json",
]
