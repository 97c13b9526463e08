"""Pydantic models for build matrix and catalog file validation.

The build matrix maps each driver version to the OpenShift minor lines it
targets. The catalog lists every OpenShift release with the driver-toolkit
image that carries its kernel headers. Both files are validated here
before being converted into the immutable types used by the pipeline.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kmod_imagegen.matrix.version_filter import (
    FULL_VERSION_PATTERN,
    MINOR_VERSION_PATTERN,
)
from kmod_imagegen.types import CatalogEntry, MatrixRule

DRIVER_VERSION_PATTERN = re.compile(r"v?[0-9]+(\.[0-9]+)+")


class MatrixRuleSchema(BaseModel):
    """Schema for one build matrix record.

    Attributes:
        driver: Driver version (e.g. '2.19.64.0').
        ocp_versions: OpenShift minor lines (e.g. ['4.16', '4.17']).
    """

    model_config = ConfigDict(extra="forbid")

    driver: Annotated[
        str, Field(description="Driver version", min_length=1, max_length=64)
    ]
    ocp_versions: list[str] = Field(
        min_length=1, description="OpenShift MAJOR.MINOR lines targeted"
    )

    @field_validator("driver")
    @classmethod
    def validate_driver(cls, v: str) -> str:
        """Validate driver is a dotted numeric version."""
        if not DRIVER_VERSION_PATTERN.fullmatch(v):
            raise ValueError(f"driver must be a dotted version, got '{v}'")
        return v

    @field_validator("ocp_versions")
    @classmethod
    def validate_ocp_versions(cls, v: list[str]) -> list[str]:
        """Validate every entry is a MAJOR.MINOR line."""
        for item in v:
            if not MINOR_VERSION_PATTERN.fullmatch(item):
                raise ValueError(
                    f"ocp_versions entries must be MAJOR.MINOR, got '{item}'"
                )
        return v

    def to_rule(self) -> MatrixRule:
        """Convert to the immutable pipeline type."""
        return MatrixRule(
            driver_version=self.driver,
            platform_version_prefixes=tuple(self.ocp_versions),
        )


class CatalogEntrySchema(BaseModel):
    """Schema for one catalog record.

    Attributes:
        version: OpenShift release (MAJOR.MINOR.PATCH).
        arch: Release architecture.
        dtk: Driver-toolkit image reference for the release.
    """

    model_config = ConfigDict(extra="forbid")

    version: str = Field(description="OpenShift release version")
    arch: str = Field(default="x86_64", description="Release architecture")
    dtk: Annotated[
        str, Field(description="Driver-toolkit image reference", min_length=1)
    ]

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version is MAJOR.MINOR.PATCH."""
        if not FULL_VERSION_PATTERN.fullmatch(v):
            raise ValueError(f"version must be MAJOR.MINOR.PATCH, got '{v}'")
        return v

    @field_validator("dtk")
    @classmethod
    def validate_dtk(cls, v: str) -> str:
        """Validate the image reference has no whitespace."""
        if any(c.isspace() for c in v):
            raise ValueError(f"dtk must not contain whitespace, got '{v}'")
        return v

    def to_entry(self) -> CatalogEntry:
        """Convert to the immutable pipeline type."""
        return CatalogEntry(
            platform_version=self.version,
            build_env_ref=self.dtk,
            arch=self.arch,
        )


__all__ = [
    "DRIVER_VERSION_PATTERN",
    "CatalogEntrySchema",
    "MatrixRuleSchema",
]
