"""Build matrix and catalog file loading.

Both files are top-level arrays, stored as JSON (the format the catalog
crawler produces) or YAML. Format is determined by extension. Any problem
reading or validating them is a configuration error.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kmod_imagegen.errors import ConfigurationError
from kmod_imagegen.matrix.schema import CatalogEntrySchema, MatrixRuleSchema
from kmod_imagegen.matrix.version_filter import version_key
from kmod_imagegen.types import CatalogEntry, MatrixRule

logger = logging.getLogger(__name__)


def load_records(path: Path) -> list[dict[str, Any]]:
    """Load a JSON or YAML file holding an array of mappings.

    Args:
        path: Path to the file (.json, .yaml or .yml).

    Returns:
        List of records.

    Raises:
        ConfigurationError: If the file is missing, unparsable, or not an
            array of mappings.
    """
    suffix = path.suffix.lower()
    try:
        with open(path, encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported file format: {path.suffix}. "
                    "Use .yaml, .yml, or .json"
                )
    except FileNotFoundError as e:
        raise ConfigurationError(f"File not found: {path}") from e
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}") from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigurationError(
            f"Expected an array in {path}, got {type(data).__name__}"
        )
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ConfigurationError(
                f"Expected a mapping at {path}[{index}], got {type(item).__name__}"
            )
    return data


def parse_matrix(records: list[dict[str, Any]]) -> list[MatrixRule]:
    """Validate build matrix records.

    Args:
        records: Raw records.

    Returns:
        Matrix rules in file order.

    Raises:
        ConfigurationError: If a record does not match the schema.
    """
    rules: list[MatrixRule] = []
    for index, record in enumerate(records):
        try:
            rules.append(MatrixRuleSchema.model_validate(record).to_rule())
        except ValidationError as e:
            raise ConfigurationError(f"Invalid matrix entry {index}: {e}") from e
    return rules


def parse_catalog(records: list[dict[str, Any]]) -> list[CatalogEntry]:
    """Validate catalog records.

    Args:
        records: Raw records.

    Returns:
        Catalog entries sorted by numeric version.

    Raises:
        ConfigurationError: If a record does not match the schema or a
            platform version appears twice.
    """
    entries: dict[str, CatalogEntry] = {}
    for index, record in enumerate(records):
        try:
            entry = CatalogEntrySchema.model_validate(record).to_entry()
        except ValidationError as e:
            raise ConfigurationError(f"Invalid catalog entry {index}: {e}") from e
        if entry.platform_version in entries:
            raise ConfigurationError(
                f"Duplicate platform version in catalog: {entry.platform_version}"
            )
        entries[entry.platform_version] = entry
    return sorted(entries.values(), key=lambda e: version_key(e.platform_version))


def load_matrix(path: Path) -> list[MatrixRule]:
    """Load and validate a build matrix file."""
    rules = parse_matrix(load_records(path))
    logger.debug("Loaded %d matrix rule(s) from %s", len(rules), path)
    return rules


def load_catalog(path: Path) -> list[CatalogEntry]:
    """Load and validate a catalog file."""
    entries = parse_catalog(load_records(path))
    logger.debug("Loaded %d catalog entries from %s", len(entries), path)
    return entries


__all__ = [
    "load_catalog",
    "load_matrix",
    "load_records",
    "parse_catalog",
    "parse_matrix",
]
