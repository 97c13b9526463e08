"""Build matrix module.

This module handles:
- Platform version filters
- Build matrix and catalog file loading
- Expansion of matrix rules into catalog entries
"""

from kmod_imagegen.matrix.expand import expand, select_rules
from kmod_imagegen.matrix.version_filter import matches, validate_filter

__all__ = ["expand", "matches", "select_rules", "validate_filter"]
