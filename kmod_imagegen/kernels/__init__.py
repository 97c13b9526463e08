"""Kernel resolution and grouping module.

This module handles:
- Reading the kernel version of driver-toolkit images
- Grouping platform versions that share a kernel
"""

from kmod_imagegen.kernels.grouping import KernelGroupingCache, group
from kmod_imagegen.kernels.resolver import KernelResolver

__all__ = ["KernelGroupingCache", "KernelResolver", "group"]
