"""Kernel module image generator - build once per kernel, publish everywhere.

This package turns a declarative driver/OpenShift version matrix into the
minimal set of kernel module image builds, and publishes each build under
every tag the platform releases sharing that kernel expect.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
