"""Registry module.

This module handles:
- Container tool and skopeo command wrappers
- AWS and build environment registry credentials
- Publish targets and their tag schemes
- The publish gate and dual-tag repair
- Mirroring driver-toolkit images into private ECR
"""

from kmod_imagegen.registry.client import ContainerClient
from kmod_imagegen.registry.gate import PublishGate
from kmod_imagegen.registry.targets import (
    PrivateEcrTarget,
    PublicRegistryTarget,
    PublishTarget,
    select_target,
)

__all__ = [
    "ContainerClient",
    "PrivateEcrTarget",
    "PublicRegistryTarget",
    "PublishGate",
    "PublishTarget",
    "select_target",
]
