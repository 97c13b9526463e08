"""Build orchestration module.

This module handles:
- Running kernel module image builds
- Driving a run from matrix expansion to publish
- High-level operations used by the CLI
"""

from kmod_imagegen.builds.executor import BuildExecutor, BuildRequest
from kmod_imagegen.builds.orchestrator import BuildOrchestrator, RunPlan

__all__ = ["BuildExecutor", "BuildOrchestrator", "BuildRequest", "RunPlan"]
