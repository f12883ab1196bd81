"""
Build system components for xrdeploy.

This module provides the release pipeline implementation including:
- Native toolchain chain construction (NDK, optionally chainloaded by vcpkg)
- Signing identity selection
- External tool execution with timeouts and process-tree cleanup
- Pipeline orchestration (compile, package, sign, deploy) in .planner and
  .pipeline, imported from those modules directly
"""

from .artifacts import ArtifactLayout
from .process_runner import ProcessResult, ProcessRunner
from .signing import SigningError, SigningIdentity, SigningResolver
from .stages import PipelineStage, SignedArtifact, StageExecutionError, StageResult, StageStatus
from .toolchain import BuildTools, NativeToolchainSpec, ToolchainChainBuilder, ToolchainError

__all__ = [
    "ArtifactLayout",
    "ProcessResult",
    "ProcessRunner",
    "SigningError",
    "SigningIdentity",
    "SigningResolver",
    "PipelineStage",
    "SignedArtifact",
    "StageExecutionError",
    "StageResult",
    "StageStatus",
    "BuildTools",
    "NativeToolchainSpec",
    "ToolchainChainBuilder",
    "ToolchainError",
]
