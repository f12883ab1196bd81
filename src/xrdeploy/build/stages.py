"""Pipeline stage model.

The pipeline is fixed: RESOLVE -> COMPILE -> PACKAGE -> SIGN -> (DEPLOY).
A stage only runs when every predecessor SUCCEEDED in the same invocation;
otherwise it is SKIPPED with a reason and never RUNNING.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .process_runner import DEFAULT_MAX_OUTPUT_BYTES, ProcessResult


class PipelineStage(Enum):
    RESOLVE = "resolve"
    COMPILE = "compile"
    PACKAGE = "package"
    SIGN = "sign"
    DEPLOY = "deploy"


PREDECESSORS: Dict[PipelineStage, Tuple[PipelineStage, ...]] = {
    PipelineStage.RESOLVE: (),
    PipelineStage.COMPILE: (PipelineStage.RESOLVE,),
    PipelineStage.PACKAGE: (PipelineStage.COMPILE,),
    PipelineStage.SIGN: (PipelineStage.PACKAGE,),
    PipelineStage.DEPLOY: (PipelineStage.SIGN,),
}

STAGE_ORDER: Tuple[PipelineStage, ...] = tuple(PipelineStage)


class StageStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    """State and diagnostics of one stage.

    Attributes:
        stage: Which stage
        status: Current status
        exit_code: Exit code of the last process the stage launched
        output: Captured tool output, verbatim (secrets redacted)
        duration: Wall-clock seconds spent in the stage
        reason: Why the stage failed or was skipped
        reused: True when a previous artifact was still valid
        processes: Every external process the stage ran
    """

    stage: PipelineStage
    status: StageStatus = StageStatus.PENDING
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    reason: Optional[str] = None
    reused: bool = False
    processes: List[ProcessResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    def record(self, result: ProcessResult) -> None:
        self.processes.append(result)
        self.exit_code = result.exit_code
        if result.output:
            self.output += result.output if result.output.endswith("\n") else result.output + "\n"
        if len(self.output) > DEFAULT_MAX_OUTPUT_BYTES:
            self.output = self.output[-DEFAULT_MAX_OUTPUT_BYTES:]

    def describe(self) -> str:
        text = f"{self.stage.value}: {self.status.value}"
        if self.reused:
            text += " (up to date)"
        if self.reason:
            text += f" ({self.reason})"
        return text


class StageExecutionError(Exception):
    """Raised when a pipeline stage failed.

    Carries the failed stage's captured output verbatim.
    """

    def __init__(self, result: StageResult):
        self.result = result
        message = f"Stage '{result.stage.value}' failed"
        if result.reason:
            message += f": {result.reason}"
        if result.exit_code is not None:
            message += f" (exit code {result.exit_code})"
        if result.output:
            message += f"\n{result.output.rstrip()}"
        super().__init__(message)


@dataclass(frozen=True)
class SignedArtifact:
    """A signed APK produced by a SIGN stage of the current invocation."""

    path: Path
    variant_name: str
    application_id: str
    sign_result: StageResult
