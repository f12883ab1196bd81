"""
Store upload for signed APKs.

This module hands a signed artifact to the Meta Quest store upload tool
(``ovr-platform-util upload-quest-build``). A DeploymentRequest can only be
built around a SignedArtifact whose SIGN stage succeeded, so uploading an
unsigned or stale APK cannot be expressed.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from ..build.process_runner import ProcessRunner, redact
from ..build.stages import PipelineStage, SignedArtifact, StageStatus

UPLOAD_SUBCOMMAND = "upload-quest-build"


class DeployError(Exception):
    """Raised when deployment cannot be prepared or the upload fails.

    Attributes:
        problems: Configuration problems found before launching the tool
        output: Captured upload tool output, secrets redacted
        exit_code: Upload tool exit code, if it ran
    """

    def __init__(
        self,
        message: str,
        problems: Optional[List[str]] = None,
        output: str = "",
        exit_code: Optional[int] = None,
    ):
        self.problems = list(problems or [])
        self.output = output
        self.exit_code = exit_code
        if self.problems:
            message += "\n" + "\n".join(f"  - {problem}" for problem in self.problems)
        if output:
            message += f"\n{output.rstrip()}"
        super().__init__(message)


@dataclass
class DeployResult:
    """Result of a successful upload."""

    channel: str
    artifact: Path
    output: str
    duration: float
    message: str = "Upload successful"


@dataclass(frozen=True)
class DeploymentTarget:
    """Where and as whom to upload. The secret is kept out of repr."""

    app_id: str
    app_secret: str = field(repr=False)
    channel: str = "alpha"
    tool: Path = Path("ovr-platform-util")

    @classmethod
    def from_properties(
        cls, properties: Mapping[str, str], channel: str, tool: Optional[Path]
    ) -> "DeploymentTarget":
        """
        Build the target from ``deploy.*`` properties.

        Raises:
            DeployError: Listing every missing credential
        """
        problems = []
        app_id = (properties.get("deploy.app_id") or "").strip()
        app_secret = (properties.get("deploy.app_secret") or "").strip()
        if not app_id:
            problems.append("Missing store application id (pass -P deploy.app_id=...)")
        if not app_secret:
            problems.append("Missing store application secret (pass -P deploy.app_secret=...)")
        if not channel.strip():
            problems.append("Missing release channel (set deploy_channel)")
        if tool is None:
            problems.append("Upload tool not located")
        if problems:
            raise DeployError("Deployment is not configured", problems=problems)
        return cls(app_id=app_id, app_secret=app_secret, channel=channel.strip(), tool=tool)  # type: ignore[arg-type]


@dataclass(frozen=True)
class DeploymentRequest:
    """A signed artifact paired with its upload target."""

    artifact: SignedArtifact
    target: DeploymentTarget

    def __post_init__(self):
        sign_result = self.artifact.sign_result
        if sign_result.stage is not PipelineStage.SIGN or sign_result.status is not StageStatus.SUCCEEDED:
            raise DeployError(
                f"Cannot deploy {self.artifact.path.name}: sign stage is {sign_result.status.value}"
            )
        if not self.artifact.path.is_file():
            raise DeployError(f"Cannot deploy: signed artifact missing at {self.artifact.path}")


class DeploymentDispatcher:
    """Uploads signed artifacts with the external upload tool."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize dispatcher.

        Args:
            runner: Process runner (a default one is created if None)
            timeout: Seconds before the upload is killed
            cancel_event: Set to abort a running upload
            env: Environment for the upload tool (os.environ if None)
        """
        self.runner = runner or ProcessRunner()
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.env = dict(os.environ) if env is None else dict(env)

    def deploy(self, request: DeploymentRequest) -> DeployResult:
        """
        Upload the artifact.

        Args:
            request: Validated deployment request

        Returns:
            DeployResult on success

        Raises:
            DeployError: If the tool exits non-zero, times out or is cancelled
        """
        target = request.target
        artifact = request.artifact.path
        cmd = [
            str(target.tool),
            UPLOAD_SUBCOMMAND,
            "--app-id",
            target.app_id,
            "--app-secret",
            target.app_secret,
            "--apk",
            str(artifact),
            "--channel",
            target.channel,
        ]
        secrets = [target.app_secret]

        logging.info(f"Uploading {artifact.name} to channel '{target.channel}'")
        result = self.runner.run(
            cmd,
            cwd=artifact.parent,
            env=self.env,
            timeout=self.timeout,
            cancel_event=self.cancel_event,
            secrets=secrets,
        )

        if not result.success:
            if result.timed_out:
                reason = "Upload timed out"
            elif result.cancelled:
                reason = "Upload cancelled"
            else:
                reason = f"Upload failed with exit code {result.exit_code}"
            logging.error(redact(reason, secrets))
            raise DeployError(reason, output=result.output, exit_code=result.exit_code)

        return DeployResult(
            channel=target.channel,
            artifact=artifact,
            output=result.output,
            duration=result.duration,
        )
