"""
Pipeline execution for xrdeploy builds.

This module runs the fixed release pipeline for one variant:
1. RESOLVE  - plan the build (configuration, toolchain, tools, signing)
2. COMPILE  - configure and build the engine library with CMake, per ABI
3. PACKAGE  - link the manifest with aapt2, add native libraries, zipalign
4. SIGN     - sign with apksigner into a temp file, verify, publish atomically
5. DEPLOY   - upload the signed APK (only when requested)

Stages run strictly one after another. A stage starts only when all its
predecessors succeeded; otherwise it is skipped with a reason. Tool output is
kept verbatim on the stage result and never interpreted.

Example usage:
    executor = PipelineExecutor(verbose=True)
    run = executor.run(BuildPlanner(project_dir), "release", deploy=True)
    run.raise_for_failure()
    print(run.artifact)
"""

import hashlib
import logging
import os
import threading
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..deploy.deployer import DeployError, DeploymentDispatcher, DeploymentRequest, DeployResult
from .artifacts import ArtifactLayout, compute_fingerprint, hash_tree
from .planner import BuildPlan, BuildPlanner, ResolutionError
from .process_runner import ProcessRunner
from .stages import (
    PREDECESSORS,
    STAGE_ORDER,
    PipelineStage,
    SignedArtifact,
    StageExecutionError,
    StageResult,
    StageStatus,
)
from .toolchain import find_shared_stl

DEFAULT_STAGE_TIMEOUT = 1800.0
NOT_REQUESTED = "not requested"
ASSETS_DIR = "assets"
CANCELLED = "cancelled"

# apksigner reads passwords from these variables so they never appear on a command line
KEYSTORE_PASS_VAR = "XRD_KEYSTORE_PASS"
KEY_PASS_VAR = "XRD_KEY_PASS"

STAGE_LABELS = {
    PipelineStage.RESOLVE: "Resolving configuration",
    PipelineStage.COMPILE: "Compiling native library",
    PipelineStage.PACKAGE: "Packaging APK",
    PipelineStage.SIGN: "Signing APK",
    PipelineStage.DEPLOY: "Uploading to store",
}


class _StageFailed(Exception):
    """Internal signal that the current stage failed."""

    pass


@dataclass
class PipelineRun:
    """State of every stage for one invocation."""

    variant_name: str
    results: Dict[PipelineStage, StageResult] = field(default_factory=dict)
    application_id: Optional[str] = None
    artifact: Optional[Path] = None
    deploy_result: Optional[DeployResult] = None
    error: Optional[Exception] = None

    @classmethod
    def start(cls, variant_name: str) -> "PipelineRun":
        return cls(
            variant_name=variant_name,
            results={stage: StageResult(stage=stage) for stage in STAGE_ORDER},
        )

    def result(self, stage: PipelineStage) -> StageResult:
        return self.results[stage]

    @property
    def succeeded(self) -> bool:
        for result in self.results.values():
            if result.succeeded:
                continue
            if result.stage is PipelineStage.DEPLOY and result.reason == NOT_REQUESTED:
                continue
            return False
        return True

    @property
    def cancelled(self) -> bool:
        return any(result.reason == CANCELLED for result in self.results.values())

    def failed_stage(self) -> Optional[StageResult]:
        for stage in STAGE_ORDER:
            if self.results[stage].status is StageStatus.FAILED:
                return self.results[stage]
        return None

    def signed_artifact(self) -> Optional[SignedArtifact]:
        """The signed APK of this run, only if SIGN succeeded."""
        sign_result = self.results[PipelineStage.SIGN]
        if not sign_result.succeeded or self.artifact is None:
            return None
        return SignedArtifact(
            path=self.artifact,
            variant_name=self.variant_name,
            application_id=self.application_id or "",
            sign_result=sign_result,
        )

    def raise_for_failure(self) -> None:
        """
        Raise the error that stopped this run, if any.

        Raises:
            ResolutionError: If planning failed
            DeployError: If the upload failed
            StageExecutionError: If an external tool failed
        """
        if self.error is not None:
            raise self.error
        failed = self.failed_stage()
        if failed is not None:
            raise StageExecutionError(failed)


class PipelineExecutor:
    """Runs the build pipeline for one variant."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        dispatcher: Optional[DeploymentDispatcher] = None,
        stage_timeout: Optional[float] = DEFAULT_STAGE_TIMEOUT,
        cancel_event: Optional[threading.Event] = None,
        env: Optional[Mapping[str, str]] = None,
        verbose: bool = False,
    ):
        """
        Initialize the executor.

        Args:
            runner: Process runner for external tools
            dispatcher: Upload dispatcher (created from runner if None)
            stage_timeout: Seconds allowed per stage (None for no limit)
            cancel_event: Set to abort the run
            env: Environment for child processes
            verbose: Print stage progress
        """
        self.runner = runner or ProcessRunner(echo=verbose)
        self.cancel_event = cancel_event or threading.Event()
        self.env = dict(os.environ) if env is None else dict(env)
        self.dispatcher = dispatcher or DeploymentDispatcher(
            self.runner, timeout=stage_timeout, cancel_event=self.cancel_event, env=self.env
        )
        self.stage_timeout = stage_timeout
        self.verbose = verbose
        self._deadline: Optional[float] = None

    def run(
        self,
        planner: BuildPlanner,
        variant_name: str,
        deploy: bool = False,
        clean: bool = False,
    ) -> PipelineRun:
        """
        Plan and execute the pipeline.

        Args:
            planner: Planner for the project
            variant_name: 'debug' or 'release'
            deploy: Upload after signing
            clean: Remove previous outputs of this variant first

        Returns:
            PipelineRun with the state of every stage
        """
        run = PipelineRun.start(variant_name)
        resolve = run.result(PipelineStage.RESOLVE)
        self._announce(PipelineStage.RESOLVE)
        resolve.status = StageStatus.RUNNING
        start = time.monotonic()
        try:
            plan = planner.plan(variant_name, deploy=deploy)
        except ResolutionError as e:
            resolve.status = StageStatus.FAILED
            resolve.reason = "configuration invalid"
            resolve.output = str(e)
            run.error = e
            self._skip_remaining(run, deploy)
            return run
        except KeyboardInterrupt:
            self.cancel_event.set()
            resolve.status = StageStatus.FAILED
            resolve.reason = CANCELLED
            self._skip_remaining(run, deploy)
            return run
        finally:
            resolve.duration = time.monotonic() - start

        resolve.status = StageStatus.SUCCEEDED
        return self._execute(plan, run, deploy, clean)

    def execute(self, plan: BuildPlan, deploy: bool = False, clean: bool = False) -> PipelineRun:
        """Execute the pipeline for an already resolved plan."""
        run = PipelineRun.start(plan.variant.name)
        run.result(PipelineStage.RESOLVE).status = StageStatus.SUCCEEDED
        return self._execute(plan, run, deploy, clean)

    def _execute(self, plan: BuildPlan, run: PipelineRun, deploy: bool, clean: bool) -> PipelineRun:
        variant = plan.variant
        layout = ArtifactLayout(plan.project_dir, variant.name, variant.application_id)
        run.application_id = variant.application_id

        if clean:
            logging.info(f"Cleaning {layout.build_dir}")
            layout.clean()
        layout.ensure_directories()
        layout.remove_temp_files()

        fingerprint = self._fingerprint(plan)
        reuse = layout.is_up_to_date(fingerprint)
        if reuse:
            logging.info(f"{layout.artifact_path.name} is up to date")

        actions: List[tuple] = [
            (PipelineStage.COMPILE, self._compile),
            (PipelineStage.PACKAGE, self._package),
            (PipelineStage.SIGN, lambda result, p, l: self._sign(result, p, l, fingerprint)),
        ]
        for stage, action in actions:
            if not self._gate(run, stage):
                continue
            if reuse:
                result = run.result(stage)
                result.status = StageStatus.SUCCEEDED
                result.reused = True
                continue
            if stage is PipelineStage.COMPILE:
                layout.invalidate()
            self._run_stage(run.result(stage), action, plan, layout)

        if run.result(PipelineStage.SIGN).succeeded:
            run.artifact = layout.artifact_path

        self._deploy(run, plan, deploy)
        return run

    def _gate(self, run: PipelineRun, stage: PipelineStage) -> bool:
        """Mark the stage skipped unless every predecessor succeeded."""
        result = run.result(stage)
        if self.cancel_event.is_set():
            result.status = StageStatus.SKIPPED
            result.reason = CANCELLED
            return False
        for predecessor in PREDECESSORS[stage]:
            previous = run.result(predecessor)
            if not previous.succeeded:
                result.status = StageStatus.SKIPPED
                result.reason = f"{predecessor.value} {previous.status.value}"
                return False
        return True

    def _skip_remaining(self, run: PipelineRun, deploy: bool) -> None:
        for stage in STAGE_ORDER:
            result = run.result(stage)
            if result.status is not StageStatus.PENDING:
                continue
            if stage is PipelineStage.DEPLOY and not deploy:
                result.status = StageStatus.SKIPPED
                result.reason = NOT_REQUESTED
                continue
            self._gate(run, stage)

    def _run_stage(
        self,
        result: StageResult,
        action: Callable[[StageResult, BuildPlan, ArtifactLayout], None],
        plan: BuildPlan,
        layout: ArtifactLayout,
    ) -> None:
        self._announce(result.stage)
        result.status = StageStatus.RUNNING
        start = time.monotonic()
        self._deadline = start + self.stage_timeout if self.stage_timeout else None
        try:
            action(result, plan, layout)
        except _StageFailed as e:
            result.status = StageStatus.FAILED
            result.reason = str(e)
            logging.error(f"Stage {result.stage.value} failed: {e}")
        except OSError as e:
            result.status = StageStatus.FAILED
            result.reason = f"{type(e).__name__}: {e}"
            logging.error(f"Stage {result.stage.value} failed: {e}")
        except KeyboardInterrupt:
            self.cancel_event.set()
            result.status = StageStatus.FAILED
            result.reason = CANCELLED
            logging.warning(f"Stage {result.stage.value} interrupted")
        else:
            result.status = StageStatus.SUCCEEDED
        finally:
            result.duration = time.monotonic() - start
            self._deadline = None

    def _launch(
        self,
        result: StageResult,
        command: Sequence[object],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        secrets: Sequence[str] = (),
    ) -> None:
        """Run one tool for the current stage; raise _StageFailed on failure."""
        timeout = None
        if self._deadline is not None:
            timeout = max(self._deadline - time.monotonic(), 0.001)
        process = self.runner.run(
            [str(part) for part in command],
            cwd=cwd,
            env=env if env is not None else self.env,
            timeout=timeout,
            cancel_event=self.cancel_event,
            secrets=secrets,
        )
        result.record(process)
        if process.timed_out:
            raise _StageFailed("timeout")
        if process.cancelled:
            raise _StageFailed(CANCELLED)
        if process.exit_code is None:
            raise _StageFailed(process.output.strip() or f"{Path(process.command[0]).name} did not start")
        if process.exit_code != 0:
            raise _StageFailed(f"{Path(process.command[0]).name} exited with code {process.exit_code}")

    def _compile(self, result: StageResult, plan: BuildPlan, layout: ArtifactLayout) -> None:
        variant = plan.variant
        toolchain = variant.native_toolchain
        tools = plan.tools
        if toolchain is None:
            raise _StageFailed("variant has no native toolchain")

        source_dir = (plan.project_dir / variant.native_source).resolve()
        for abi in toolchain.abis:
            build_dir = layout.native_build_dir(abi)
            lib_dir = build_dir / "lib"
            configure: List[object] = [tools.cmake, "-S", source_dir, "-B", build_dir]
            if tools.ninja is not None:
                configure.extend(["-G", "Ninja", f"-DCMAKE_MAKE_PROGRAM={tools.ninja}"])
            configure.append(f"-DCMAKE_BUILD_TYPE={variant.cmake_build_type}")
            configure.extend(toolchain.cmake_arguments(abi))
            configure.append(f"-DCMAKE_LIBRARY_OUTPUT_DIRECTORY={lib_dir}")
            self._launch(result, configure, cwd=plan.project_dir)

            self._launch(
                result,
                [
                    tools.cmake,
                    "--build",
                    build_dir,
                    "--target",
                    variant.build_target,
                    "--config",
                    variant.cmake_build_type,
                ],
                cwd=plan.project_dir,
            )

            library = lib_dir / f"lib{variant.build_target}.so"
            if not library.is_file():
                raise _StageFailed(f"build reported success but {library} was not produced")

    def _package(self, result: StageResult, plan: BuildPlan, layout: ArtifactLayout) -> None:
        variant = plan.variant
        toolchain = variant.native_toolchain
        tools = plan.tools
        if toolchain is None:
            raise _StageFailed("variant has no native toolchain")

        layout.unsigned_apk.unlink(missing_ok=True)
        layout.aligned_apk.unlink(missing_ok=True)

        link: List[object] = [
            tools.aapt2,
            "link",
            "-o",
            layout.unsigned_apk,
            "--manifest",
            plan.project_dir / variant.manifest,
            "-I",
            tools.android_jar,
            "--min-sdk-version",
            variant.min_sdk,
            "--target-sdk-version",
            variant.target_sdk,
            "--version-code",
            variant.version_code,
            "--version-name",
            variant.version_name,
            "--rename-manifest-package",
            variant.application_id,
        ]
        assets = plan.project_dir / ASSETS_DIR
        if assets.is_dir():
            link.extend(["-A", assets])
        self._launch(result, link, cwd=plan.project_dir)

        libraries = []
        for abi in toolchain.abis:
            libraries.append(
                (abi, layout.native_build_dir(abi) / "lib" / f"lib{variant.build_target}.so")
            )
            if toolchain.stl == "c++_shared":
                stl = find_shared_stl(toolchain.ndk_root, abi)
                if stl is None:
                    raise _StageFailed(f"libc++_shared.so for {abi} not found in {toolchain.ndk_root}")
                libraries.append((abi, stl))

        try:
            with zipfile.ZipFile(layout.unsigned_apk, "a", compression=zipfile.ZIP_STORED) as apk:
                for abi, library in libraries:
                    if not library.is_file():
                        raise _StageFailed(f"native library missing: {library}")
                    apk.write(library, f"lib/{abi}/{library.name}")
        except zipfile.BadZipFile as e:
            raise _StageFailed(f"aapt2 produced an unreadable APK: {e}")

        self._launch(
            result,
            [tools.zipalign, "-p", "-f", "4", layout.unsigned_apk, layout.aligned_apk],
            cwd=layout.build_dir,
        )

    def _sign(
        self,
        result: StageResult,
        plan: BuildPlan,
        layout: ArtifactLayout,
        fingerprint: str,
    ) -> None:
        identity = plan.variant.signing
        tools = plan.tools
        if identity is None:
            raise _StageFailed("variant has no signing identity")

        env = dict(self.env)
        env[KEYSTORE_PASS_VAR] = identity.store_password
        env[KEY_PASS_VAR] = identity.key_password

        temp_path = layout.temp_artifact_path()
        try:
            self._launch(
                result,
                [
                    tools.apksigner,
                    "sign",
                    "--ks",
                    identity.store_file,
                    "--ks-key-alias",
                    identity.key_alias,
                    "--ks-pass",
                    f"env:{KEYSTORE_PASS_VAR}",
                    "--key-pass",
                    f"env:{KEY_PASS_VAR}",
                    "--v4-signing-enabled",
                    "false",
                    "--out",
                    temp_path,
                    layout.aligned_apk,
                ],
                cwd=layout.build_dir,
                env=env,
                secrets=identity.secrets,
            )
            self._launch(result, [tools.apksigner, "verify", temp_path], cwd=layout.build_dir)
            layout.publish(temp_path)
        finally:
            temp_path.unlink(missing_ok=True)

        layout.write_fingerprint(fingerprint)
        logging.info(f"Signed artifact: {layout.artifact_path}")

    def _deploy(self, run: PipelineRun, plan: BuildPlan, deploy: bool) -> None:
        result = run.result(PipelineStage.DEPLOY)
        if not deploy:
            result.status = StageStatus.SKIPPED
            result.reason = NOT_REQUESTED
            return
        if not self._gate(run, PipelineStage.DEPLOY):
            return

        self._announce(PipelineStage.DEPLOY)
        result.status = StageStatus.RUNNING
        start = time.monotonic()
        try:
            artifact = run.signed_artifact()
            if artifact is None or plan.deploy_target is None:
                raise DeployError("No signed artifact or deployment target for this run")
            request = DeploymentRequest(artifact=artifact, target=plan.deploy_target)
            run.deploy_result = self.dispatcher.deploy(request)
        except DeployError as e:
            result.status = StageStatus.FAILED
            result.exit_code = e.exit_code
            result.output = e.output
            result.reason = CANCELLED if self.cancel_event.is_set() else str(e).splitlines()[0]
            run.error = e
        except KeyboardInterrupt:
            self.cancel_event.set()
            result.status = StageStatus.FAILED
            result.reason = CANCELLED
        else:
            result.status = StageStatus.SUCCEEDED
            result.exit_code = 0
            result.output = run.deploy_result.output
        finally:
            result.duration = time.monotonic() - start

    def _fingerprint(self, plan: BuildPlan) -> str:
        variant = plan.variant
        source_hash = hash_tree((plan.project_dir / variant.native_source).resolve())
        manifest = plan.project_dir / variant.manifest
        assets = plan.project_dir / ASSETS_DIR
        extra = {
            "manifest": _file_digest(manifest) if manifest.is_file() else None,
            "assets": hash_tree(assets) if assets.is_dir() else None,
            "tools": {
                "cmake": str(plan.tools.cmake),
                "aapt2": str(plan.tools.aapt2),
                "apksigner": str(plan.tools.apksigner),
                "android_jar": str(plan.tools.android_jar),
            },
        }
        return compute_fingerprint(variant, source_hash, extra)

    def _announce(self, stage: PipelineStage) -> None:
        position = STAGE_ORDER.index(stage) + 1
        message = f"[{position}/{len(STAGE_ORDER)}] {STAGE_LABELS[stage]}..."
        logging.info(message)
        if self.verbose:
            print(message)


def _file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for block in iter(lambda: handle.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()
