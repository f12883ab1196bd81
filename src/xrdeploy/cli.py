"""
Command-line interface for xrdeploy.

This module provides the `xrd` CLI tool for building, signing and uploading
the Android VR application.
"""

import argparse
import sys
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from xrdeploy.build.artifacts import ArtifactLayout
from xrdeploy.build.pipeline import DEFAULT_STAGE_TIMEOUT, PipelineExecutor, PipelineRun
from xrdeploy.build.planner import BuildPlanner, ResolutionError
from xrdeploy.build.process_runner import REDACTED
from xrdeploy.cli_utils import ErrorFormatter, PathValidator, setup_logging
from xrdeploy.config import ConfigError
from xrdeploy.config.resolver import VARIANTS, select_effective
from xrdeploy.config.sources import SETTINGS
from xrdeploy.deploy import DeployError

VERSION = "0.1.0"


@dataclass
class BuildArgs:
    """Arguments for the build and deploy commands."""

    project_dir: Path
    variant: str = "debug"
    properties: List[str] = field(default_factory=list)
    clean: bool = False
    stage_timeout: Optional[float] = DEFAULT_STAGE_TIMEOUT
    deploy: bool = False
    verbose: bool = False


@dataclass
class ResolveArgs:
    """Arguments for the resolve command."""

    project_dir: Path
    variant: str = "debug"
    properties: List[str] = field(default_factory=list)
    verbose: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    variant: Optional[str] = None
    verbose: bool = False


def print_run_summary(run: PipelineRun) -> None:
    """Print one line per stage."""
    print()
    print(f"Pipeline ({run.variant_name}):")
    for result in run.results.values():
        duration = f" [{result.duration:.2f}s]" if result.duration else ""
        print(f"  {result.describe()}{duration}")


def report_run_failure(run: PipelineRun) -> None:
    """Print why a run failed, with the failed tool's output verbatim."""
    if isinstance(run.error, ResolutionError):
        ErrorFormatter.print_problems("Configuration invalid", run.error.problems)
        return
    if isinstance(run.error, DeployError):
        ErrorFormatter.print_error("Upload failed!", str(run.error))
        return
    if run.cancelled:
        ErrorFormatter.print_error("Build cancelled")
        return
    failed = run.failed_stage()
    if failed is None:
        ErrorFormatter.print_error("Build did not complete")
        return
    message = failed.reason or ""
    if failed.output:
        message += f"\n\n{failed.output.rstrip()}"
    ErrorFormatter.print_error(f"Stage '{failed.stage.value}' failed!", message)


def build_command(args: BuildArgs) -> None:
    """Build (and optionally upload) the application.

    Examples:
        xrd build                             # Debug build of current directory
        xrd build -e release -P signing.store_file=key.jks ...
        xrd build --clean                     # Remove previous outputs first
        xrd deploy -e release -P deploy.app_id=... -P deploy.app_secret=...
    """
    title = "Deployment" if args.deploy else "Build"
    print(f"xrdeploy {title} System v{VERSION}")
    print()

    log_file = setup_logging(args.project_dir, args.verbose)
    cancel_event = threading.Event()
    try:
        planner = BuildPlanner(args.project_dir, properties=args.properties)
        executor = PipelineExecutor(
            stage_timeout=args.stage_timeout,
            cancel_event=cancel_event,
            verbose=args.verbose,
        )

        if not args.verbose:
            print(f"Building variant: {args.variant}...")

        start_time = time.time()
        run = executor.run(planner, args.variant, deploy=args.deploy, clean=args.clean)
        build_time = time.time() - start_time

        print_run_summary(run)
        if run.succeeded:
            if args.deploy and run.deploy_result is not None:
                ErrorFormatter.print_success(
                    f"Uploaded to channel '{run.deploy_result.channel}'"
                )
            else:
                ErrorFormatter.print_success("Build successful!")
            print()
            print(f"Artifact: {run.artifact}")
            print(f"Build time: {build_time:.2f}s")
            sys.exit(0)

        report_run_failure(run)
        if log_file is not None:
            print(f"Log: {log_file}")
        sys.exit(130 if run.cancelled else 1)

    except KeyboardInterrupt:
        cancel_event.set()
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def resolve_command(args: ResolveArgs) -> None:
    """Show the resolved settings of a variant and validate the toolchain.

    Examples:
        xrd resolve                   # Debug variant
        xrd resolve -e release -P version_code=7
    """
    setup_logging(None, args.verbose)
    try:
        planner = BuildPlanner(args.project_dir, properties=args.properties)
        try:
            sources = planner.collect_sources()
            variant = planner.resolver.resolve(sources.values, args.variant)
        except ConfigError as e:
            ErrorFormatter.print_problems("Configuration invalid", e.problems)
            sys.exit(1)

        print(f"Variant: {variant.name}")
        print()
        effective = select_effective(v for v in sources.values if v.name in SETTINGS)
        for name, value in sorted(effective.items()):
            shown = REDACTED if SETTINGS[name].secret else value.as_text()
            print(f"  {name:<22} = {shown}  ({value.provenance.value})")
        print(f"  {'version_code (used)':<22} = {variant.version_code}")

        try:
            plan = planner.plan(args.variant)
        except ResolutionError as e:
            ErrorFormatter.print_problems("Toolchain or signing invalid", e.problems)
            sys.exit(1)

        print()
        if plan.active_revision is not None:
            print(f"Active revision: {plan.active_revision}")
        for revision in plan.inert_revisions:
            print(f"Inert revision:  {revision} (not applied)")
        toolchain = plan.variant.native_toolchain
        if toolchain is not None:
            print("Toolchain chain:")
            for path in toolchain.toolchain_files:
                print(f"  {path}")
        ErrorFormatter.print_success("Configuration valid")
        sys.exit(0)

    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def clean_command(args: CleanArgs) -> None:
    """Remove build outputs.

    Examples:
        xrd clean                     # All variants
        xrd clean -e release          # Release outputs only
    """
    setup_logging(None, args.verbose)
    variants = [args.variant] if args.variant else list(VARIANTS)
    removed = False
    for variant in variants:
        layout = ArtifactLayout(args.project_dir, variant, application_id="")
        if layout.build_dir.exists():
            layout.clean()
            removed = True
            print(f"Removed {layout.build_dir}")
    if not removed:
        print("Nothing to clean")
    sys.exit(0)


def _add_common_arguments(parser: argparse.ArgumentParser, properties: bool = True) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-e",
        "--variant",
        default="debug",
        choices=VARIANTS,
        help="Build variant (default: debug)",
    )
    if properties:
        parser.add_argument(
            "-P",
            dest="properties",
            action="append",
            default=[],
            metavar="NAME=VALUE",
            help="Set a property, overriding every other source (repeatable)",
        )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_build_arguments(parser: argparse.ArgumentParser) -> None:
    _add_common_arguments(parser)
    parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Remove previous outputs of the variant before building",
    )
    parser.add_argument(
        "--stage-timeout",
        type=float,
        default=DEFAULT_STAGE_TIMEOUT,
        help=f"Seconds allowed per stage (default: {DEFAULT_STAGE_TIMEOUT:.0f})",
    )


def main() -> None:
    """xrdeploy - Build, sign and upload the VR application."""
    parser = argparse.ArgumentParser(
        prog="xrd",
        description="xrdeploy - Android VR build and release tool",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"xrd {VERSION}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Compile, package and sign the APK")
    _add_build_arguments(build_parser)

    deploy_parser = subparsers.add_parser("deploy", help="Build and upload the APK to the store")
    _add_build_arguments(deploy_parser)

    resolve_parser = subparsers.add_parser("resolve", help="Show resolved settings and validate them")
    _add_common_arguments(resolve_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove build outputs")
    _add_common_arguments(clean_parser, properties=False)
    clean_parser.set_defaults(variant=None)

    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    PathValidator.validate_project_dir(parsed_args.project_dir)

    if parsed_args.command in ("build", "deploy"):
        build_args = BuildArgs(
            project_dir=parsed_args.project_dir,
            variant=parsed_args.variant,
            properties=parsed_args.properties,
            clean=parsed_args.clean,
            stage_timeout=parsed_args.stage_timeout if parsed_args.stage_timeout > 0 else None,
            deploy=parsed_args.command == "deploy",
            verbose=parsed_args.verbose,
        )
        build_command(build_args)
    elif parsed_args.command == "resolve":
        resolve_args = ResolveArgs(
            project_dir=parsed_args.project_dir,
            variant=parsed_args.variant,
            properties=parsed_args.properties,
            verbose=parsed_args.verbose,
        )
        resolve_command(resolve_args)
    elif parsed_args.command == "clean":
        clean_args = CleanArgs(
            project_dir=parsed_args.project_dir,
            variant=parsed_args.variant,
            verbose=parsed_args.verbose,
        )
        clean_command(clean_args)


if __name__ == "__main__":
    main()
