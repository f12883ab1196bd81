"""Build planning: everything that happens before the first external process.

The planner reads every configuration source, resolves the variant, builds
the toolchain chain, locates tools, picks the signing identity and, when an
upload is requested, validates the upload target. All problems from all of
these steps are gathered into one ResolutionError so the user can fix them
in a single pass.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from ..config.project_file import ProjectConfigError, load_project
from ..config.resolver import ConfigError, ResolvedVariant, VariantResolver
from ..config.sources import ConfigSourceSet
from ..deploy.deployer import DeployError, DeploymentTarget
from .signing import SigningError, SigningResolver
from .toolchain import BuildTools, ToolchainChainBuilder, ToolchainError


class ResolutionError(Exception):
    """Raised when a build cannot be planned.

    Attributes:
        errors: The ConfigError, ToolchainError, SigningError and DeployError
            instances collected
    """

    def __init__(self, errors: Sequence[Exception]):
        self.errors = list(errors)
        super().__init__("\n".join(str(error) for error in self.errors))

    @property
    def problems(self) -> List[str]:
        problems: List[str] = []
        for error in self.errors:
            problems.extend(getattr(error, "problems", None) or [str(error)])
        return problems


@dataclass(frozen=True)
class BuildPlan:
    """Resolved inputs for one pipeline run."""

    project_dir: Path
    variant: ResolvedVariant
    tools: BuildTools
    deploy_target: Optional[DeploymentTarget] = None
    inert_revisions: tuple = ()
    active_revision: Optional[str] = None


class BuildPlanner:
    """
    Produces a BuildPlan from the project directory and invocation inputs.

    Example usage:
        planner = BuildPlanner(project_dir, properties=["version_code=7"])
        plan = planner.plan("release", deploy=True)
    """

    def __init__(
        self,
        project_dir: Path,
        properties: Sequence[str] = (),
        environ: Optional[Mapping[str, str]] = None,
        resolver: Optional[VariantResolver] = None,
        toolchain_builder: Optional[ToolchainChainBuilder] = None,
        signing_resolver: Optional[SigningResolver] = None,
    ):
        self.project_dir = Path(project_dir).resolve()
        self.properties = list(properties)
        self.environ = dict(os.environ) if environ is None else dict(environ)
        self.resolver = resolver or VariantResolver()
        self.toolchain_builder = toolchain_builder or ToolchainChainBuilder()
        self.signing_resolver = signing_resolver or SigningResolver()

    def collect_sources(self) -> ConfigSourceSet:
        """
        Gather defaults, active revision, environment and properties.

        Raises:
            ConfigError: If the project file or a property is malformed
        """
        layer = {}
        try:
            project = load_project(self.project_dir)
            if project is not None:
                layer = project.active_layer()
            return ConfigSourceSet.collect(
                properties=self.properties,
                revision_layer=layer,
                environ=self.environ,
            )
        except (ProjectConfigError, ValueError) as e:
            raise ConfigError([str(e)]) from e

    def resolve_variant(self, variant_name: str) -> ResolvedVariant:
        """Resolve settings only, without toolchain or signing."""
        sources = self.collect_sources()
        return self.resolver.resolve(sources.values, variant_name)

    def plan(self, variant_name: str, deploy: bool = False) -> BuildPlan:
        """
        Plan a build.

        Args:
            variant_name: 'debug' or 'release'
            deploy: Whether the run will upload the artifact

        Returns:
            BuildPlan with a fully bound ResolvedVariant

        Raises:
            ResolutionError: Wrapping every configuration problem found
        """
        try:
            sources = self.collect_sources()
            variant = self.resolver.resolve(sources.values, variant_name)
        except ConfigError as e:
            raise ResolutionError([e]) from e

        errors: List[Exception] = []
        properties = sources.properties()

        missing_inputs = []
        manifest = self.project_dir / variant.manifest
        if not manifest.is_file():
            missing_inputs.append(f"Manifest not found: {manifest}")
        native_source = self.project_dir / variant.native_source
        if not (native_source / "CMakeLists.txt").is_file():
            missing_inputs.append(f"No CMakeLists.txt in native source directory {native_source}")
        if missing_inputs:
            errors.append(ConfigError(missing_inputs))

        toolchain = None
        tools = None
        try:
            toolchain = self.toolchain_builder.build(variant, self.environ)
        except ToolchainError as e:
            errors.append(e)
        try:
            tools = self.toolchain_builder.locate_tools(
                variant, self.environ, include_uploader=deploy
            )
        except ToolchainError as e:
            errors.append(e)

        identity = None
        try:
            identity = self.signing_resolver.resolve(variant.name, properties)
        except SigningError as e:
            errors.append(e)

        deploy_target = None
        if deploy:
            try:
                deploy_target = DeploymentTarget.from_properties(
                    properties,
                    channel=variant.deploy_channel,
                    tool=tools.uploader if tools else Path(variant.tools.get("uploader", "")),
                )
            except DeployError as e:
                errors.append(e)

        if errors:
            raise ResolutionError(errors)

        project = load_project(self.project_dir)
        bound = variant.bind(toolchain, identity)  # type: ignore[arg-type]
        logging.info(
            f"Planned {bound.name} build of {bound.application_id} "
            + f"for {', '.join(bound.abi_filters)}"
        )
        return BuildPlan(
            project_dir=self.project_dir,
            variant=bound,
            tools=tools,  # type: ignore[arg-type]
            deploy_target=deploy_target,
            inert_revisions=tuple(project.inert_revisions()) if project else (),
            active_revision=project.get_active_revision() if project else None,
        )
