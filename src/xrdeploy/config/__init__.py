"""Configuration sources and variant resolution for xrdeploy."""

from .project_file import PROJECT_FILE_NAME, ProjectConfig, ProjectConfigError, load_project
from .resolver import (
    ConfigError,
    ResolvedVariant,
    VariantResolver,
    parse_version_code,
)
from .sources import ConfigSourceSet, ConfigValue, Provenance

__all__ = [
    "PROJECT_FILE_NAME",
    "ProjectConfig",
    "ProjectConfigError",
    "load_project",
    "ConfigError",
    "ResolvedVariant",
    "VariantResolver",
    "parse_version_code",
    "ConfigSourceSet",
    "ConfigValue",
    "Provenance",
]
