"""
xrdeploy.ini project file parser.

The project file records the project's settings as a series of revisions.
Each time the project bumps an SDK, NDK or version, a new ``[revision:*]``
section is added; the older sections stay in the file as history but only
the active one is fed to the resolver.

Example xrdeploy.ini:
    [project]
    name = choppyengine
    active_revision = 2

    [revision:1]
    ndk_version = 27.2.12479018
    compile_sdk = 34

    [revision:2]
    ndk_version = 29.0.13113456
    compile_sdk = 35

Usage:
    project = ProjectConfig(Path("xrdeploy.ini"))
    layer = project.active_layer()
"""

import configparser
from pathlib import Path
from typing import Dict, List, Optional

PROJECT_FILE_NAME = "xrdeploy.ini"


class ProjectConfigError(Exception):
    """Exception raised for xrdeploy.ini errors."""

    pass


class ProjectConfig:
    """Parser for xrdeploy.ini revision layers."""

    REVISION_PREFIX = "revision:"

    def __init__(self, ini_path: Path):
        """
        Initialize the parser with an xrdeploy.ini file.

        Args:
            ini_path: Path to the project file

        Raises:
            ProjectConfigError: If the file doesn't exist or cannot be parsed
        """
        self.ini_path = ini_path

        if not ini_path.exists():
            raise ProjectConfigError(f"Project file not found: {ini_path}")

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )

        try:
            self.config.read(ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to parse {ini_path}: {e}") from e

    @property
    def project_dir(self) -> Path:
        return self.ini_path.parent

    @property
    def name(self) -> Optional[str]:
        if "project" in self.config:
            value = self.config["project"].get("name", "").strip()
            return value or None
        return None

    def get_revisions(self) -> List[str]:
        """
        Get revision names in declaration order.

        Example:
            For [revision:1], [revision:2], returns ['1', '2']
        """
        return [
            section.split(":", 1)[1]
            for section in self.config.sections()
            if section.startswith(self.REVISION_PREFIX)
        ]

    def get_active_revision(self) -> Optional[str]:
        """
        Get the active revision name.

        Returns:
            The [project] active_revision value, else the last declared
            revision, else None when the file has no revisions

        Raises:
            ProjectConfigError: If active_revision names a missing section
        """
        revisions = self.get_revisions()
        if "project" in self.config:
            active = self.config["project"].get("active_revision", "").strip()
            if active:
                if active not in revisions:
                    raise ProjectConfigError(
                        f"active_revision '{active}' not found. "
                        + f"Available revisions: {', '.join(revisions) or 'none'}"
                    )
                return active
        return revisions[-1] if revisions else None

    def get_revision_layer(self, revision: str) -> Dict[str, str]:
        """
        Get the settings of one revision.

        Raises:
            ProjectConfigError: If the revision is not defined
        """
        section = f"{self.REVISION_PREFIX}{revision}"
        if section not in self.config:
            raise ProjectConfigError(f"Revision '{revision}' not found in {self.ini_path}")

        layer = {}
        for key in self.config[section]:
            try:
                value = self.config[section][key]
            except configparser.InterpolationError as e:
                raise ProjectConfigError(f"Bad value for '{key}' in [{section}]: {e}") from e
            if value is None:
                continue
            layer[key] = value.strip()
        return layer

    def active_layer(self) -> Dict[str, str]:
        """Settings of the active revision, or an empty mapping."""
        active = self.get_active_revision()
        if active is None:
            return {}
        return self.get_revision_layer(active)

    def inert_revisions(self) -> List[str]:
        """Revisions kept as history that take no part in resolution."""
        active = self.get_active_revision()
        return [revision for revision in self.get_revisions() if revision != active]


def load_project(project_dir: Path) -> Optional[ProjectConfig]:
    """Load xrdeploy.ini from a project directory if present."""
    ini_path = project_dir / PROJECT_FILE_NAME
    if not ini_path.exists():
        return None
    return ProjectConfig(ini_path)
