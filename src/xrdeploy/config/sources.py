"""
Configuration sources for xrdeploy.

Every setting that feeds a build comes from one of four places:
- hardcoded defaults pinned for the current project revision
- the active ``[revision:*]`` layer of ``xrdeploy.ini``
- environment variables (toolchain roots and ``XRD_*`` overrides)
- per-invocation ``-P name=value`` properties

Each value is wrapped in a ConfigValue tagged with where it came from so the
resolver can apply precedence and report provenance.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

RawValue = Union[str, int, bool]


class Provenance(Enum):
    """Where a configuration value was read from."""

    DEFAULT = "default"
    REVISION_OVERRIDE = "revision-override"
    ENVIRONMENT = "environment"
    PROPERTY = "property"

    @property
    def rank(self) -> int:
        """Precedence rank; higher wins."""
        return _RANKS[self]


_RANKS = {
    Provenance.DEFAULT: 0,
    Provenance.REVISION_OVERRIDE: 1,
    Provenance.ENVIRONMENT: 2,
    Provenance.PROPERTY: 3,
}


@dataclass(frozen=True)
class ConfigValue:
    """A named setting with the source it came from."""

    name: str
    value: RawValue
    provenance: Provenance

    def as_text(self) -> str:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value).strip()


@dataclass(frozen=True)
class SettingSpec:
    """Declaration of a known setting."""

    name: str
    env_vars: Tuple[str, ...] = ()
    required: bool = False
    secret: bool = False


# Known settings. Anything else showing up in a source is a config error.
SETTINGS: Dict[str, SettingSpec] = {
    spec.name: spec
    for spec in [
        SettingSpec("application_id", ("XRD_APPLICATION_ID",), required=True),
        SettingSpec("version_code", ("XRD_VERSION_CODE",)),
        SettingSpec("version_name", ("XRD_VERSION_NAME",), required=True),
        SettingSpec("abi_filters", ("XRD_ABI_FILTERS",), required=True),
        SettingSpec("android_stl", ("XRD_ANDROID_STL",), required=True),
        SettingSpec("compile_sdk", ("XRD_COMPILE_SDK",), required=True),
        SettingSpec("min_sdk", ("XRD_MIN_SDK",), required=True),
        SettingSpec("target_sdk", ("XRD_TARGET_SDK",), required=True),
        SettingSpec("ndk_version", ("XRD_NDK_VERSION",), required=True),
        SettingSpec("cmake_version", ("XRD_CMAKE_VERSION",)),
        SettingSpec("build_tools_version", ("XRD_BUILD_TOOLS_VERSION",)),
        SettingSpec("build_target", ("XRD_BUILD_TARGET",), required=True),
        SettingSpec("target_triplet", ("VCPKG_DEFAULT_TRIPLET",)),
        SettingSpec("sdk_root", ("ANDROID_HOME", "ANDROID_SDK_ROOT"), required=True),
        SettingSpec("ndk_root", ("ANDROID_NDK_HOME", "ANDROID_NDK_ROOT")),
        SettingSpec("vcpkg_root", ("VCPKG_ROOT",)),
        SettingSpec("package_manager", ("XRD_PACKAGE_MANAGER",)),
        SettingSpec("native_source", ("XRD_NATIVE_SOURCE",)),
        SettingSpec("manifest", ("XRD_MANIFEST",)),
        SettingSpec("deploy_channel", ("XRD_DEPLOY_CHANNEL",)),
        SettingSpec("signing.store_file"),
        SettingSpec("signing.store_password", secret=True),
        SettingSpec("signing.key_alias"),
        SettingSpec("signing.key_password", secret=True),
        SettingSpec("deploy.app_id"),
        SettingSpec("deploy.app_secret", secret=True),
        SettingSpec("tools.cmake"),
        SettingSpec("tools.ninja"),
        SettingSpec("tools.aapt2"),
        SettingSpec("tools.zipalign"),
        SettingSpec("tools.apksigner"),
        SettingSpec("tools.uploader"),
    ]
}

REQUIRED_SETTINGS = tuple(name for name, spec in SETTINGS.items() if spec.required)

# Defaults pinned to the current project revision
DEFAULTS: Dict[str, RawValue] = {
    "application_id": "com.omixlab.choppyengine",
    "version_code": 1,
    "version_name": "1.0",
    "abi_filters": "arm64-v8a",
    "android_stl": "c++_shared",
    "compile_sdk": 35,
    "min_sdk": 32,
    "target_sdk": 35,
    "ndk_version": "29.0.13113456",
    "cmake_version": "3.31.6",
    "build_tools_version": "35.0.0",
    "build_target": "ce_android",
    "package_manager": "auto",
    "native_source": ".",
    "manifest": "AndroidManifest.xml",
    "deploy_channel": "alpha",
    "tools.uploader": "ovr-platform-util",
}


def default_values(defaults: Optional[Mapping[str, RawValue]] = None) -> List[ConfigValue]:
    """Wrap the pinned defaults as DEFAULT-tagged values."""
    data = DEFAULTS if defaults is None else defaults
    return [ConfigValue(name, value, Provenance.DEFAULT) for name, value in data.items()]


def environment_values(environ: Optional[Mapping[str, str]] = None) -> List[ConfigValue]:
    """
    Collect settings from environment variables.

    Only variables declared in SETTINGS are looked at. When several variables
    map to one setting, the first one that is set and non-empty wins.
    """
    env = os.environ if environ is None else environ
    values = []
    for spec in SETTINGS.values():
        for var in spec.env_vars:
            raw = env.get(var)
            if raw is not None and raw.strip():
                values.append(ConfigValue(spec.name, raw.strip(), Provenance.ENVIRONMENT))
                break
    return values


def parse_properties(pairs: Sequence[str]) -> List[ConfigValue]:
    """
    Parse ``name=value`` property strings from the command line.

    Raises:
        ValueError: If an entry has no ``=`` or an empty name
    """
    values = []
    for pair in pairs:
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValueError(f"Invalid property '{pair}', expected name=value")
        values.append(ConfigValue(name, value.strip(), Provenance.PROPERTY))
    return values


def revision_values(layer: Mapping[str, str]) -> List[ConfigValue]:
    """Wrap the active revision layer's entries."""
    return [ConfigValue(name, value, Provenance.REVISION_OVERRIDE) for name, value in layer.items()]


class ConfigSourceSet:
    """
    The typed union of every configuration source for one invocation.

    Usage:
        sources = ConfigSourceSet.collect(
            properties=["version_code=7"],
            revision_layer=project.active_layer(),
        )
        variant = VariantResolver().resolve(sources.values, "release")
    """

    def __init__(self, values: Iterable[ConfigValue]):
        self.values: List[ConfigValue] = list(values)

    @classmethod
    def collect(
        cls,
        properties: Sequence[str] = (),
        revision_layer: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        defaults: Optional[Mapping[str, RawValue]] = None,
    ) -> "ConfigSourceSet":
        values = default_values(defaults)
        if revision_layer:
            values.extend(revision_values(revision_layer))
        values.extend(environment_values(environ))
        values.extend(parse_properties(properties))
        return cls(values)

    def properties(self) -> Dict[str, str]:
        """Property-provenance values only, as text."""
        return {
            value.name: value.as_text()
            for value in self.values
            if value.provenance is Provenance.PROPERTY
        }

    def unknown_names(self) -> List[str]:
        return sorted({value.name for value in self.values if value.name not in SETTINGS})
