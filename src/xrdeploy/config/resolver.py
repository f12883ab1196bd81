"""
Variant resolution.

Merges the configuration source set into one immutable ResolvedVariant for
the requested build type. Precedence is property > environment >
revision-override > default; the first present value wins. Every problem
found is collected and raised together in a single ConfigError.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Tuple

from .sources import REQUIRED_SETTINGS, SETTINGS, ConfigValue, Provenance

if TYPE_CHECKING:
    from ..build.signing import SigningIdentity
    from ..build.toolchain import NativeToolchainSpec

VARIANTS = ("debug", "release")
PACKAGE_MANAGER_POLICIES = ("auto", "required", "disabled")
DEFAULT_VERSION_CODE = 1


class ConfigError(Exception):
    """Raised when required settings are missing or inconsistent.

    Attributes:
        problems: Every problem found, in a stable order
        missing: Names of required settings that had no value
    """

    def __init__(self, problems: List[str], missing: Optional[List[str]] = None):
        self.problems = list(problems)
        self.missing = list(missing or [])
        lines = "\n".join(f"  - {problem}" for problem in self.problems)
        super().__init__(f"Invalid configuration ({len(self.problems)} problem(s)):\n{lines}")


def parse_version_code(raw: Optional[str]) -> int:
    """
    Parse a version code, falling back to 1.

    A missing value silently uses the default. A value that is not a
    positive integer also uses the default but logs a warning, so the
    substitution is always visible.
    """
    if raw is None or not str(raw).strip():
        return DEFAULT_VERSION_CODE
    text = str(raw).strip()
    try:
        code = int(text)
    except ValueError:
        logging.warning(
            f"version_code '{text}' is not an integer; using {DEFAULT_VERSION_CODE}"
        )
        return DEFAULT_VERSION_CODE
    if code < 1:
        logging.warning(f"version_code {code} is not positive; using {DEFAULT_VERSION_CODE}")
        return DEFAULT_VERSION_CODE
    return code


def split_abis(raw: str) -> Tuple[str, ...]:
    """Split a comma/whitespace separated ABI list, keeping first-seen order."""
    abis: List[str] = []
    for chunk in raw.replace(",", " ").split():
        if chunk not in abis:
            abis.append(chunk)
    return tuple(abis)


def select_effective(values: Iterable[ConfigValue]) -> Dict[str, ConfigValue]:
    """
    Pick one effective value per setting name.

    Higher precedence wins; within the same provenance the later entry wins,
    so a property repeated on the command line takes its last value.
    """
    effective: Dict[str, ConfigValue] = {}
    for value in values:
        if not value.as_text():
            continue
        current = effective.get(value.name)
        if current is None or value.provenance.rank >= current.provenance.rank:
            effective[value.name] = value
    return effective


@dataclass(frozen=True)
class ResolvedVariant:
    """Fully resolved settings for one build type.

    Created once per invocation and never mutated; ``bind`` returns a new
    instance carrying the toolchain and signing identity.
    """

    name: str
    application_id: str
    version_code: int
    version_name: str
    abi_filters: Tuple[str, ...]
    android_stl: str
    compile_sdk: int
    min_sdk: int
    target_sdk: int
    ndk_version: str
    build_target: str
    sdk_root: Path
    cmake_version: Optional[str] = None
    build_tools_version: Optional[str] = None
    target_triplet: Optional[str] = None
    ndk_root: Optional[Path] = None
    vcpkg_root: Optional[Path] = None
    package_manager: str = "auto"
    native_source: str = "."
    manifest: str = "AndroidManifest.xml"
    deploy_channel: str = "alpha"
    tools: Mapping[str, str] = field(default_factory=dict)
    provenance: Mapping[str, Provenance] = field(default_factory=dict)
    native_toolchain: Optional["NativeToolchainSpec"] = None
    signing: Optional["SigningIdentity"] = None

    def __post_init__(self) -> None:
        # Read-only views so the snapshot cannot be changed in place
        object.__setattr__(self, "tools", MappingProxyType(dict(self.tools)))
        object.__setattr__(self, "provenance", MappingProxyType(dict(self.provenance)))

    @property
    def is_release(self) -> bool:
        return self.name == "release"

    @property
    def cmake_build_type(self) -> str:
        return "Release" if self.is_release else "Debug"

    def bind(
        self,
        native_toolchain: "NativeToolchainSpec",
        signing: "SigningIdentity",
    ) -> "ResolvedVariant":
        """Return a copy with toolchain and signing attached."""
        return replace(self, native_toolchain=native_toolchain, signing=signing)


class VariantResolver:
    """
    Resolves a configuration source set into a ResolvedVariant.

    Example usage:
        resolver = VariantResolver()
        variant = resolver.resolve(sources.values, "release")
        print(variant.version_code)
    """

    def resolve(self, sources: Iterable[ConfigValue], variant_name: str) -> ResolvedVariant:
        """
        Resolve settings for one variant.

        Args:
            sources: Values from every configuration source
            variant_name: 'debug' or 'release'

        Returns:
            ResolvedVariant without toolchain or signing attached

        Raises:
            ConfigError: Listing every missing or invalid setting
        """
        values = list(sources)
        problems: List[str] = []

        if variant_name not in VARIANTS:
            problems.append(
                f"Unknown variant '{variant_name}' (expected one of: {', '.join(VARIANTS)})"
            )

        for name in sorted({value.name for value in values if value.name not in SETTINGS}):
            problems.append(f"Unknown setting '{name}'")

        effective = select_effective(value for value in values if value.name in SETTINGS)

        missing = [name for name in REQUIRED_SETTINGS if name not in effective]
        for name in missing:
            problems.append(f"Missing required setting '{name}'{_hint(name)}")

        def text(name: str) -> Optional[str]:
            value = effective.get(name)
            return value.as_text() if value is not None else None

        sdk_levels: Dict[str, int] = {}
        for name in ("compile_sdk", "min_sdk", "target_sdk"):
            raw = text(name)
            if raw is None:
                continue
            try:
                sdk_levels[name] = int(raw)
            except ValueError:
                problems.append(f"Setting '{name}' must be an integer, got '{raw}'")

        if len(sdk_levels) == 3:
            if not sdk_levels["min_sdk"] <= sdk_levels["target_sdk"] <= sdk_levels["compile_sdk"]:
                problems.append(
                    "SDK levels must satisfy min_sdk <= target_sdk <= compile_sdk "
                    + f"(got {sdk_levels['min_sdk']}, {sdk_levels['target_sdk']}, "
                    + f"{sdk_levels['compile_sdk']})"
                )

        abis: Tuple[str, ...] = ()
        raw_abis = text("abi_filters")
        if raw_abis is not None:
            abis = split_abis(raw_abis)
            if not abis:
                problems.append("Setting 'abi_filters' must list at least one ABI")

        policy = (text("package_manager") or "auto").lower()
        if policy not in PACKAGE_MANAGER_POLICIES:
            problems.append(
                f"Setting 'package_manager' must be one of {', '.join(PACKAGE_MANAGER_POLICIES)}, "
                + f"got '{policy}'"
            )

        if problems:
            raise ConfigError(problems, missing)

        version_code = parse_version_code(text("version_code"))

        variant = ResolvedVariant(
            name=variant_name,
            application_id=text("application_id") or "",
            version_code=version_code,
            version_name=text("version_name") or "",
            abi_filters=abis,
            android_stl=text("android_stl") or "",
            compile_sdk=sdk_levels["compile_sdk"],
            min_sdk=sdk_levels["min_sdk"],
            target_sdk=sdk_levels["target_sdk"],
            ndk_version=text("ndk_version") or "",
            build_target=text("build_target") or "",
            sdk_root=Path(text("sdk_root") or "").expanduser(),
            cmake_version=text("cmake_version"),
            build_tools_version=text("build_tools_version"),
            target_triplet=text("target_triplet"),
            ndk_root=_optional_path(text("ndk_root")),
            vcpkg_root=_optional_path(text("vcpkg_root")),
            package_manager=policy,
            native_source=text("native_source") or ".",
            manifest=text("manifest") or "AndroidManifest.xml",
            deploy_channel=text("deploy_channel") or "alpha",
            tools={
                name.split(".", 1)[1]: value.as_text()
                for name, value in effective.items()
                if name.startswith("tools.")
            },
            provenance={
                name: value.provenance
                for name, value in effective.items()
                if not SETTINGS[name].secret
            },
        )
        logging.debug(
            f"Resolved variant {variant.name}: {variant.application_id} "
            + f"{variant.version_name} ({variant.version_code})"
        )
        return variant


def _optional_path(raw: Optional[str]) -> Optional[Path]:
    return Path(raw).expanduser() if raw else None


def _hint(name: str) -> str:
    env_vars = SETTINGS[name].env_vars
    if env_vars:
        return f" (set {' or '.join(env_vars)}, or pass -P {name}=...)"
    return f" (pass -P {name}=...)"
