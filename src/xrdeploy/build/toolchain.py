"""Native toolchain chain construction.

Turns a ResolvedVariant into the ordered CMake toolchain chain used to
cross-compile the engine library, and locates the SDK tools the later
stages need. Every referenced directory, file and executable is checked
here, before any compiler runs, and every problem is reported at once.

Chain layout:
    without vcpkg:  [<ndk>/build/cmake/android.toolchain.cmake]
    with vcpkg:     [<vcpkg>/scripts/buildsystems/vcpkg.cmake,
                     <ndk>/build/cmake/android.toolchain.cmake]   (chainloaded)
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from ..config.resolver import ResolvedVariant

# Supported ABIs and the vcpkg triplet that targets each one
SUPPORTED_ABIS: Dict[str, str] = {
    "arm64-v8a": "arm64-android",
    "armeabi-v7a": "arm-neon-android",
    "x86": "x86-android",
    "x86_64": "x64-android",
}

# Clang target triples used for the NDK sysroot library directories
NDK_SYSROOT_TRIPLES: Dict[str, str] = {
    "arm64-v8a": "aarch64-linux-android",
    "armeabi-v7a": "arm-linux-androideabi",
    "x86": "i686-linux-android",
    "x86_64": "x86_64-linux-android",
}

SUPPORTED_STLS = ("c++_shared", "c++_static", "none", "system")

NDK_TOOLCHAIN_FILE = Path("build") / "cmake" / "android.toolchain.cmake"
VCPKG_TOOLCHAIN_FILE = Path("scripts") / "buildsystems" / "vcpkg.cmake"


class ToolchainError(Exception):
    """Raised when the toolchain chain or a required tool is invalid.

    Attributes:
        problems: Every problem found
    """

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        lines = "\n".join(f"  - {problem}" for problem in self.problems)
        super().__init__(f"Toolchain validation failed ({len(self.problems)} problem(s)):\n{lines}")


@dataclass(frozen=True)
class NativeToolchainSpec:
    """Ordered toolchain chain for one variant.

    ``toolchain_files[0]`` is the file handed to CMAKE_TOOLCHAIN_FILE. When a
    package-manager toolchain is chained, the NDK file follows it and is
    passed as VCPKG_CHAINLOAD_TOOLCHAIN_FILE.
    """

    toolchain_files: Tuple[Path, ...]
    target_triplet: str
    abis: Tuple[str, ...]
    stl: str
    platform: str
    ndk_root: Path
    chainloaded: bool = False

    @property
    def ndk_toolchain_file(self) -> Path:
        return self.toolchain_files[-1]

    def cmake_arguments(self, abi: str) -> List[str]:
        """CMake cache arguments that select this chain for one ABI."""
        if abi not in self.abis:
            raise ToolchainError([f"ABI '{abi}' is not part of this toolchain ({', '.join(self.abis)})"])
        args = [f"-DCMAKE_TOOLCHAIN_FILE={self.toolchain_files[0]}"]
        if self.chainloaded:
            args.append(f"-DVCPKG_CHAINLOAD_TOOLCHAIN_FILE={self.ndk_toolchain_file}")
            args.append(f"-DVCPKG_TARGET_TRIPLET={self.target_triplet}")
        args.extend(
            [
                f"-DANDROID_ABI={abi}",
                f"-DANDROID_PLATFORM={self.platform}",
                f"-DANDROID_STL={self.stl}",
                f"-DANDROID_NDK={self.ndk_root}",
            ]
        )
        return args


@dataclass(frozen=True)
class BuildTools:
    """Located external executables and SDK files."""

    cmake: Path
    ninja: Optional[Path]
    aapt2: Path
    zipalign: Path
    apksigner: Path
    android_jar: Path
    uploader: Optional[Path] = None


def find_shared_stl(ndk_root: Path, abi: str) -> Optional[Path]:
    """Locate libc++_shared.so for an ABI in the NDK's prebuilt sysroot."""
    triple = NDK_SYSROOT_TRIPLES.get(abi)
    if triple is None:
        return None
    pattern = f"toolchains/llvm/prebuilt/*/sysroot/usr/lib/{triple}/libc++_shared.so"
    matches = sorted(ndk_root.glob(pattern))
    return matches[0] if matches else None


def find_executable(
    reference: str,
    search_dirs: List[Path],
    env: Mapping[str, str],
) -> Optional[Path]:
    """Locate an executable by explicit path, SDK directory or PATH.

    Args:
        reference: Tool name or path (property override)
        search_dirs: Directories searched before PATH
        env: Environment whose PATH is searched last

    Returns:
        Path to the executable, or None if not found
    """
    candidate = Path(reference).expanduser()
    if candidate.is_absolute() or os.sep in reference or (os.altsep and os.altsep in reference):
        return candidate if candidate.exists() else None

    suffixes = [".exe", ".bat", ""] if sys.platform == "win32" else [""]
    for directory in search_dirs:
        for suffix in suffixes:
            path = directory / f"{reference}{suffix}"
            if path.exists():
                return path

    found = shutil.which(reference, path=env.get("PATH", os.defpath))
    return Path(found) if found else None


class ToolchainChainBuilder:
    """
    Builds and validates the native toolchain chain.

    Example usage:
        builder = ToolchainChainBuilder()
        spec = builder.build(variant, os.environ)
        tools = builder.locate_tools(variant, os.environ)
    """

    def build(self, variant: ResolvedVariant, env: Mapping[str, str]) -> NativeToolchainSpec:
        """
        Build the toolchain chain for a variant.

        Args:
            variant: Resolved variant
            env: Process environment (used for PATH lookups)

        Returns:
            NativeToolchainSpec with every referenced file verified

        Raises:
            ToolchainError: Listing every missing path or unsupported value
        """
        problems: List[str] = []

        unsupported = [abi for abi in variant.abi_filters if abi not in SUPPORTED_ABIS]
        for abi in unsupported:
            problems.append(
                f"Unsupported ABI '{abi}' (supported: {', '.join(SUPPORTED_ABIS)})"
            )
        if not variant.abi_filters:
            problems.append("No ABI selected")

        if variant.android_stl not in SUPPORTED_STLS:
            problems.append(
                f"Unsupported STL '{variant.android_stl}' (supported: {', '.join(SUPPORTED_STLS)})"
            )

        ndk_root = self.ndk_root(variant)
        ndk_toolchain = ndk_root / NDK_TOOLCHAIN_FILE
        if not variant.sdk_root.is_dir():
            problems.append(f"Android SDK root does not exist: {variant.sdk_root}")
        if not ndk_root.is_dir():
            problems.append(f"Android NDK {variant.ndk_version} not found at {ndk_root}")
        elif not ndk_toolchain.is_file():
            problems.append(f"NDK toolchain file not found: {ndk_toolchain}")

        triplet = variant.target_triplet or self._default_triplet(variant.abi_filters)

        vcpkg_toolchain = self._package_manager_toolchain(variant, problems)
        if vcpkg_toolchain is not None:
            self._check_chain_compatible(variant.abi_filters, triplet, unsupported, problems)

        if problems:
            raise ToolchainError(problems)

        files: Tuple[Path, ...]
        if vcpkg_toolchain is not None:
            files = (vcpkg_toolchain, ndk_toolchain)
            logging.info(f"Chainloading {ndk_toolchain} through {vcpkg_toolchain} ({triplet})")
        else:
            files = (ndk_toolchain,)
            logging.info(f"Using NDK toolchain {ndk_toolchain}")

        return NativeToolchainSpec(
            toolchain_files=files,
            target_triplet=triplet,
            abis=variant.abi_filters,
            stl=variant.android_stl,
            platform=f"android-{variant.min_sdk}",
            ndk_root=ndk_root,
            chainloaded=vcpkg_toolchain is not None,
        )

    def ndk_root(self, variant: ResolvedVariant) -> Path:
        """NDK directory: explicit ndk_root, else the SDK side-by-side NDK."""
        if variant.ndk_root is not None:
            return variant.ndk_root
        return variant.sdk_root / "ndk" / variant.ndk_version

    def locate_tools(
        self,
        variant: ResolvedVariant,
        env: Mapping[str, str],
        include_uploader: bool = False,
    ) -> BuildTools:
        """
        Locate every external tool the pipeline will launch.

        Args:
            variant: Resolved variant
            env: Process environment (PATH)
            include_uploader: Also require the store upload tool

        Raises:
            ToolchainError: Listing every tool or file that is missing
        """
        problems: List[str] = []
        sdk = variant.sdk_root

        cmake_dirs = [sdk / "cmake" / variant.cmake_version / "bin"] if variant.cmake_version else []
        build_tools_dirs = (
            [sdk / "build-tools" / variant.build_tools_version]
            if variant.build_tools_version
            else []
        )

        def locate(name: str, dirs: List[Path], required: bool = True) -> Optional[Path]:
            reference = variant.tools.get(name, name)
            path = find_executable(reference, dirs, env)
            if path is None and required:
                where = ", ".join(str(d) for d in dirs) or "PATH"
                problems.append(f"Tool '{name}' not found (looked for '{reference}' in {where})")
            return path

        cmake = locate("cmake", cmake_dirs)
        ninja = locate("ninja", cmake_dirs, required=False)
        aapt2 = locate("aapt2", build_tools_dirs)
        zipalign = locate("zipalign", build_tools_dirs)
        apksigner = locate("apksigner", build_tools_dirs)
        uploader = locate("uploader", []) if include_uploader else None

        android_jar = sdk / "platforms" / f"android-{variant.compile_sdk}" / "android.jar"
        if not android_jar.is_file():
            problems.append(f"Platform android-{variant.compile_sdk} not installed: {android_jar}")

        if problems:
            raise ToolchainError(problems)

        return BuildTools(
            cmake=cmake,  # type: ignore[arg-type]
            ninja=ninja,
            aapt2=aapt2,  # type: ignore[arg-type]
            zipalign=zipalign,  # type: ignore[arg-type]
            apksigner=apksigner,  # type: ignore[arg-type]
            android_jar=android_jar,
            uploader=uploader,
        )

    def _package_manager_toolchain(
        self, variant: ResolvedVariant, problems: List[str]
    ) -> Optional[Path]:
        policy = variant.package_manager
        if policy == "disabled":
            if variant.vcpkg_root is not None:
                logging.info("vcpkg integration disabled; ignoring vcpkg_root")
            return None

        if variant.vcpkg_root is None:
            if policy == "required":
                problems.append(
                    "package_manager = required but vcpkg_root is not set (set VCPKG_ROOT)"
                )
            else:
                logging.debug("vcpkg_root not set; building without vcpkg")
            return None

        if not variant.vcpkg_root.is_dir():
            problems.append(f"vcpkg root does not exist: {variant.vcpkg_root}")
            return None

        toolchain = variant.vcpkg_root / VCPKG_TOOLCHAIN_FILE
        if not toolchain.is_file():
            problems.append(f"vcpkg toolchain file not found: {toolchain}")
            return None
        return toolchain

    @staticmethod
    def _default_triplet(abis: Tuple[str, ...]) -> str:
        for abi in abis:
            if abi in SUPPORTED_ABIS:
                return SUPPORTED_ABIS[abi]
        return ""

    @staticmethod
    def _check_chain_compatible(
        abis: Tuple[str, ...],
        triplet: str,
        unsupported: List[str],
        problems: List[str],
    ) -> None:
        supported = [abi for abi in abis if abi not in unsupported]
        if len(abis) != 1:
            problems.append(
                "A vcpkg-chained toolchain builds one ABI per configure; "
                + f"abi_filters lists {len(abis)} ({', '.join(abis)})"
            )
            return
        if not supported:
            return
        expected = SUPPORTED_ABIS[supported[0]]
        if triplet != expected and not triplet.startswith(f"{expected}-"):
            problems.append(
                f"Target triplet '{triplet}' does not match ABI '{supported[0]}' "
                + f"(expected '{expected}')"
            )
