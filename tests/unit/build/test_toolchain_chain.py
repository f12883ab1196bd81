"""
Unit tests for native toolchain chain construction and tool lookup.
"""

import pytest

from xrdeploy.build.toolchain import (
    NDK_TOOLCHAIN_FILE,
    VCPKG_TOOLCHAIN_FILE,
    ToolchainChainBuilder,
    ToolchainError,
    find_executable,
    find_shared_stl,
)
from xrdeploy.config.resolver import VariantResolver
from xrdeploy.config.sources import ConfigSourceSet

from ..conftest import NDK_VERSION, touch


def resolve(environ, properties=(), variant="debug"):
    sources = ConfigSourceSet.collect(properties=list(properties), environ=environ)
    return VariantResolver().resolve(sources.values, variant)


@pytest.fixture
def builder():
    return ToolchainChainBuilder()


class TestChain:
    """Toolchain chain composition."""

    def test_ndk_only_without_vcpkg(self, builder, environ, fake_sdk):
        spec = builder.build(resolve(environ), environ)
        ndk_file = fake_sdk / "ndk" / NDK_VERSION / NDK_TOOLCHAIN_FILE
        assert spec.toolchain_files == (ndk_file,)
        assert not spec.chainloaded
        assert spec.platform == "android-32"
        assert spec.abis == ("arm64-v8a",)

    def test_vcpkg_chainloads_ndk(self, builder, environ, fake_sdk, fake_vcpkg):
        environ["VCPKG_ROOT"] = str(fake_vcpkg)
        spec = builder.build(resolve(environ), environ)
        ndk_file = fake_sdk / "ndk" / NDK_VERSION / NDK_TOOLCHAIN_FILE
        assert spec.toolchain_files == (fake_vcpkg / VCPKG_TOOLCHAIN_FILE, ndk_file)
        assert spec.chainloaded
        assert spec.target_triplet == "arm64-android"

        args = spec.cmake_arguments("arm64-v8a")
        assert f"-DCMAKE_TOOLCHAIN_FILE={fake_vcpkg / VCPKG_TOOLCHAIN_FILE}" in args
        assert f"-DVCPKG_CHAINLOAD_TOOLCHAIN_FILE={ndk_file}" in args
        assert "-DVCPKG_TARGET_TRIPLET=arm64-android" in args
        assert "-DANDROID_ABI=arm64-v8a" in args
        assert "-DANDROID_STL=c++_shared" in args

    def test_ndk_only_arguments(self, builder, environ, fake_sdk):
        spec = builder.build(resolve(environ), environ)
        args = spec.cmake_arguments("arm64-v8a")
        assert not any("VCPKG" in arg for arg in args)
        assert f"-DANDROID_NDK={fake_sdk / 'ndk' / NDK_VERSION}" in args

    def test_disabled_policy_ignores_vcpkg(self, builder, environ, fake_vcpkg):
        environ["VCPKG_ROOT"] = str(fake_vcpkg)
        spec = builder.build(resolve(environ, ["package_manager=disabled"]), environ)
        assert len(spec.toolchain_files) == 1

    def test_required_policy_without_vcpkg(self, builder, environ):
        with pytest.raises(ToolchainError, match="VCPKG_ROOT"):
            builder.build(resolve(environ, ["package_manager=required"]), environ)

    def test_explicit_ndk_root(self, builder, environ, tmp_path):
        ndk = tmp_path / "custom-ndk"
        touch(ndk / NDK_TOOLCHAIN_FILE)
        environ["ANDROID_NDK_HOME"] = str(ndk)
        spec = builder.build(resolve(environ), environ)
        assert spec.ndk_root == ndk

    def test_abi_not_in_chain(self, builder, environ):
        spec = builder.build(resolve(environ), environ)
        with pytest.raises(ToolchainError, match="x86_64"):
            spec.cmake_arguments("x86_64")


class TestValidation:
    """Problems are found before any compiler runs, and reported together."""

    def test_unsupported_abi(self, builder, environ):
        with pytest.raises(ToolchainError, match="Unsupported ABI 'mips'"):
            builder.build(resolve(environ, ["abi_filters=mips"]), environ)

    def test_unsupported_stl(self, builder, environ):
        with pytest.raises(ToolchainError, match="Unsupported STL"):
            builder.build(resolve(environ, ["android_stl=gnustl"]), environ)

    def test_missing_ndk_and_abi_reported_together(self, builder, environ):
        variant = resolve(environ, ["abi_filters=mips", "ndk_version=1.0"])
        with pytest.raises(ToolchainError) as exc_info:
            builder.build(variant, environ)
        problems = exc_info.value.problems
        assert len(problems) == 2
        assert any("mips" in p for p in problems)
        assert any("NDK 1.0 not found" in p for p in problems)

    def test_missing_sdk_root(self, builder, tmp_path):
        environ = {"ANDROID_HOME": str(tmp_path / "nowhere")}
        with pytest.raises(ToolchainError, match="SDK root does not exist"):
            builder.build(resolve(environ), environ)

    def test_vcpkg_toolchain_file_missing(self, builder, environ, tmp_path):
        empty = tmp_path / "empty-vcpkg"
        empty.mkdir()
        environ["VCPKG_ROOT"] = str(empty)
        with pytest.raises(ToolchainError, match="vcpkg toolchain file not found"):
            builder.build(resolve(environ), environ)

    def test_vcpkg_needs_single_abi(self, builder, environ, fake_vcpkg, fake_sdk):
        environ["VCPKG_ROOT"] = str(fake_vcpkg)
        with pytest.raises(ToolchainError, match="one ABI per configure"):
            builder.build(resolve(environ, ["abi_filters=arm64-v8a,x86_64"]), environ)

    def test_vcpkg_triplet_mismatch(self, builder, environ, fake_vcpkg):
        environ["VCPKG_ROOT"] = str(fake_vcpkg)
        environ["VCPKG_DEFAULT_TRIPLET"] = "x64-android"
        with pytest.raises(ToolchainError, match="does not match ABI"):
            builder.build(resolve(environ), environ)

    def test_vcpkg_triplet_variant_allowed(self, builder, environ, fake_vcpkg):
        environ["VCPKG_ROOT"] = str(fake_vcpkg)
        environ["VCPKG_DEFAULT_TRIPLET"] = "arm64-android-release"
        spec = builder.build(resolve(environ), environ)
        assert spec.target_triplet == "arm64-android-release"


class TestLocateTools:
    """External tool lookup."""

    def test_sdk_tools(self, builder, environ, fake_sdk):
        tools = builder.locate_tools(resolve(environ), environ)
        assert tools.cmake == fake_sdk / "cmake" / "3.31.6" / "bin" / "cmake"
        assert tools.ninja == fake_sdk / "cmake" / "3.31.6" / "bin" / "ninja"
        assert tools.apksigner == fake_sdk / "build-tools" / "35.0.0" / "apksigner"
        assert tools.android_jar == fake_sdk / "platforms" / "android-35" / "android.jar"
        assert tools.uploader is None

    def test_missing_tools_reported_together(self, builder, environ, fake_sdk):
        (fake_sdk / "build-tools" / "35.0.0" / "aapt2").unlink()
        (fake_sdk / "build-tools" / "35.0.0" / "zipalign").unlink()
        with pytest.raises(ToolchainError) as exc_info:
            builder.locate_tools(resolve(environ), environ)
        assert len(exc_info.value.problems) == 2

    def test_ninja_is_optional(self, builder, environ, fake_sdk):
        (fake_sdk / "cmake" / "3.31.6" / "bin" / "ninja").unlink()
        tools = builder.locate_tools(resolve(environ), environ)
        assert tools.ninja is None

    def test_missing_platform(self, builder, environ):
        with pytest.raises(ToolchainError, match="android-34 not installed"):
            builder.locate_tools(
                resolve(environ, ["compile_sdk=34", "target_sdk=34"]), environ
            )

    def test_uploader_override(self, builder, environ, uploader):
        variant = resolve(environ, [f"tools.uploader={uploader}"])
        tools = builder.locate_tools(variant, environ, include_uploader=True)
        assert tools.uploader == uploader

    def test_uploader_missing(self, builder, environ):
        with pytest.raises(ToolchainError, match="uploader"):
            builder.locate_tools(resolve(environ), environ, include_uploader=True)


class TestHelpers:
    def test_find_executable_explicit_path(self, tmp_path):
        tool = touch(tmp_path / "bin" / "cmake")
        assert find_executable(str(tool), [], {}) == tool
        assert find_executable(str(tmp_path / "bin" / "nope"), [], {}) is None

    def test_find_executable_on_path(self, tmp_path):
        tool = touch(tmp_path / "bin" / "mytool")
        tool.chmod(0o755)
        found = find_executable("mytool", [], {"PATH": str(tmp_path / "bin")})
        assert found is not None and found.name == "mytool"

    def test_find_shared_stl(self, fake_sdk):
        ndk = fake_sdk / "ndk" / NDK_VERSION
        assert find_shared_stl(ndk, "arm64-v8a").name == "libc++_shared.so"
        assert find_shared_stl(ndk, "x86_64") is None
        assert find_shared_stl(ndk, "mips") is None
