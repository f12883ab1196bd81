"""
Shared fixtures for build tests: a fake Android SDK/NDK tree, a project
directory and a process runner that records commands instead of running them.
"""

import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from xrdeploy.build.process_runner import ProcessResult, redact

NDK_VERSION = "29.0.13113456"


def touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def fake_sdk(tmp_path) -> Path:
    """SDK root with NDK, CMake, build-tools and platform files in place."""
    sdk = tmp_path / "sdk"
    ndk = sdk / "ndk" / NDK_VERSION
    touch(ndk / "build" / "cmake" / "android.toolchain.cmake")
    touch(
        ndk / "toolchains" / "llvm" / "prebuilt" / "linux-x86_64" / "sysroot" / "usr" / "lib"
        / "aarch64-linux-android" / "libc++_shared.so",
        "stl",
    )
    for tool in ("cmake", "ninja"):
        touch(sdk / "cmake" / "3.31.6" / "bin" / tool)
    for tool in ("aapt2", "zipalign", "apksigner"):
        touch(sdk / "build-tools" / "35.0.0" / tool)
    touch(sdk / "platforms" / "android-35" / "android.jar")
    return sdk


@pytest.fixture
def fake_vcpkg(tmp_path) -> Path:
    vcpkg = tmp_path / "vcpkg"
    touch(vcpkg / "scripts" / "buildsystems" / "vcpkg.cmake")
    return vcpkg


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """Project with a manifest and a native source tree."""
    project = tmp_path / "project"
    touch(project / "AndroidManifest.xml", "<manifest package='com.omixlab.choppyengine'/>")
    touch(project / "CMakeLists.txt", "add_library(ce_android SHARED main.cpp)\n")
    touch(project / "main.cpp", "int main() { return 0; }\n")
    return project


@pytest.fixture
def keystore(tmp_path) -> Path:
    return touch(tmp_path / "keys" / "release.jks", "keystore")


@pytest.fixture
def uploader(tmp_path) -> Path:
    return touch(tmp_path / "bin" / "ovr-platform-util")


@pytest.fixture
def environ(fake_sdk) -> Dict[str, str]:
    return {"ANDROID_HOME": str(fake_sdk), "PATH": ""}


@pytest.fixture
def release_properties(keystore, uploader) -> List[str]:
    return [
        f"signing.store_file={keystore}",
        "signing.store_password=store-secret",
        "signing.key_alias=upload",
        "signing.key_password=key-secret",
        "deploy.app_id=1234567890",
        "deploy.app_secret=app-secret",
        f"tools.uploader={uploader}",
    ]


class FakeProcessRunner:
    """
    Records commands and emulates the external tools.

    Each tool writes the file the real tool would have produced, so the
    pipeline's own checks see the same filesystem state as in a real build.
    A handler registered in ``failures`` for a tool name makes that tool fail.
    """

    def __init__(self):
        self.commands: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.failures: Dict[str, int] = {}
        self.hooks: Dict[str, Callable[[List[str]], None]] = {}
        self.timeouts: List[Optional[float]] = []
        self.time_out: set = set()

    def tool_names(self) -> List[str]:
        return [self._name(command) for command in self.commands]

    @staticmethod
    def _name(command: List[str]) -> str:
        name = Path(command[0]).name
        if name == "cmake":
            return "cmake --build" if "--build" in command else "cmake configure"
        if name == "apksigner":
            return f"apksigner {command[1]}"
        return name

    def run(self, command, cwd=None, env=None, timeout=None, cancel_event=None, secrets=()):
        command = [str(part) for part in command]
        self.commands.append(command)
        self.envs.append(dict(env) if env is not None else None)
        self.timeouts.append(timeout)
        name = self._name(command)
        shown = [redact(part, secrets) for part in command]

        if name in self.time_out:
            return ProcessResult(shown, -9, f"{name} hung", 1.0, timed_out=True)
        if name in self.failures:
            output = redact(f"{name} failed: error: something broke\nsecrets: {' '.join(secrets)}", secrets)
            return ProcessResult(shown, self.failures[name], output, 0.1)

        self._emulate(name, command)
        if name in self.hooks:
            self.hooks[name](command)
        if cancel_event is not None and cancel_event.is_set():
            return ProcessResult(shown, -15, f"{name} interrupted\n[cancelled]", 0.1, cancelled=True)
        return ProcessResult(shown, 0, f"{name} ok\n", 0.1)

    def _emulate(self, name: str, command: List[str]) -> None:
        if name == "cmake configure":
            for arg in command:
                if arg.startswith("-DCMAKE_LIBRARY_OUTPUT_DIRECTORY="):
                    self._lib_dir = Path(arg.split("=", 1)[1])
        elif name == "cmake --build":
            target = command[command.index("--target") + 1]
            touch(self._lib_dir / f"lib{target}.so", "engine")
        elif name == "aapt2":
            out = Path(command[command.index("-o") + 1])
            out.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(out, "w") as apk:
                apk.writestr("AndroidManifest.xml", "manifest")
        elif name == "zipalign":
            Path(command[-1]).write_bytes(Path(command[-2]).read_bytes())
        elif name == "apksigner sign":
            out = Path(command[command.index("--out") + 1])
            out.write_bytes(Path(command[-1]).read_bytes() + b"signed")


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()
