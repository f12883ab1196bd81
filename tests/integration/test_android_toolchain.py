"""
Integration test against a real Android SDK installation.

Requires ANDROID_HOME with the pinned NDK, CMake, build-tools and platform
installed. Run with --full.
"""

import os
from pathlib import Path

import pytest

from xrdeploy.build.planner import BuildPlanner


@pytest.mark.integration
def test_plan_against_installed_sdk(tmp_path):
    if not os.environ.get("ANDROID_HOME") and not os.environ.get("ANDROID_SDK_ROOT"):
        pytest.skip("ANDROID_HOME not set")

    project = tmp_path / "project"
    project.mkdir()
    (project / "AndroidManifest.xml").write_text(
        '<manifest xmlns:android="http://schemas.android.com/apk/res/android" '
        'package="com.omixlab.choppyengine"/>\n'
    )
    (project / "CMakeLists.txt").write_text("cmake_minimum_required(VERSION 3.22)\n")

    plan = BuildPlanner(project).plan("debug")
    toolchain = plan.variant.native_toolchain
    assert toolchain is not None
    assert toolchain.ndk_toolchain_file.is_file()
    assert Path(plan.tools.apksigner).exists()
