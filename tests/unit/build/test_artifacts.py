"""
Unit tests for the build output layout and fingerprinting.
"""

import pytest

from xrdeploy.build.artifacts import ArtifactLayout, hash_tree


@pytest.fixture
def layout(tmp_path):
    layout = ArtifactLayout(tmp_path, "release", "com.omixlab.choppyengine")
    layout.ensure_directories()
    return layout


class TestArtifactLayout:
    def test_paths(self, layout, tmp_path):
        assert layout.build_dir == tmp_path.resolve() / ".xrd" / "build" / "release"
        assert layout.artifact_path.name == "com.omixlab.choppyengine-release.apk"
        assert layout.native_build_dir("arm64-v8a") == layout.build_dir / "native" / "arm64-v8a"
        assert layout.intermediates_dir.is_dir()

    def test_variants_are_isolated(self, tmp_path):
        debug = ArtifactLayout(tmp_path, "debug", "app")
        release = ArtifactLayout(tmp_path, "release", "app")
        assert debug.build_dir != release.build_dir
        assert debug.artifact_path != release.artifact_path

    def test_publish_replaces_atomically(self, layout):
        layout.artifact_path.write_bytes(b"old")
        temp = layout.temp_artifact_path()
        temp.write_bytes(b"new")
        assert layout.publish(temp) == layout.artifact_path
        assert layout.artifact_path.read_bytes() == b"new"
        assert not temp.exists()

    def test_remove_temp_files(self, layout):
        first = layout.temp_artifact_path()
        second = layout.temp_artifact_path()
        assert first != second
        layout.remove_temp_files()
        assert not first.exists()
        assert not second.exists()

    def test_clean(self, layout):
        layout.artifact_path.write_bytes(b"apk")
        layout.clean()
        assert not layout.build_dir.exists()


class TestFingerprint:
    def test_round_trip_and_invalidate(self, layout):
        layout.artifact_path.write_bytes(b"apk")
        layout.write_fingerprint("abc")
        assert layout.read_fingerprint() == "abc"
        assert layout.is_up_to_date("abc")
        assert not layout.is_up_to_date("def")

        layout.invalidate()
        assert layout.read_fingerprint() is None
        assert not layout.is_up_to_date("abc")

    def test_not_up_to_date_without_artifact(self, layout):
        layout.write_fingerprint("abc")
        assert not layout.is_up_to_date("abc")

    def test_corrupt_fingerprint(self, layout):
        layout.fingerprint_path.write_text("{not json")
        assert layout.read_fingerprint() is None

    def test_no_temp_left_after_write(self, layout):
        layout.write_fingerprint("abc")
        assert list(layout.build_dir.glob(".fingerprint.*")) == []


class TestHashTree:
    def test_content_change_changes_hash(self, tmp_path):
        (tmp_path / "main.cpp").write_text("int a;")
        before = hash_tree(tmp_path)
        (tmp_path / "main.cpp").write_text("int b;")
        assert hash_tree(tmp_path) != before

    def test_ignored_dirs(self, tmp_path):
        (tmp_path / "main.cpp").write_text("int a;")
        before = hash_tree(tmp_path)
        (tmp_path / ".xrd").mkdir()
        (tmp_path / ".xrd" / "out.apk").write_text("x")
        assert hash_tree(tmp_path) == before

    def test_missing_root(self, tmp_path):
        assert hash_tree(tmp_path / "missing") == hash_tree(tmp_path / "also-missing")
