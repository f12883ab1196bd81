"""Build output layout and artifact bookkeeping.

Output Structure:
    .xrd/
    ├── build/
    │   └── {variant}/                    # One isolated tree per variant
    │       ├── native/{abi}/             # CMake build tree per ABI
    │       ├── intermediates/            # unsigned / aligned APKs
    │       ├── {application_id}-{variant}.apk   # Final signed artifact
    │       └── fingerprint.json          # Inputs of the last good artifact
    └── logs/
        └── xrd.log

Each variant writes only below its own directory, so separate invocations for
different variants never touch each other's files. The final artifact is only
ever written by renaming a finished temp file over it.
"""

import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..config.resolver import ResolvedVariant

# Directories never hashed into the source fingerprint
IGNORED_DIRS = {".xrd", ".git", ".gradle", "build", "__pycache__"}


class ArtifactLayout:
    """Paths for one variant's outputs below ``<project>/.xrd``."""

    def __init__(self, project_dir: Path, variant_name: str, application_id: str):
        self.project_dir = Path(project_dir).resolve()
        self.variant_name = variant_name
        self.application_id = application_id
        self.root = self.project_dir / ".xrd"

    @property
    def build_dir(self) -> Path:
        return self.root / "build" / self.variant_name

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def intermediates_dir(self) -> Path:
        return self.build_dir / "intermediates"

    @property
    def unsigned_apk(self) -> Path:
        return self.intermediates_dir / "unsigned.apk"

    @property
    def aligned_apk(self) -> Path:
        return self.intermediates_dir / "aligned.apk"

    @property
    def artifact_path(self) -> Path:
        """Canonical path of the signed APK."""
        return self.build_dir / f"{self.application_id}-{self.variant_name}.apk"

    @property
    def fingerprint_path(self) -> Path:
        return self.build_dir / "fingerprint.json"

    def native_build_dir(self, abi: str) -> Path:
        return self.build_dir / "native" / abi

    def ensure_directories(self) -> None:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        self.intermediates_dir.mkdir(parents=True, exist_ok=True)

    def clean(self) -> None:
        """Remove every output of this variant."""
        if self.build_dir.exists():
            shutil.rmtree(self.build_dir)

    def temp_artifact_path(self) -> Path:
        """A fresh temp path next to the artifact (same filesystem for rename)."""
        self.build_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            dir=str(self.build_dir), prefix=f".{self.artifact_path.name}.", suffix=".tmp"
        )
        os.close(fd)
        return Path(name)

    def publish(self, temp_path: Path) -> Path:
        """Atomically move a finished temp file onto the artifact path."""
        os.replace(str(temp_path), str(self.artifact_path))
        return self.artifact_path

    def remove_temp_files(self) -> None:
        """Delete temp artifacts left behind by an interrupted run."""
        if not self.build_dir.exists():
            return
        for leftover in self.build_dir.glob(f".{self.artifact_path.name}.*.tmp"):
            leftover.unlink(missing_ok=True)

    def read_fingerprint(self) -> Optional[str]:
        try:
            data = json.loads(self.fingerprint_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        value = data.get("fingerprint") if isinstance(data, dict) else None
        return value if isinstance(value, str) else None

    def write_fingerprint(self, fingerprint: str) -> None:
        payload = json.dumps({"fingerprint": fingerprint}, indent=2)
        fd, name = tempfile.mkstemp(dir=str(self.build_dir), prefix=".fingerprint.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(name, str(self.fingerprint_path))

    def invalidate(self) -> None:
        """Forget the last good artifact's inputs before rewriting outputs."""
        self.fingerprint_path.unlink(missing_ok=True)

    def is_up_to_date(self, fingerprint: str) -> bool:
        return self.artifact_path.is_file() and self.read_fingerprint() == fingerprint


def hash_tree(root: Path, ignored: Iterable[str] = IGNORED_DIRS) -> str:
    """SHA-256 over relative paths and contents of every file below root."""
    ignored_names = set(ignored)
    digest = hashlib.sha256()
    if not root.exists():
        return digest.hexdigest()
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in ignored_names)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            digest.update(path.relative_to(root).as_posix().encode("utf-8"))
            digest.update(b"\0")
            with open(path, "rb") as handle:
                for block in iter(lambda: handle.read(65536), b""):
                    digest.update(block)
            digest.update(b"\0")
    return digest.hexdigest()


def compute_fingerprint(
    variant: ResolvedVariant,
    source_hash: str,
    extra: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Fingerprint every input that affects the signed artifact.

    Secrets are left out; the keystore path and alias are included so a key
    change forces a re-sign.
    """
    toolchain = variant.native_toolchain
    signing = variant.signing
    inputs = {
        "variant": variant.name,
        "application_id": variant.application_id,
        "version_code": variant.version_code,
        "version_name": variant.version_name,
        "abis": list(variant.abi_filters),
        "stl": variant.android_stl,
        "sdk": [variant.min_sdk, variant.target_sdk, variant.compile_sdk],
        "build_target": variant.build_target,
        "toolchain": [str(path) for path in toolchain.toolchain_files] if toolchain else [],
        "triplet": toolchain.target_triplet if toolchain else None,
        "signing": [str(signing.store_file), signing.key_alias] if signing else None,
        "sources": source_hash,
        "extra": dict(extra or {}),
    }
    encoded = json.dumps(inputs, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
