"""Build directory layout.

Every generated file lives under the project's build directory
(default `.mbuild/`):

    .mbuild/
        obj/<stem>.o            object files, one per source file
        bin/<name>              linked executables
        lib/lib<name>.a         static archives
        lib/lib<name>.so        shared objects (.dylib on macOS, .dll on Windows)
        artifacts.json          artifact record used by `clean`
        build_state.json        compile configuration fingerprint
"""

import sys
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ..config.manifest import Manifest

OBJECT_SUFFIX = ".o"
ARTIFACT_RECORD_FILENAME = "artifacts.json"
BUILD_STATE_FILENAME = "build_state.json"


@dataclass(frozen=True)
class BuildLayout:
    """Output locations derived from a manifest.

    Attributes:
        root: Project root directory
        build_dir: Root of all generated files
    """

    root: Path
    build_dir: Path

    @classmethod
    def for_manifest(cls, manifest: Manifest) -> "BuildLayout":
        return cls(root=manifest.root, build_dir=manifest.build_dir)

    @property
    def obj_dir(self) -> Path:
        return self.build_dir / "obj"

    @property
    def bin_dir(self) -> Path:
        return self.build_dir / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.build_dir / "lib"

    @property
    def record_path(self) -> Path:
        return self.build_dir / ARTIFACT_RECORD_FILENAME

    @property
    def state_path(self) -> Path:
        return self.build_dir / BUILD_STATE_FILENAME

    def object_path(self, source: str) -> Path:
        """Object file for a project-relative source path (same stem, .o suffix)."""
        return self.obj_dir / f"{PurePosixPath(source).stem}{OBJECT_SUFFIX}"

    def binary_path(self, name: str) -> Path:
        suffix = ".exe" if sys.platform == "win32" else ""
        return self.bin_dir / f"{name}{suffix}"

    def static_library_path(self, name: str) -> Path:
        if sys.platform == "win32":
            return self.lib_dir / f"{name}.lib"
        return self.lib_dir / f"lib{name}.a"

    def shared_library_path(self, name: str) -> Path:
        if sys.platform == "win32":
            return self.lib_dir / f"{name}.dll"
        if sys.platform == "darwin":
            return self.lib_dir / f"lib{name}.dylib"
        return self.lib_dir / f"lib{name}.so"

    def relative(self, path: Path) -> str:
        """Project-relative POSIX form of a path, used in records and messages."""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()
