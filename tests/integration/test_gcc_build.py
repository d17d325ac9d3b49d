"""
Integration tests building a small C project with the host toolchain.

This test suite validates:
1. A binary and a static + shared library build and the binary runs
2. An immediate rebuild runs no compiler or linker
3. Serial and parallel builds produce identical object files
4. Clean restores the project tree
"""

import hashlib
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from mbuild.build import BuildOrchestrator, Cleaner
from mbuild.build.build_context import BuildParams
from mbuild.config import load_manifest

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX toolchain"),
    pytest.mark.skipif(shutil.which("gcc") is None or shutil.which("ar") is None, reason="gcc and ar are required"),
]

MANIFEST = """
[project]
name = "hello"
file-extensions = ["c"]
compiler-flags = ["Wall", "O1"]
include = ["include"]
ignore = ["tests/"]

[[bin]]
name = "hello"
path = "src/main.c"

[[lib]]
name = "greet"
types = ["static", "shared"]
"""

FILES = {
    "include/greet.h": "#ifndef GREET_H\n#define GREET_H\nconst char *greeting(void);\nint answer(void);\n#endif\n",
    "src/greet.c": '#include "greet.h"\nconst char *greeting(void) { return "hello from mbuild"; }\n',
    "src/answer.c": '#include "greet.h"\nint answer(void) { return 42; }\n',
    "src/main.c": (
        '#include <stdio.h>\n#include "greet.h"\n'
        'int main(void) { printf("%s %d\\n", greeting(), answer()); return 0; }\n'
    ),
    "tests/broken.c": "this is not C\n",
}


def get_file_hash(file_path: Path) -> str:
    """Compute SHA256 hash of a file."""
    return hashlib.sha256(file_path.read_bytes()).hexdigest()


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "hello"
    for rel, text in FILES.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    (root / "mbuild.toml").write_text(MANIFEST)
    return load_manifest(root / "mbuild.toml")


def _build(manifest, jobs=2):
    params = BuildParams.create(project_dir=manifest.root, jobs=jobs, fail_fast=False, timeout=120.0)
    return BuildOrchestrator(manifest, params).build()


class TestGccBuild:
    """End-to-end builds with gcc and ar."""

    def test_build_and_run(self, project):
        result = _build(project)

        assert result.success, result.summary()
        assert result.compiled == 3
        binary = project.build_dir / "bin" / "hello"
        proc = subprocess.run([str(binary)], capture_output=True, text=True, timeout=30)
        assert proc.stdout.strip() == "hello from mbuild 42"
        assert (project.build_dir / "lib" / "libgreet.a").exists()

    def test_static_archive_members(self, project):
        assert _build(project).success

        proc = subprocess.run(
            ["ar", "t", str(project.build_dir / "lib" / "libgreet.a")],
            capture_output=True,
            text=True,
            timeout=30,
        )
        assert sorted(proc.stdout.split()) == ["answer.o", "greet.o"]

    def test_rebuild_is_noop(self, project):
        assert _build(project).success

        result = _build(project)

        assert result.success
        assert result.compiled == 0
        assert result.linked == 0

    def test_serial_and_parallel_objects_identical(self, project):
        assert _build(project, jobs=1).success
        serial = {p.name: get_file_hash(p) for p in (project.build_dir / "obj").iterdir()}
        Cleaner(project).clean()

        assert _build(project, jobs=4).success
        parallel = {p.name: get_file_hash(p) for p in (project.build_dir / "obj").iterdir()}

        assert serial == parallel

    def test_compile_error_reported(self, project):
        (project.root / "src" / "answer.c").write_text("int answer(void) { return }\n")

        result = _build(project)

        assert not result.success
        assert result.errors[0].file_path == "src/answer.c"
        assert "error" in result.errors[0].output

    def test_clean_restores_tree(self, project):
        before = sorted(p.relative_to(project.root) for p in project.root.rglob("*"))
        assert _build(project).success

        assert Cleaner(project).clean().success

        assert sorted(p.relative_to(project.root) for p in project.root.rglob("*")) == before
