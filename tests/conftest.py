"""Pytest configuration and fixtures for mbuild tests.

Besides the stdio-restoring hooks (Python 3.13 closes captured streams in some
teardown paths, see https://github.com/pytest-dev/pytest/issues/11439), this
provides a fake command runner that writes the files a compiler, archiver or
linker would write, so build orchestration can be tested without a toolchain.
"""

import sys
import threading
import time
import warnings
from pathlib import Path
from typing import Optional, Sequence

import pytest

from mbuild import output
from mbuild.config.manifest import load_manifest
from mbuild.subprocess_utils import CommandResult

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


class FakeRunner:
    """CommandRunner double.

    Compile commands (`-c SRC -o OBJ`) and link commands (`-o OUT`) create
    their output file; archive commands create the first argument ending in
    .a. Every call is recorded.

    Attributes:
        fail_sources: Source paths whose compilation fails
        fail_outputs: Output file names whose link/archive step fails
        fail_scripts: Shell commands that exit non-zero
        shell_outputs: Shell command -> stdout
        delay: Seconds each compilation sleeps (for concurrency tests)
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.shell_calls: list[str] = []
        self.fail_sources: set[str] = set()
        self.fail_outputs: set[str] = set()
        self.fail_scripts: set[str] = set()
        self.shell_outputs: dict[str, str] = {}
        self.delay = 0.0
        self.lock = threading.Lock()

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float]) -> CommandResult:
        cmd = [str(a) for a in args]
        with self.lock:
            self.calls.append(cmd)

        if "-c" in cmd:
            source = cmd[cmd.index("-c") + 1]
            if self.delay:
                time.sleep(self.delay)
            if source in self.fail_sources:
                return CommandResult(command=cmd, returncode=1, stderr=f"{source}:1:1: error: expected ';'")
            out = cmd[cmd.index("-o") + 1]
        elif "-o" in cmd:
            out = cmd[cmd.index("-o") + 1]
        else:
            out = next(a for a in cmd[1:] if a.endswith((".a", ".lib")))

        out_path = Path(out) if Path(out).is_absolute() else cwd / out
        if out_path.name in self.fail_outputs:
            return CommandResult(command=cmd, returncode=1, stderr="undefined reference to `missing'")
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(" ".join(cmd))
        return CommandResult(command=cmd, returncode=0)

    def run_shell(self, command: str, cwd: Path, timeout: Optional[float]) -> CommandResult:
        with self.lock:
            self.shell_calls.append(command)
        cmd = ["/bin/sh", "-c", command]
        if command in self.fail_scripts:
            return CommandResult(command=cmd, returncode=2, stderr=f"{command}: failed")
        return CommandResult(command=cmd, returncode=0, stdout=self.shell_outputs.get(command, ""))

    @property
    def compile_calls(self) -> list[list[str]]:
        return [c for c in self.calls if "-c" in c]

    @property
    def link_calls(self) -> list[list[str]]:
        return [c for c in self.calls if "-c" not in c]

    def compiled_sources(self) -> list[str]:
        return [c[c.index("-c") + 1] for c in self.compile_calls]

    def reset(self) -> None:
        with self.lock:
            self.calls.clear()
            self.shell_calls.clear()


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_project(tmp_path):
    """Factory writing a manifest plus source files and returning the loaded Manifest."""

    def _make(manifest_text: str, files: Sequence[str] = (), root: Optional[Path] = None):
        project_root = root or tmp_path / "proj"
        project_root.mkdir(parents=True, exist_ok=True)
        (project_root / "mbuild.toml").write_text(manifest_text)
        for rel in files:
            path = project_root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"// {rel}\n")
        return load_manifest(project_root / "mbuild.toml")

    return _make


@pytest.fixture(autouse=True)
def _reset_output_module():
    """Keep console output on the current sys.stdout between tests."""
    output._output_stream = None
    output.set_verbose(True)
    yield
    output._output_stream = None


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, trylast=True)
def pytest_runtest_teardown(item):  # noqa: ARG001
    """Ensure streams are restored during teardown phase."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__
