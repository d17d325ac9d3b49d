"""Tests for the bounded compilation pool."""

import threading
import time
from pathlib import Path
from typing import Optional, Sequence
from unittest.mock import patch

import pytest

from mbuild.build.compile_pool import CompilationJob, CompilePool, JobState
from mbuild.build.source_resolver import SourceFile
from mbuild.subprocess_utils import CommandResult


def _jobs(tmp_path: Path, names: Sequence[str]) -> list[CompilationJob]:
    jobs = []
    for name in names:
        source = SourceFile(path=f"{name}.c", object_path=tmp_path / "obj" / f"{name}.o")
        jobs.append(CompilationJob(source=source, command=["gcc", "-c", source.path, "-o", str(source.object_path)]))
    return jobs


class CountingRunner:
    """Runner that records the peak number of concurrent commands."""

    def __init__(self, delay: float = 0.05, fail: Sequence[str] = ()):
        self.delay = delay
        self.fail = set(fail)
        self.active = 0
        self.peak = 0
        self.started: list[str] = []
        self.lock = threading.Lock()

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float]) -> CommandResult:
        source = args[args.index("-c") + 1]
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.started.append(source)
        time.sleep(self.delay)
        with self.lock:
            self.active -= 1
        if source in self.fail:
            return CommandResult(command=list(args), returncode=1, stderr="error")
        return CommandResult(command=list(args), returncode=0)

    def run_shell(self, command: str, cwd: Path, timeout: Optional[float]) -> CommandResult:
        raise AssertionError("not used")


class TestCompilePool:
    """Test job execution, bounding and fail-fast."""

    def test_all_jobs_complete(self, tmp_path):
        runner = CountingRunner(delay=0.0)
        jobs = _jobs(tmp_path, ["a", "b", "c"])

        finished = CompilePool(runner, tmp_path, jobs=2).run(jobs)

        assert [j.state for j in finished] == [JobState.COMPLETED] * 3
        assert all(j.duration() is not None for j in finished)

    def test_parallelism_is_bounded(self, tmp_path):
        runner = CountingRunner(delay=0.05)

        CompilePool(runner, tmp_path, jobs=2).run(_jobs(tmp_path, [f"f{i}" for i in range(8)]))

        assert runner.peak <= 2

    def test_failure_without_fail_fast_runs_everything(self, tmp_path):
        runner = CountingRunner(delay=0.0, fail=["b.c"])
        jobs = _jobs(tmp_path, ["a", "b", "c", "d"])

        finished = CompilePool(runner, tmp_path, jobs=1).run(jobs)

        states = {j.job_id: j.state for j in finished}
        assert states == {
            "a.c": JobState.COMPLETED,
            "b.c": JobState.FAILED,
            "c.c": JobState.COMPLETED,
            "d.c": JobState.COMPLETED,
        }
        assert finished[1].result.stderr == "error"

    def test_fail_fast_cancels_pending_jobs(self, tmp_path):
        """With one worker, jobs after the failing one never start."""
        runner = CountingRunner(delay=0.0, fail=["b.c"])
        jobs = _jobs(tmp_path, ["a", "b", "c", "d"])

        finished = CompilePool(runner, tmp_path, jobs=1, fail_fast=True).run(jobs)

        assert [j.state for j in finished] == [
            JobState.COMPLETED,
            JobState.FAILED,
            JobState.CANCELLED,
            JobState.CANCELLED,
        ]
        assert runner.started == ["a.c", "b.c"]

    def test_progress_callback_per_job(self, tmp_path):
        runner = CountingRunner(delay=0.0)
        seen = []

        CompilePool(runner, tmp_path, jobs=3, progress_callback=lambda job: seen.append(job.job_id)).run(
            _jobs(tmp_path, ["a", "b", "c"])
        )

        assert sorted(seen) == ["a.c", "b.c", "c.c"]

    def test_empty(self, tmp_path):
        assert CompilePool(CountingRunner(), tmp_path).run([]) == []

    def test_keyboard_interrupt_propagates(self, tmp_path):
        """An interrupt in a worker is forwarded and stops the pool."""

        class InterruptingRunner(CountingRunner):
            def run(self, args, cwd, timeout):
                raise KeyboardInterrupt

        def forward(ke):
            raise ke

        pool = CompilePool(InterruptingRunner(), tmp_path, jobs=1)
        with patch("mbuild.build.compile_pool.handle_keyboard_interrupt_properly", side_effect=forward) as handler:
            with pytest.raises(KeyboardInterrupt):
                pool.run(_jobs(tmp_path, ["a"]))

        handler.assert_called_once()
        assert pool.cancel_event.is_set()
