"""
Compile Pool - Bounded parallel compilation with fail-fast cancellation.

Compilation jobs are independent, so they run on a ThreadPoolExecutor of
`jobs` workers; each worker blocks on one compiler subprocess at a time.
With fail-fast enabled, the first failure sets a shared event. Workers check
the event before starting a job and mark the job CANCELLED instead of running
it; compilations already in flight finish normally.
"""

import logging
import multiprocessing
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..interrupt_utils import handle_keyboard_interrupt_properly
from ..subprocess_utils import CommandResult, CommandRunner
from .source_resolver import SourceFile

logger = logging.getLogger(__name__)


class JobState(Enum):
    """State of a compilation job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class CompilationJob:
    """Single compilation job."""

    source: SourceFile
    command: list[str]
    state: JobState = JobState.PENDING
    result: Optional[CommandResult] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def job_id(self) -> str:
        return self.source.path

    def duration(self) -> Optional[float]:
        """Get job duration in seconds."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None


class CompilePool:
    """Runs compilation jobs on a bounded worker pool.

    Args:
        runner: Command runner used for compiler invocations
        cwd: Working directory for the compiler (the project root)
        jobs: Maximum number of concurrent compilations (default: CPU count)
        timeout: Per-compilation timeout in seconds
        fail_fast: Cancel pending jobs after the first failure
        progress_callback: Called in the calling thread after each job
            finishes, with the finished job
    """

    def __init__(
        self,
        runner: CommandRunner,
        cwd: Path,
        jobs: Optional[int] = None,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
        progress_callback: Optional[Callable[[CompilationJob], None]] = None,
    ):
        self.runner = runner
        self.cwd = cwd
        self.num_workers = max(1, jobs or multiprocessing.cpu_count())
        self.timeout = timeout
        self.fail_fast = fail_fast
        self.progress_callback = progress_callback
        self.cancel_event = threading.Event()
        self.lock = threading.Lock()

    def run(self, jobs: Sequence[CompilationJob]) -> list[CompilationJob]:
        """Compile every job and wait for all of them.

        Returns:
            The jobs, in submission order, each in a terminal state
        """
        if not jobs:
            return []

        logger.info(f"Compiling {len(jobs)} file(s) with {self.num_workers} worker(s)")
        with ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="compile") as executor:
            futures = {executor.submit(self._execute_job, job): job for job in jobs}
            try:
                for future in as_completed(futures):
                    job = futures[future]
                    future.result()
                    self._report(job)
                    if self.progress_callback:
                        self.progress_callback(job)
            except KeyboardInterrupt:
                self.cancel_event.set()
                for future in futures:
                    future.cancel()
                raise
        return list(jobs)

    def _execute_job(self, job: CompilationJob) -> None:
        if self.cancel_event.is_set():
            with self.lock:
                job.state = JobState.CANCELLED
            logger.debug(f"Cancelled {job.job_id} before start")
            return

        with self.lock:
            job.state = JobState.RUNNING
            job.start_time = time.time()

        try:
            result = self.runner.run(job.command, self.cwd, self.timeout)
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)

        with self.lock:
            job.result = result
            job.end_time = time.time()
            job.state = JobState.COMPLETED if result.success else JobState.FAILED

        if not result.success and self.fail_fast:
            if not self.cancel_event.is_set():
                logger.info(f"Fail-fast: cancelling pending compilations after {job.job_id} failed")
            self.cancel_event.set()

    def _report(self, job: CompilationJob) -> None:
        """Log a finished job's diagnostics, attributed to its source file."""
        result = job.result
        if job.state == JobState.COMPLETED:
            duration = job.duration() or 0.0
            logger.debug(f"Compiled {job.job_id} in {duration:.2f}s")
            if result is not None and result.output:
                logger.warning(f"{job.job_id}:\n{result.output}")
        elif job.state == JobState.FAILED and result is not None:
            logger.error(f"Compilation failed for {job.job_id} ({result.describe_failure()})")
            if result.output:
                logger.error(result.output)
