"""Subprocess utilities for platform-safe process execution.

This module provides wrappers around the subprocess module that automatically
apply platform-specific flags to prevent console window flashing on Windows,
plus the command runner used by the build engine to invoke compilers,
archivers and before/after scripts with a timeout.
"""

import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import psutil

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    Automatically applies CREATE_NO_WINDOW on Windows and redirects stdin
    to subprocess.DEVNULL unless stdin is given. The process handle is
    returned so the caller can kill the process tree on timeout.

    Args:
        cmd: Command and arguments (same as subprocess.Popen)
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.Popen(cmd, **kwargs)


def shell_command(command: str) -> list[str]:
    """Wrap a shell command line in the platform shell invocation."""
    if sys.platform == "win32":
        return ["cmd", "/c", command]
    return ["/bin/sh", "-c", command]


def kill_process_tree(pid: int, timeout: float = 3.0) -> None:
    """Terminate a process and all of its descendants.

    Children are terminated before the parent. Processes that survive the
    graceful termination window are force killed.

    Args:
        pid: Root process id
        timeout: Seconds to wait for graceful termination
    """
    try:
        root = psutil.Process(pid)
        processes = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        return

    for proc in processes:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(processes, timeout=timeout)
    if alive:
        logger.warning(f"Force killing {len(alive)} processes that ignored terminate")
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass


@dataclass
class CommandResult:
    """Outcome of a single external command.

    Attributes:
        command: Argument vector that was executed
        returncode: Process exit status (-1 when it never ran or timed out)
        stdout: Captured standard output
        stderr: Captured standard error
        duration: Wall time in seconds
        timed_out: True if the command was killed after the timeout
        error: Spawn failure description (e.g. executable not found)
    """

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """True if the command ran to completion with exit status 0."""
        return self.returncode == 0 and not self.timed_out and self.error is None

    @property
    def output(self) -> str:
        """Combined output, stdout first, for failure reports."""
        parts = [part.strip() for part in (self.stdout, self.stderr) if part and part.strip()]
        if self.error:
            parts.append(self.error)
        return "\n".join(parts)

    def describe_failure(self) -> str:
        """Short human-readable reason for a failed command."""
        if self.timed_out:
            return f"timed out after {self.duration:.1f}s"
        if self.error:
            return self.error
        return f"exit code {self.returncode}"


class CommandRunner(Protocol):
    """Capability to run external commands, used by the build engine."""

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float]) -> CommandResult:
        """Run an argument vector."""
        ...

    def run_shell(self, command: str, cwd: Path, timeout: Optional[float]) -> CommandResult:
        """Run a shell command line."""
        ...


class SubprocessRunner:
    """CommandRunner backed by real subprocesses.

    Output is decoded as UTF-8 with undecodable bytes replaced, so a tool
    printing Latin-1 diagnostics cannot fail the build. On timeout the whole
    process tree is killed so a hung compiler or script never blocks the build.
    """

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float]) -> CommandResult:
        cmd = [str(a) for a in args]
        start = time.time()
        try:
            proc = safe_popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            logger.debug(f"Failed to start {cmd[0]}: {e}")
            return CommandResult(command=cmd, returncode=-1, error=f"failed to start {cmd[0]}: {e}")

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {timeout}s: {' '.join(cmd[:3])}...")
            kill_process_tree(proc.pid)
            stdout, stderr = proc.communicate()
            return CommandResult(
                command=cmd,
                returncode=-1,
                stdout=stdout or "",
                stderr=stderr or "",
                duration=time.time() - start,
                timed_out=True,
            )

        duration = time.time() - start
        if proc.returncode != 0:
            logger.debug(f"Command failed with code {proc.returncode} in {duration:.2f}s: {cmd[0]}")
        return CommandResult(
            command=cmd,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=duration,
        )

    def run_shell(self, command: str, cwd: Path, timeout: Optional[float]) -> CommandResult:
        return self.run(shell_command(command), cwd, timeout)
