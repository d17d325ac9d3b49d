"""
Error Collector - Structured error collection for a build.

Build-time failures (scripts, compilations and link steps) are recorded
here instead of aborting on the first one, so the build summary can report
every failure with its command and captured output.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..errors import CommandError, CompileError, LinkError

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity level of a build error."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass
class BuildError:
    """Single build error."""

    severity: ErrorSeverity
    phase: str  # "script", "compile" or "link"
    error_message: str
    target: Optional[str] = None
    file_path: Optional[str] = None
    command: Optional[str] = None
    output: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_exception(cls, exc: Exception, phase: str, target: Optional[str] = None, severity: ErrorSeverity = ErrorSeverity.ERROR) -> "BuildError":
        """Build an entry from a raised error, keeping its command and output."""
        file_path = None
        if isinstance(exc, CompileError):
            file_path = exc.source
        elif isinstance(exc, LinkError):
            file_path = exc.output_path
            target = target or exc.target
        command = output = None
        if isinstance(exc, CommandError):
            command = exc.command_line or None
            output = exc.output or None
        return cls(
            severity=severity,
            phase=phase,
            error_message=str(exc),
            target=target,
            file_path=file_path,
            command=command,
            output=output,
        )

    def format(self) -> str:
        """Format error as human-readable string."""
        lines = [f"[{self.severity.value.upper()}] {self.phase}: {self.error_message}"]

        if self.target:
            lines.append(f"  Target: {self.target}")
        if self.file_path:
            lines.append(f"  File: {self.file_path}")
        if self.command:
            lines.append(f"  Command: {self.command}")
        if self.output:
            # Truncate output to reasonable length
            preview = self.output[:2000]
            if len(self.output) > 2000:
                preview += "... (truncated)"
            lines.append(f"  Output:\n{preview}")

        return "\n".join(lines)


class ErrorCollector:
    """Collects every error of a build.

    There is no cap: the build summary reports each failure, so a build with
    hundreds of failing sources keeps hundreds of entries.
    """

    def __init__(self):
        self.errors: list[BuildError] = []
        self.lock = threading.Lock()

    def add_error(self, error: BuildError) -> None:
        with self.lock:
            self.errors.append(error)

        logger.debug(f"Added {error.severity.value} error in phase {error.phase}: {error.error_message}")

    def add_exception(self, exc: Exception, phase: str, target: Optional[str] = None, severity: ErrorSeverity = ErrorSeverity.ERROR) -> BuildError:
        error = BuildError.from_exception(exc, phase, target=target, severity=severity)
        self.add_error(error)
        return error

    def get_errors(self) -> list[BuildError]:
        with self.lock:
            return self.errors.copy()

    def get_error_count(self) -> dict[str, int]:
        """Get count of errors by severity."""
        with self.lock:
            return {
                "warnings": sum(1 for e in self.errors if e.severity == ErrorSeverity.WARNING),
                "errors": sum(1 for e in self.errors if e.severity == ErrorSeverity.ERROR),
                "fatal": sum(1 for e in self.errors if e.severity == ErrorSeverity.FATAL),
                "total": len(self.errors),
            }

    def format_summary(self) -> str:
        """Format a brief summary of errors."""
        counts = self.get_error_count()
        if counts["total"] == 0:
            return "No errors"

        parts = []
        if counts["fatal"] > 0:
            parts.append(f"{counts['fatal']} fatal")
        if counts["errors"] > 0:
            parts.append(f"{counts['errors']} errors")
        if counts["warnings"] > 0:
            parts.append(f"{counts['warnings']} warnings")
        return ", ".join(parts)

    def clear(self) -> None:
        with self.lock:
            self.errors.clear()
