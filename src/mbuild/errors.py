"""Exception types raised by mbuild.

Configuration-time errors (ManifestError, ResolutionError, ExpansionError)
abort a build before any script or compiler runs. Build-time errors
(ScriptError, CompileError, LinkError) are attributed to a script, source
file or target and collected into the build summary. CleanupWarning is never
raised by the cleaner; it is recorded and reported.
"""

from typing import Optional

from .subprocess_utils import CommandResult


class MbuildError(Exception):
    """Base class for all mbuild errors."""

    pass


class ManifestError(MbuildError):
    """Raised when the project manifest is malformed or incomplete."""

    pass


class TargetNotFoundError(ManifestError):
    """Raised when a requested target is not declared in the manifest."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        listing = ", ".join(available) if available else "none declared"
        super().__init__(f"Target '{name}' not found (available: {listing})")


class ResolutionError(MbuildError):
    """Raised when the source set is empty or contains colliding objects."""

    pass


class ExpansionError(MbuildError):
    """Raised when a shell-expansion token cannot be resolved."""

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Failed to expand '{token}': {reason}")


class CommandError(MbuildError):
    """Base class for errors caused by a failing external command."""

    def __init__(self, message: str, result: Optional[CommandResult] = None):
        super().__init__(message)
        self.result = result

    @property
    def command_line(self) -> str:
        if self.result is None:
            return ""
        return " ".join(self.result.command)

    @property
    def output(self) -> str:
        if self.result is None:
            return ""
        return self.result.output


class ScriptError(CommandError):
    """Raised when a before/after script exits non-zero or times out."""

    pass


class CompileError(CommandError):
    """A source file failed to compile."""

    def __init__(self, source: str, result: Optional[CommandResult] = None):
        reason = result.describe_failure() if result is not None else "not compiled"
        super().__init__(f"Compilation failed for {source} ({reason})", result)
        self.source = source


class LinkError(CommandError):
    """A link, archive or shared-object step failed."""

    def __init__(self, target: str, output: str, result: Optional[CommandResult] = None):
        reason = result.describe_failure() if result is not None else "not linked"
        super().__init__(f"Failed to produce {output} for target '{target}' ({reason})", result)
        self.target = target
        self.output_path = output


class CleanupWarning(UserWarning):
    """A generated file could not be deleted for a reason other than absence."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not remove {path}: {reason}")
        self.path = path
        self.reason = reason
