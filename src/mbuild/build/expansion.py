"""Flag prefixing and shell-expansion tokens.

Include, library and library-directory entries may be written as
`$(command)`. The command runs through the shell in the project root and its
output is split shell-style into literal flags, which are used as-is:

    include = ["include", "$(pkg-config --cflags-only-I sdl2)"]

    -> ["-Iinclude", "-I/usr/include/SDL2"]

Tokens are resolved once per build. A resolver caches every result, and one
resolver is created per build invocation.
"""

import logging
import shlex
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..config.manifest import Project
from ..errors import ExpansionError
from ..subprocess_utils import CommandRunner

logger = logging.getLogger(__name__)

PIC_FLAG = "-fPIC"


def is_shell_token(entry: str) -> bool:
    """Return True if entry has the `$(command)` form."""
    entry = entry.strip()
    return entry.startswith("$(") and entry.endswith(")") and len(entry) > 3


def dash_prefixed(flag: str) -> str:
    """Prefix a compiler/linker flag with '-' unless it already has one."""
    return flag if flag.startswith("-") else f"-{flag}"


class ExpansionResolver:
    """Runs shell-expansion commands and caches their split output.

    Args:
        runner: Command runner used to execute the shell command
        cwd: Working directory for the commands (the project root)
        timeout: Per-command timeout in seconds
    """

    def __init__(self, runner: CommandRunner, cwd: Path, timeout: Optional[float] = None):
        self.runner = runner
        self.cwd = cwd
        self.timeout = timeout
        self._cache: dict[str, tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def expand(self, token: str) -> tuple[str, ...]:
        """Resolve a `$(command)` token into literal flags.

        Raises:
            ExpansionError: If the command fails, times out or cannot start
        """
        with self._lock:
            cached = self._cache.get(token)
        if cached is not None:
            return cached

        command = token.strip()[2:-1].strip()
        if not command:
            raise ExpansionError(token, "empty command")

        logger.debug(f"Expanding {token}")
        result = self.runner.run_shell(command, self.cwd, self.timeout)
        if not result.success:
            detail = result.describe_failure()
            if result.stderr.strip():
                detail = f"{detail}: {result.stderr.strip()}"
            raise ExpansionError(token, detail)

        try:
            flags = tuple(shlex.split(result.stdout))
        except ValueError as e:
            raise ExpansionError(token, f"unparseable output: {e}") from e

        with self._lock:
            self._cache[token] = flags
        logger.debug(f"{token} -> {' '.join(flags) or '(nothing)'}")
        return flags

    @property
    def resolved_count(self) -> int:
        with self._lock:
            return len(self._cache)


@dataclass(frozen=True)
class ResolvedFlags:
    """Literal flag lists for one build.

    Attributes:
        compile_flags: Compiler flags, '-' prefixed, plus -fPIC when needed
        include_flags: -I flags and expanded include tokens
        library_dir_flags: -L flags and expanded tokens
        library_flags: -l flags and expanded tokens
        linker_flags: Linker flags, '-' prefixed
    """

    compile_flags: tuple[str, ...] = ()
    include_flags: tuple[str, ...] = ()
    library_dir_flags: tuple[str, ...] = ()
    library_flags: tuple[str, ...] = ()
    linker_flags: tuple[str, ...] = ()


def _expand_entries(entries: Sequence[str], prefix: str, resolver: Optional[ExpansionResolver]) -> tuple[str, ...]:
    flags: list[str] = []
    for entry in entries:
        if is_shell_token(entry):
            if resolver is None:
                raise ExpansionError(entry, "shell expansion is not available here")
            flags.extend(resolver.expand(entry))
        else:
            flags.append(f"{prefix}{entry}")
    return tuple(flags)


def resolve_flags(project: Project, resolver: Optional[ExpansionResolver], position_independent: bool = False) -> ResolvedFlags:
    """Resolve a project's flag entries into literal argument lists.

    Args:
        project: Project settings
        resolver: Resolver for `$(command)` tokens
        position_independent: Add -fPIC to the compile flags (shared libraries)

    Returns:
        ResolvedFlags for command synthesis

    Raises:
        ExpansionError: If a shell token cannot be resolved
    """
    compile_flags = [dash_prefixed(f) for f in project.compiler_flags]
    if position_independent and PIC_FLAG not in compile_flags:
        compile_flags.append(PIC_FLAG)

    return ResolvedFlags(
        compile_flags=tuple(compile_flags),
        include_flags=_expand_entries(project.include, "-I", resolver),
        library_dir_flags=_expand_entries(project.library_directories, "-L", resolver),
        library_flags=_expand_entries(project.libraries, "-l", resolver),
        linker_flags=tuple(dash_prefixed(f) for f in project.linker_flags),
    )
