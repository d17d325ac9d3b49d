"""
Build state tracking for compile and link configuration changes.

Object files are reused when they are newer than their sources, and link
outputs when they are newer than their objects. Timestamps miss the case
where the inputs did not change but the way they are combined did: new
compiler flags, include paths, linker flags or libraries, or a source that
left the set. The build state stores, for every object and output, the
command line that last produced it, in <build-dir>/build_state.json. A file
whose recorded command differs from the command the current build would run
is rebuilt.

The global compile configuration (compiler, compile flags, include flags) is
stored as well, so the reasons for a rebuild can be logged.
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

from .expansion import ResolvedFlags
from .layout import BUILD_STATE_FILENAME

logger = logging.getLogger(__name__)

STATE_VERSION = 2


@dataclass
class BuildState:
    """Configuration of a build and the commands that produced its files.

    Attributes:
        compiler: Compiler identifier
        compile_flags: Resolved compiler flags (including -fPIC when added)
        include_flags: Resolved include flags
        commands: Project-relative output path -> argument vector that
            produced it
        version: Format version of the state file
    """

    compiler: str
    compile_flags: list[str] = field(default_factory=list)
    include_flags: list[str] = field(default_factory=list)
    commands: dict[str, list[str]] = field(default_factory=dict)
    version: int = STATE_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildState":
        return cls(
            compiler=data["compiler"],
            compile_flags=list(data.get("compile_flags", [])),
            include_flags=list(data.get("include_flags", [])),
            commands={str(k): [str(a) for a in v] for k, v in data.get("commands", {}).items()},
            version=data.get("version", STATE_VERSION),
        )

    def save(self, path: Path) -> None:
        """Write the state atomically (temp file + rename)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        temp_file.replace(path)

    @classmethod
    def load(cls, path: Path) -> Optional["BuildState"]:
        """Load a saved state.

        Returns:
            The state, or None if the file is missing or unreadable
        """
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable build state {path}: {e}")
            return None

    def compare(self, other: Optional["BuildState"]) -> tuple[bool, list[str]]:
        """Compare the compile configuration against a previous state.

        Args:
            other: Previous build state, or None

        Returns:
            (needs_rebuild, reasons)
        """
        if other is None:
            return True, ["No previous build state found"]

        reasons = []
        if self.version != other.version:
            reasons.append(f"Build state format changed: {other.version} -> {self.version}")
        if self.compiler != other.compiler:
            reasons.append(f"Compiler changed: {other.compiler} -> {self.compiler}")
        if self.compile_flags != other.compile_flags:
            reasons.append("Compiler flags have changed")
        if self.include_flags != other.include_flags:
            reasons.append("Include paths have changed")
        return bool(reasons), reasons

    def command_matches(self, key: str, command: Sequence[str]) -> bool:
        """True if key was last produced by exactly this command."""
        return self.commands.get(key) == list(command)

    def record_command(self, key: str, command: Sequence[str]) -> None:
        self.commands[key] = list(command)

    def forget(self, key: str) -> None:
        self.commands.pop(key, None)

    def fingerprint(self) -> str:
        """SHA256 over the canonical JSON form of the compile configuration, for logging."""
        config = {"compiler": self.compiler, "compile_flags": self.compile_flags, "include_flags": self.include_flags}
        blob = json.dumps(config, sort_keys=True).encode("utf-8")
        return hashlib.sha256(blob).hexdigest()


class BuildStateTracker:
    """Loads, compares and saves the build state of one build directory."""

    def __init__(self, build_dir: Path):
        self.build_dir = build_dir
        self.state_file = build_dir / BUILD_STATE_FILENAME

    def create_state(self, compiler: str, flags: ResolvedFlags) -> BuildState:
        return BuildState(
            compiler=compiler,
            compile_flags=list(flags.compile_flags),
            include_flags=list(flags.include_flags),
        )

    def load_previous_state(self) -> Optional[BuildState]:
        return BuildState.load(self.state_file)

    def save_state(self, state: BuildState) -> None:
        state.save(self.state_file)
        logger.debug(f"Saved build state {state.fingerprint()[:12]} to {self.state_file}")

    def check_invalidation(self, compiler: str, flags: ResolvedFlags) -> tuple[bool, list[str], BuildState]:
        """Check whether the compile configuration changed since the last build.

        The returned state carries over the recorded commands of the previous
        state (when its format is current), so files outside this build's
        scope keep their history.

        Returns:
            (needs_rebuild, reasons, current_state)
        """
        current = self.create_state(compiler, flags)
        previous = self.load_previous_state()
        needs_rebuild, reasons = current.compare(previous)
        if previous is not None and previous.version == current.version:
            current.commands = dict(previous.commands)
        return needs_rebuild, reasons, current
