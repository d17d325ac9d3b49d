"""
Artifact record for deterministic cleanup.

Every file a build produces (or finds up to date) is recorded in
<build-dir>/artifacts.json. `mbuild clean` deletes exactly the recorded
files, so it never guesses what the build wrote.

File format:
    {
        "version": 1,
        "artifacts": [
            {"path": ".mbuild/obj/main.o", "kind": "object", "target": null},
            {"path": ".mbuild/bin/app", "kind": "binary", "target": "app"}
        ]
    }

Paths are stored relative to the project root.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .commands import ArtifactKind

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


@dataclass(frozen=True)
class ArtifactEntry:
    """One recorded artifact.

    Attributes:
        path: Project-relative POSIX path
        kind: Artifact kind
        target: Owning target name (None for objects shared by targets)
    """

    path: str
    kind: ArtifactKind
    target: Optional[str] = None

    def to_dict(self) -> dict:
        return {"path": self.path, "kind": self.kind.value, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict) -> "ArtifactEntry":
        return cls(path=data["path"], kind=ArtifactKind(data["kind"]), target=data.get("target"))


class ArtifactRecord:
    """Ordered, duplicate-free list of generated files.

    Appends are serialized with a lock; the record may be filled from
    several threads.
    """

    def __init__(self, record_file: Path, root: Path, entries: Optional[list[ArtifactEntry]] = None):
        self.record_file = record_file
        self.root = root
        self._entries: list[ArtifactEntry] = []
        self._paths: set[str] = set()
        self.lock = threading.Lock()
        for entry in entries or []:
            self._append(entry)

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[ArtifactEntry]:
        return iter(self.entries)

    def __contains__(self, path: object) -> bool:
        if isinstance(path, Path):
            path = self._relative(path)
        with self.lock:
            return path in self._paths

    @property
    def entries(self) -> list[ArtifactEntry]:
        with self.lock:
            return list(self._entries)

    def add(self, path: Path, kind: ArtifactKind, target: Optional[str] = None) -> bool:
        """Record an artifact.

        Returns:
            True if added, False if the path was already recorded
        """
        entry = ArtifactEntry(path=self._relative(path), kind=kind, target=target)
        with self.lock:
            return self._append(entry)

    def absolute_paths(self) -> list[Path]:
        """Recorded files as absolute paths, in record order."""
        return [self.root / entry.path for entry in self.entries]

    def save(self) -> None:
        """Write the record atomically (temp file + rename)."""
        data = {"version": RECORD_VERSION, "artifacts": [e.to_dict() for e in self.entries]}
        self.record_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.record_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        temp_file.replace(self.record_file)
        logger.debug(f"Saved artifact record with {len(data['artifacts'])} entries to {self.record_file}")

    @classmethod
    def load(cls, record_file: Path, root: Path) -> Optional["ArtifactRecord"]:
        """Load a saved record.

        Returns:
            The record, or None if the file is missing or corrupt
        """
        if not record_file.exists():
            return None
        try:
            with open(record_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            entries = [ArtifactEntry.from_dict(item) for item in data["artifacts"]]
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring corrupt artifact record {record_file}: {e}")
            return None
        return cls(record_file, root, entries)

    def _append(self, entry: ArtifactEntry) -> bool:
        if entry.path in self._paths:
            return False
        self._paths.add(entry.path)
        self._entries.append(entry)
        return True

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()
