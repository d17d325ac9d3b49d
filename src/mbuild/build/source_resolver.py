"""Source set resolution.

Determines which files a build compiles:

1. An explicit `src` list is used verbatim (order kept, duplicates dropped).
   Otherwise the project root is walked recursively in lexical order and
   files whose extension is in `file-extensions` are collected.
2. `ignore` entries are subtracted. An entry ending in "/" removes everything
   under that directory; any other entry removes exactly that path.
3. Binary entry points are always part of the set, even when an ignore rule
   would drop them.
4. The result must be non-empty and every source must map to a distinct
   object file.
"""

import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ..config.manifest import Manifest
from ..errors import ResolutionError
from .layout import BuildLayout

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Normalize a project-relative path to POSIX form without a leading './'."""
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return "" if normalized == "." else normalized


@dataclass(frozen=True)
class IgnoreRules:
    """Compiled `ignore` entries.

    Attributes:
        directories: Directory prefixes (entries written with a trailing "/")
        files: Exact paths
    """

    directories: tuple[str, ...] = ()
    files: frozenset[str] = frozenset()

    @classmethod
    def from_entries(cls, entries: Iterable[str]) -> "IgnoreRules":
        directories: list[str] = []
        files: set[str] = set()
        for entry in entries:
            is_directory = entry.replace("\\", "/").endswith("/")
            normalized = normalize_path(entry)
            if is_directory:
                directories.append(normalized)
            else:
                files.add(normalized)
        return cls(directories=tuple(directories), files=frozenset(files))

    def matches(self, path: str) -> bool:
        """Return True if the normalized project-relative path is ignored."""
        if path in self.files:
            return True
        return any(self.covers_directory(d, path) for d in self.directories)

    def prunes(self, directory: str) -> bool:
        """Return True if every file below directory is ignored."""
        return any(self.covers_directory(d, directory) for d in self.directories)

    @staticmethod
    def covers_directory(prefix: str, path: str) -> bool:
        return prefix == "" or path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class SourceFile:
    """A source file and the object file it compiles to.

    Attributes:
        path: Project-relative POSIX path of the source
        object_path: Absolute path of the object file
    """

    path: str
    object_path: Path

    def absolute(self, root: Path) -> Path:
        return root / self.path


@dataclass(frozen=True)
class SourceSet:
    """Ordered, duplicate-free sources of one build."""

    sources: tuple[SourceFile, ...]

    def __iter__(self) -> Iterator[SourceFile]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    @property
    def paths(self) -> list[str]:
        return [s.path for s in self.sources]

    def get(self, path: str) -> Optional[SourceFile]:
        normalized = normalize_path(path)
        for source in self.sources:
            if source.path == normalized:
                return source
        return None


class SourceResolver:
    """Resolves the source set of a manifest.

    Only reads the filesystem; nothing is created or modified.
    """

    def __init__(self, manifest: Manifest, layout: Optional[BuildLayout] = None):
        self.manifest = manifest
        self.layout = layout or BuildLayout.for_manifest(manifest)
        self.ignore = IgnoreRules.from_entries(manifest.project.ignore)

    def resolve(self) -> SourceSet:
        """Compute the source set.

        Returns:
            SourceSet in discovery (or explicit) order

        Raises:
            ResolutionError: If the set is empty, a listed file or entry point
                is missing, or two sources share an object file name
        """
        project = self.manifest.project
        if project.src is not None:
            candidates = self._explicit_sources(project.src)
        else:
            candidates = list(self.discover())

        paths = [p for p in candidates if not self.ignore.matches(p)]
        dropped = len(candidates) - len(paths)
        if dropped:
            logger.debug(f"Ignore rules removed {dropped} source file(s)")

        for binary in self.manifest.binaries:
            entry = normalize_path(binary.path)
            if entry in paths:
                continue
            if not (self.manifest.root / entry).is_file():
                raise ResolutionError(f"Entry point '{binary.path}' of binary '{binary.name}' does not exist")
            if self.ignore.matches(entry):
                logger.warning(f"Entry point {entry} of binary '{binary.name}' matches an ignore rule, building it anyway")
            paths.append(entry)

        if not paths:
            raise ResolutionError(f"No source files found for project '{project.name}' in {self.manifest.root}")

        return SourceSet(sources=self._with_objects(paths))

    def discover(self) -> Iterator[str]:
        """Walk the project root and yield matching source paths in lexical order.

        Hidden directories, the build directory and directories covered by a
        directory ignore rule are not entered.
        """
        root = self.manifest.root
        extensions = set(self.manifest.project.file_extensions)
        build_dir = normalize_path(self.layout.relative(self.layout.build_dir))

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = normalize_path(Path(dirpath).relative_to(root).as_posix())
            kept = []
            for dirname in sorted(dirnames):
                rel = posixpath.join(rel_dir, dirname) if rel_dir else dirname
                if dirname.startswith(".") or rel == build_dir or self.ignore.prunes(rel):
                    continue
                kept.append(dirname)
            dirnames[:] = kept

            for filename in sorted(filenames):
                if os.path.splitext(filename)[1] in extensions:
                    yield posixpath.join(rel_dir, filename) if rel_dir else filename

    def _explicit_sources(self, entries: Iterable[str]) -> list[str]:
        paths: list[str] = []
        for entry in entries:
            path = normalize_path(entry)
            if path in paths:
                continue
            if not (self.manifest.root / path).is_file():
                raise ResolutionError(f"Source file '{entry}' listed in src does not exist")
            paths.append(path)
        return paths

    def _with_objects(self, paths: list[str]) -> tuple[SourceFile, ...]:
        owners: dict[Path, str] = {}
        sources: list[SourceFile] = []
        for path in paths:
            object_path = self.layout.object_path(path)
            if object_path in owners:
                raise ResolutionError(
                    f"Object file name collision: {owners[object_path]} and {path} "
                    f"both compile to {self.layout.relative(object_path)}"
                )
            owners[object_path] = path
            sources.append(SourceFile(path=path, object_path=object_path))
        return tuple(sources)


def resolve_sources(manifest: Manifest) -> SourceSet:
    """Resolve the source set of a manifest with the default layout."""
    return SourceResolver(manifest).resolve()
