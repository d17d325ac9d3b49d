"""
Typed project manifest model.

The manifest is a TOML document with one [project] table plus repeated
[[bin]] and [[lib]] tables:

    [project]
    name = "demo"
    file-extensions = ["cpp"]
    compiler = "g++"
    compiler-flags = ["Wall", "O2"]
    include = ["include", "$(pkg-config --cflags-only-I zlib)"]
    libraries = ["z"]
    ignore = ["tests/"]

    [[bin]]
    name = "app"
    path = "src/main.cpp"

    [[lib]]
    name = "demo"
    types = ["static", "shared"]

The untyped document is converted into frozen dataclasses at this single
boundary. Everything downstream works with Manifest/Project/target values and
never looks keys up in the raw tree.
"""

import logging
import shlex
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union

from ..errors import ManifestError, TargetNotFoundError

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "mbuild.toml"

DEFAULT_COMPILER = "gcc"
DEFAULT_ARCHIVER = "ar"
DEFAULT_ARFLAGS = ("rcs",)
DEFAULT_BUILD_DIR = ".mbuild"

PROJECT_KEYS = frozenset(
    {
        "name",
        "version",
        "file-extensions",
        "compiler",
        "src",
        "libraries",
        "library-directories",
        "include",
        "compiler-flags",
        "linker-flags",
        "ignore",
        "before-script",
        "after-script",
        "ar",
        "arflags",
        "build-dir",
    }
)
BIN_KEYS = frozenset({"name", "path"})
LIB_KEYS = frozenset({"name", "types"})
TOP_LEVEL_KEYS = frozenset({"project", "bin", "lib"})


class LibraryKind(Enum):
    """Kind of library a [[lib]] target produces."""

    STATIC = "static"
    SHARED = "shared"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BinaryTarget:
    """An executable linked from the project's objects.

    Attributes:
        name: Target name, also the executable file name
        path: Project-relative path of the entry-point source file
    """

    name: str
    path: str


@dataclass(frozen=True)
class LibraryTarget:
    """A static archive and/or shared object built from the project's objects.

    Attributes:
        name: Target name; outputs are lib<name>.a / lib<name>.so
        kinds: Requested library kinds, in declaration order
    """

    name: str
    kinds: tuple[LibraryKind, ...]

    @property
    def is_static(self) -> bool:
        return LibraryKind.STATIC in self.kinds

    @property
    def is_shared(self) -> bool:
        return LibraryKind.SHARED in self.kinds


Target = Union[BinaryTarget, LibraryTarget]


@dataclass(frozen=True)
class Project:
    """Global project settings from the [project] table.

    All sequences keep manifest order. Flag entries are stored exactly as
    written; prefixing and shell-token expansion happen in the build stage.
    """

    name: str
    file_extensions: tuple[str, ...] = ()
    version: Optional[str] = None
    src: Optional[tuple[str, ...]] = None
    compiler: str = DEFAULT_COMPILER
    compiler_flags: tuple[str, ...] = ()
    linker_flags: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    libraries: tuple[str, ...] = ()
    library_directories: tuple[str, ...] = ()
    ignore: tuple[str, ...] = ()
    before_script: tuple[str, ...] = ()
    after_script: tuple[str, ...] = ()
    ar: str = DEFAULT_ARCHIVER
    arflags: tuple[str, ...] = DEFAULT_ARFLAGS
    build_dir: str = DEFAULT_BUILD_DIR


@dataclass(frozen=True)
class Manifest:
    """A validated project description.

    Attributes:
        root: Project root directory; all relative paths resolve against it
        project: Global project settings
        binaries: Binary targets in declaration order
        libraries: Library targets in declaration order
        path: Manifest file the model was loaded from, if any
    """

    root: Path
    project: Project
    binaries: tuple[BinaryTarget, ...] = ()
    libraries: tuple[LibraryTarget, ...] = ()
    path: Optional[Path] = field(default=None, compare=False)

    @property
    def targets(self) -> tuple[Target, ...]:
        """All targets: binaries first, then libraries, each in declaration order."""
        return self.binaries + self.libraries

    @property
    def wants_shared(self) -> bool:
        """True if any library target requests a shared object."""
        return any(lib.is_shared for lib in self.libraries)

    @property
    def build_dir(self) -> Path:
        return self.root / self.project.build_dir

    def select_targets(self, names: Sequence[str] = ()) -> tuple[Target, ...]:
        """Return the targets matching names, or all targets when names is empty.

        The result keeps declaration order regardless of the order of names.

        Raises:
            TargetNotFoundError: If a name matches no declared target
        """
        if not names:
            return self.targets
        declared = [t.name for t in self.targets]
        for name in names:
            if name not in declared:
                raise TargetNotFoundError(name, declared)
        wanted = set(names)
        return tuple(t for t in self.targets if t.name in wanted)

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        root: Path,
        strict: bool = False,
        path: Optional[Path] = None,
    ) -> "Manifest":
        """Build a Manifest from a parsed key/value document.

        Args:
            document: Parsed manifest tree (e.g. the result of tomllib.loads)
            root: Project root directory
            strict: Reject unknown keys instead of warning about them
            path: Manifest file path, for error messages

        Returns:
            Validated Manifest

        Raises:
            ManifestError: If the document is malformed or incomplete
        """
        _check_keys(document, TOP_LEVEL_KEYS, "manifest", strict)

        section = document.get("project")
        if section is None:
            raise ManifestError("Missing [project] section")
        if not isinstance(section, Mapping):
            raise ManifestError("[project] must be a table")

        project = _parse_project(section, root, strict)
        binaries = tuple(_parse_binary(entry, i, strict) for i, entry in enumerate(_table_array(document, "bin")))
        libraries = tuple(_parse_library(entry, i, strict) for i, entry in enumerate(_table_array(document, "lib")))

        _check_unique([b.name for b in binaries], "bin")
        _check_unique([lib.name for lib in libraries], "lib")

        return cls(root=root, project=project, binaries=binaries, libraries=libraries, path=path)


def load_manifest(path: Path, strict: bool = False) -> Manifest:
    """Load and validate a manifest file.

    Args:
        path: Path to the TOML manifest
        strict: Reject unknown keys

    Returns:
        Validated Manifest rooted at the manifest's directory

    Raises:
        ManifestError: If the file cannot be read, parsed or validated
    """
    try:
        with open(path, "rb") as f:
            document = tomllib.load(f)
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"Invalid TOML in {path}: {e}") from e

    logger.debug(f"Loaded manifest {path}")
    return Manifest.from_document(document, root=path.parent.resolve(), strict=strict, path=path)


def find_manifest(start_dir: Path) -> Path:
    """Locate the manifest for a directory.

    Looks for mbuild.toml, then <directory-name>.toml, in start_dir and each
    of its parents up to the filesystem root.

    Raises:
        ManifestError: If no manifest is found
    """
    start = start_dir.resolve()
    for directory in (start, *start.parents):
        candidates = [MANIFEST_FILENAME]
        if directory.name:
            candidates.append(f"{directory.name}.toml")
        for candidate in candidates:
            manifest_path = directory / candidate
            if manifest_path.is_file():
                return manifest_path
    raise ManifestError(f"No {MANIFEST_FILENAME} found in {start} or any parent directory")


def _parse_project(section: Mapping[str, Any], root: Path, strict: bool) -> Project:
    _check_keys(section, PROJECT_KEYS, "[project]", strict)

    name = _optional_string(section, "name", "[project]") or root.name
    src = _string_list(section, "src", "[project]") if "src" in section else None
    extensions = tuple(_normalize_extension(ext) for ext in _string_list(section, "file-extensions", "[project]"))

    if src is None and not extensions:
        raise ManifestError("[project] file-extensions must be non-empty when src is not given")

    return Project(
        name=name,
        file_extensions=extensions,
        version=_optional_string(section, "version", "[project]"),
        src=tuple(src) if src is not None else None,
        compiler=_optional_string(section, "compiler", "[project]") or DEFAULT_COMPILER,
        compiler_flags=_string_list(section, "compiler-flags", "[project]"),
        linker_flags=_string_list(section, "linker-flags", "[project]"),
        include=_string_list(section, "include", "[project]"),
        libraries=_string_list(section, "libraries", "[project]"),
        library_directories=_string_list(section, "library-directories", "[project]"),
        ignore=_string_list(section, "ignore", "[project]"),
        before_script=_string_list(section, "before-script", "[project]"),
        after_script=_string_list(section, "after-script", "[project]"),
        ar=_optional_string(section, "ar", "[project]") or DEFAULT_ARCHIVER,
        arflags=_parse_arflags(section),
        build_dir=_optional_string(section, "build-dir", "[project]") or DEFAULT_BUILD_DIR,
    )


def _parse_binary(entry: Any, index: int, strict: bool) -> BinaryTarget:
    where = f"[[bin]] #{index + 1}"
    if not isinstance(entry, Mapping):
        raise ManifestError(f"{where} must be a table")
    _check_keys(entry, BIN_KEYS, where, strict)
    name = _required_string(entry, "name", where)
    path = _required_string(entry, "path", f"[[bin]] '{name}'")
    return BinaryTarget(name=name, path=path)


def _parse_library(entry: Any, index: int, strict: bool) -> LibraryTarget:
    where = f"[[lib]] #{index + 1}"
    if not isinstance(entry, Mapping):
        raise ManifestError(f"{where} must be a table")
    _check_keys(entry, LIB_KEYS, where, strict)
    name = _required_string(entry, "name", where)
    where = f"[[lib]] '{name}'"

    types = _string_list(entry, "types", where) if "types" in entry else ("static",)
    if not types:
        raise ManifestError(f"{where} types must not be empty")

    kinds: list[LibraryKind] = []
    for value in types:
        try:
            kind = LibraryKind(value)
        except ValueError:
            valid = ", ".join(k.value for k in LibraryKind)
            raise ManifestError(f"{where} has unknown library type '{value}' (expected one of: {valid})") from None
        if kind not in kinds:
            kinds.append(kind)
    return LibraryTarget(name=name, kinds=tuple(kinds))


def _parse_arflags(section: Mapping[str, Any]) -> tuple[str, ...]:
    value = section.get("arflags")
    if value is None:
        return DEFAULT_ARFLAGS
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return _string_list(section, "arflags", "[project]")


def _table_array(document: Mapping[str, Any], key: str) -> list[Any]:
    value = document.get(key, [])
    if isinstance(value, Mapping):
        # A single [bin] table instead of [[bin]]
        return [value]
    if not isinstance(value, list):
        raise ManifestError(f"'{key}' must be an array of tables")
    return value


def _string_list(section: Mapping[str, Any], key: str, where: str) -> tuple[str, ...]:
    value = section.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ManifestError(f"{where} '{key}' must be an array of strings")
    return tuple(value)


def _optional_string(section: Mapping[str, Any], key: str, where: str) -> Optional[str]:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ManifestError(f"{where} '{key}' must be a string")
    return value


def _required_string(section: Mapping[str, Any], key: str, where: str) -> str:
    value = _optional_string(section, key, where)
    if not value:
        raise ManifestError(f"{where} is missing required key '{key}'")
    return value


def _normalize_extension(ext: str) -> str:
    ext = ext.strip()
    if not ext or ext == ".":
        raise ManifestError("[project] file-extensions contains an empty entry")
    return ext if ext.startswith(".") else f".{ext}"


def _check_keys(section: Mapping[str, Any], known: frozenset[str], where: str, strict: bool) -> None:
    unknown = sorted(str(k) for k in section if k not in known)
    if not unknown:
        return
    if strict:
        raise ManifestError(f"Unknown key(s) in {where}: {', '.join(unknown)}")
    logger.warning(f"Ignoring unknown key(s) in {where}: {', '.join(unknown)}")


def _check_unique(names: list[str], kind: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ManifestError(f"Duplicate [[{kind}]] name '{name}'")
        seen.add(name)
