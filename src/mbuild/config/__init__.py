"""Project manifest parsing and validation for mbuild."""

from .manifest import (
    BinaryTarget,
    LibraryKind,
    LibraryTarget,
    Manifest,
    Project,
    Target,
    find_manifest,
    load_manifest,
)

__all__ = [
    "BinaryTarget",
    "LibraryKind",
    "LibraryTarget",
    "Manifest",
    "Project",
    "Target",
    "find_manifest",
    "load_manifest",
]
