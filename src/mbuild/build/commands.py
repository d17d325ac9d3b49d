"""Compile, link and archive command construction.

Everything here is pure: argument vectors and output paths are derived from
the manifest, the resolved flags and the build layout without touching the
filesystem or running anything.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from ..config.manifest import BinaryTarget, LibraryKind, LibraryTarget, Manifest, Target
from .expansion import ResolvedFlags
from .layout import BuildLayout
from .source_resolver import SourceFile, SourceSet, normalize_path


class ArtifactKind(Enum):
    """Kind of file a build step produces."""

    OBJECT = "object"
    BINARY = "binary"
    STATIC_LIBRARY = "static_library"
    SHARED_LIBRARY = "shared_library"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class LinkStep:
    """One link, archive or shared-object step.

    Attributes:
        target: Name of the target the step belongs to
        kind: Artifact kind produced
        output: Output file path
        sources: Project-relative sources whose objects are inputs
        objects: Input object files, in source order
    """

    target: str
    kind: ArtifactKind
    output: Path
    sources: tuple[str, ...]
    objects: tuple[Path, ...]


class CommandSynthesizer:
    """Builds argument vectors for one project.

    Args:
        manifest: Project manifest
        flags: Resolved literal flags; may be omitted when only output paths
            are needed (e.g. by the cleaner)
        layout: Build directory layout
    """

    def __init__(self, manifest: Manifest, flags: Optional[ResolvedFlags] = None, layout: Optional[BuildLayout] = None):
        self.manifest = manifest
        self.project = manifest.project
        self.flags = flags or ResolvedFlags()
        self.layout = layout or BuildLayout.for_manifest(manifest)

    def compile_command(self, source: SourceFile) -> list[str]:
        """Compiler flags come before include paths, which come before the source."""
        return [
            self.project.compiler,
            *self.flags.compile_flags,
            *self.flags.include_flags,
            "-c",
            source.path,
            "-o",
            str(source.object_path),
        ]

    def link_command(self, step: LinkStep) -> list[str]:
        """Dispatch on the step kind."""
        if step.kind == ArtifactKind.BINARY:
            return self.binary_command(step.output, step.objects)
        if step.kind == ArtifactKind.STATIC_LIBRARY:
            return self.archive_command(step.output, step.objects)
        if step.kind == ArtifactKind.SHARED_LIBRARY:
            return self.shared_command(step.output, step.objects)
        raise ValueError(f"Not a link step kind: {step.kind}")

    def binary_command(self, output: Path, objects: Iterable[Path]) -> list[str]:
        return [
            self.project.compiler,
            "-o",
            str(output),
            *(str(o) for o in objects),
            *self.flags.library_dir_flags,
            *self.flags.library_flags,
            *self.flags.linker_flags,
        ]

    def archive_command(self, output: Path, objects: Iterable[Path]) -> list[str]:
        return [self.project.ar, *self.project.arflags, str(output), *(str(o) for o in objects)]

    def shared_command(self, output: Path, objects: Iterable[Path]) -> list[str]:
        return [
            self.project.compiler,
            "-shared",
            "-o",
            str(output),
            *(str(o) for o in objects),
            *self.flags.library_dir_flags,
            *self.flags.library_flags,
            *self.flags.linker_flags,
        ]

    def target_sources(self, target: Target, sources: SourceSet) -> list[SourceFile]:
        """Sources whose objects a target links.

        A binary excludes the entry points of the other binaries; a library
        excludes every binary entry point.
        """
        excluded = {
            normalize_path(b.path)
            for b in self.manifest.binaries
            if not (isinstance(target, BinaryTarget) and b.name == target.name)
        }
        return [s for s in sources if s.path not in excluded]

    def plan_link_steps(self, targets: Iterable[Target], sources: SourceSet) -> list[LinkStep]:
        """Link steps for targets, in the given (declaration) order.

        A library with both kinds yields a static step and a shared step over
        the same objects.
        """
        steps: list[LinkStep] = []
        for target in targets:
            inputs = self.target_sources(target, sources)
            paths = tuple(s.path for s in inputs)
            objects = tuple(s.object_path for s in inputs)
            for kind, output in self.outputs(target):
                steps.append(LinkStep(target=target.name, kind=kind, output=output, sources=paths, objects=objects))
        return steps

    def outputs(self, target: Target) -> list[tuple[ArtifactKind, Path]]:
        if isinstance(target, BinaryTarget):
            return [(ArtifactKind.BINARY, self.layout.binary_path(target.name))]
        if isinstance(target, LibraryTarget):
            outputs = []
            for kind in target.kinds:
                if kind == LibraryKind.STATIC:
                    outputs.append((ArtifactKind.STATIC_LIBRARY, self.layout.static_library_path(target.name)))
                else:
                    outputs.append((ArtifactKind.SHARED_LIBRARY, self.layout.shared_library_path(target.name)))
            return outputs
        raise TypeError(f"Unknown target type: {type(target).__name__}")
