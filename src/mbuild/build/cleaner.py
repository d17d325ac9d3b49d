"""
Artifact cleanup.

`mbuild clean` deletes what the last builds recorded in artifacts.json. When
there is no usable record it recomputes the files a build would produce
(object files for the resolved sources, target outputs) without running the
compiler or any shell-expansion command, and deletes whichever exist.
Afterwards the record and build state are removed and build directories left
empty are pruned.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..config.manifest import Manifest
from ..errors import CleanupWarning, ResolutionError
from .artifacts import ArtifactRecord
from .commands import CommandSynthesizer
from .layout import BuildLayout
from .source_resolver import SourceResolver

logger = logging.getLogger(__name__)


@dataclass
class CleanResult:
    """Outcome of a clean.

    Attributes:
        removed: Files deleted
        pruned: Directories removed because they were empty
        warnings: Deletions that failed for a reason other than absence
        from_record: True if the artifact record drove the clean
    """

    removed: list[Path] = field(default_factory=list)
    pruned: list[Path] = field(default_factory=list)
    warnings: list[CleanupWarning] = field(default_factory=list)
    from_record: bool = False

    @property
    def success(self) -> bool:
        return not self.warnings


class Cleaner:
    """Removes the generated files of one project."""

    def __init__(self, manifest: Manifest, layout: Optional[BuildLayout] = None):
        self.manifest = manifest
        self.layout = layout or BuildLayout.for_manifest(manifest)

    def clean(self) -> CleanResult:
        result = CleanResult()

        record = ArtifactRecord.load(self.layout.record_path, self.layout.root)
        if record is not None:
            result.from_record = True
            paths = record.absolute_paths()
            logger.info(f"Cleaning {len(paths)} recorded artifact(s)")
        else:
            paths = self.expected_artifacts()
            logger.info(f"No artifact record, cleaning {len(paths)} expected artifact(s)")

        for path in [*paths, self.layout.record_path, self.layout.state_path]:
            self._remove(path, result)

        self._prune(paths, result)
        return result

    def expected_artifacts(self) -> list[Path]:
        """Files a full build would produce, derived without running anything."""
        synthesizer = CommandSynthesizer(self.manifest, layout=self.layout)
        paths: list[Path] = []
        try:
            sources = SourceResolver(self.manifest, self.layout).resolve()
            paths.extend(s.object_path for s in sources)
        except ResolutionError as e:
            logger.warning(f"Cannot determine object files: {e}")
        for target in self.manifest.targets:
            paths.extend(output for _kind, output in synthesizer.outputs(target))
        return paths

    def _remove(self, path: Path, result: CleanResult) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            warning = CleanupWarning(self.layout.relative(path), e.strerror or str(e))
            logger.warning(str(warning))
            result.warnings.append(warning)
            return
        logger.debug(f"Removed {path}")
        result.removed.append(path)

    def _prune(self, removed: list[Path], result: CleanResult) -> None:
        """Remove build directories that are now empty, deepest first."""
        build_dir = self.layout.build_dir
        candidates = {build_dir, self.layout.obj_dir, self.layout.bin_dir, self.layout.lib_dir}
        for path in removed:
            for parent in path.parents:
                if parent == build_dir or build_dir not in parent.parents:
                    break
                candidates.add(parent)

        for directory in sorted(candidates, key=lambda p: len(p.parts), reverse=True):
            if not directory.is_dir():
                continue
            if any(directory.iterdir()):
                logger.debug(f"Keeping non-empty directory {directory}")
                continue
            try:
                directory.rmdir()
            except OSError as e:
                warning = CleanupWarning(self.layout.relative(directory), e.strerror or str(e))
                logger.warning(str(warning))
                result.warnings.append(warning)
                continue
            result.pruned.append(directory)
