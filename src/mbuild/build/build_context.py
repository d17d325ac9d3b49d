"""Build Context - Aggregated build configuration.

This module defines:
- BuildParams: Per-invocation options from the CLI or the environment
- BuildContext: Everything resolved once per build (manifest, layout, flags,
  source set), created by the orchestrator

Design:
    BuildParams flows from CLI -> orchestrator. BuildContext is created by the
    orchestrator after sources and flags are resolved and flows through
    compilation and linking. Neither is global: each build creates its own.
"""

import logging
import multiprocessing
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config.manifest import Manifest
from .commands import CommandSynthesizer
from .expansion import ResolvedFlags
from .layout import BuildLayout
from .source_resolver import SourceSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0

ENV_JOBS = "MBUILD_JOBS"
ENV_TIMEOUT = "MBUILD_TIMEOUT"
ENV_FAIL_FAST = "MBUILD_FAIL_FAST"


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}")
        return None


def _env_float(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}")
        return None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BuildParams:
    """Per-invocation build options.

    Attributes:
        project_dir: Project root directory containing the manifest
        jobs: Maximum number of parallel compilations
        fail_fast: Stop scheduling compilations after the first failure
        timeout: Timeout in seconds for every external command
        verbose: Whether to enable verbose output
    """

    project_dir: Path
    jobs: int
    fail_fast: bool
    timeout: float
    verbose: bool

    @classmethod
    def create(
        cls,
        project_dir: Path,
        jobs: Optional[int] = None,
        fail_fast: Optional[bool] = None,
        timeout: Optional[float] = None,
        verbose: bool = False,
    ) -> "BuildParams":
        """Create BuildParams, filling unset options from the environment.

        Precedence: explicit argument > MBUILD_* variable > default.
        """
        if jobs is None:
            jobs = _env_int(ENV_JOBS)
            if jobs is None:
                jobs = multiprocessing.cpu_count()
        if fail_fast is None:
            fail_fast = _env_flag(ENV_FAIL_FAST)
        if timeout is None:
            timeout = _env_float(ENV_TIMEOUT)
            if timeout is None:
                timeout = DEFAULT_TIMEOUT
        if jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        return cls(project_dir=project_dir, jobs=jobs, fail_fast=fail_fast, timeout=timeout, verbose=verbose)


@dataclass(frozen=True)
class BuildContext:
    """Full build context, created by the orchestrator.

    Attributes:
        params: Per-invocation options
        manifest: Validated project manifest
        layout: Output locations
        flags: Resolved literal flags
        sources: Resolved source set
        synthesizer: Command builder bound to the flags and layout
    """

    params: BuildParams
    manifest: Manifest
    layout: BuildLayout
    flags: ResolvedFlags
    sources: SourceSet
    synthesizer: CommandSynthesizer

    @classmethod
    def create(
        cls,
        params: BuildParams,
        manifest: Manifest,
        layout: BuildLayout,
        flags: ResolvedFlags,
        sources: SourceSet,
    ) -> "BuildContext":
        return cls(
            params=params,
            manifest=manifest,
            layout=layout,
            flags=flags,
            sources=sources,
            synthesizer=CommandSynthesizer(manifest, flags, layout),
        )

    @property
    def root(self) -> Path:
        return self.manifest.root

    @property
    def timeout(self) -> float:
        return self.params.timeout

    @property
    def verbose(self) -> bool:
        return self.params.verbose
