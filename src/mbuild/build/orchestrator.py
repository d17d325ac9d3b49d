"""
Build orchestrator.

Drives one build invocation through a fixed sequence of phases:

    INIT -> RESOLVE_SOURCES -> RUN_BEFORE_SCRIPTS -> COMPILE_OBJECTS
         -> LINK_OR_ARCHIVE_TARGETS -> RUN_AFTER_SCRIPTS -> DONE

FAILED is reachable from every phase. Configuration errors (manifest,
source resolution, shell expansion) are raised to the caller before any
script or compiler runs. Everything that fails after that point is collected
and reported in the BuildResult.
"""

import logging
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from tqdm import tqdm

from .. import output
from ..config.manifest import Manifest, Target
from ..errors import CompileError, ExpansionError, LinkError, ManifestError, ResolutionError, ScriptError
from ..subprocess_utils import CommandRunner, SubprocessRunner
from .artifacts import ArtifactRecord
from .build_context import BuildContext, BuildParams
from .build_state import BuildState, BuildStateTracker
from .commands import ArtifactKind, LinkStep
from .compile_pool import CompilationJob, CompilePool, JobState
from .error_collector import BuildError, ErrorCollector
from .expansion import ExpansionResolver, resolve_flags
from .layout import BuildLayout
from .source_resolver import SourceFile, SourceResolver, SourceSet

logger = logging.getLogger(__name__)

TOTAL_PHASES = 5


@dataclass
class CompileOutcome:
    """Per-source results of the compile phase."""

    compiled: set[str] = field(default_factory=set)
    up_to_date: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    cancelled: set[str] = field(default_factory=set)
    objects: list[Path] = field(default_factory=list)


class BuildPhase(Enum):
    """Phase of a build invocation."""

    INIT = "init"
    RESOLVE_SOURCES = "resolve_sources"
    RUN_BEFORE_SCRIPTS = "run_before_scripts"
    COMPILE_OBJECTS = "compile_objects"
    LINK_OR_ARCHIVE_TARGETS = "link_or_archive_targets"
    RUN_AFTER_SCRIPTS = "run_after_scripts"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TargetResult:
    """Outcome of one target.

    Attributes:
        name: Target name
        success: True if every output of the target is present and current
        outputs: Output files of the target
        linked: Outputs (re)produced by this build
        up_to_date: Outputs skipped because they were already current
        message: Failure reason, empty on success
    """

    name: str
    success: bool
    outputs: list[Path] = field(default_factory=list)
    linked: list[Path] = field(default_factory=list)
    up_to_date: list[Path] = field(default_factory=list)
    message: str = ""


@dataclass
class BuildResult:
    """Result of a build invocation."""

    success: bool
    phase: BuildPhase
    targets: list[TargetResult] = field(default_factory=list)
    compiled: int = 0
    up_to_date: int = 0
    cancelled: int = 0
    artifacts: list[Path] = field(default_factory=list)
    errors: list[BuildError] = field(default_factory=list)
    build_time: float = 0.0
    message: str = ""

    @property
    def failed_targets(self) -> list[TargetResult]:
        return [t for t in self.targets if not t.success]

    @property
    def linked(self) -> int:
        return sum(len(t.linked) for t in self.targets)

    def summary(self) -> str:
        """Human-readable report listing every failure with its command and output."""
        if self.success:
            return (
                f"Build succeeded: {self.compiled} compiled, {self.up_to_date} up to date, "
                f"{self.linked} linked ({self.build_time:.2f}s)"
            )

        lines = [f"Build failed in phase {self.phase.value}: {self.message}"]
        for target in self.failed_targets:
            lines.append(f"  target {target.name}: {target.message}")
        for error in self.errors:
            lines.append("")
            lines.append(error.format())
        return "\n".join(lines)


class BuildOrchestrator:
    """Builds the targets of one manifest.

    Args:
        manifest: Validated project manifest
        params: Per-invocation options
        runner: Command runner (defaults to real subprocesses)
    """

    def __init__(self, manifest: Manifest, params: BuildParams, runner: Optional[CommandRunner] = None):
        self.manifest = manifest
        self.params = params
        self.runner = runner or SubprocessRunner()
        self.layout = BuildLayout.for_manifest(manifest)
        self.phase = BuildPhase.INIT
        self.errors = ErrorCollector()

    def list_sources(self) -> SourceSet:
        """Resolve the source set without building anything.

        Raises:
            ResolutionError: If the source set is invalid
        """
        return SourceResolver(self.manifest, self.layout).resolve()

    def build(self, target_names: Sequence[str] = ()) -> BuildResult:
        """Build the named targets (all targets when none are named).

        Returns:
            BuildResult describing the outcome

        Raises:
            ManifestError: If a target name is unknown
            ResolutionError: If the source set is invalid
            ExpansionError: If a shell-expansion token cannot be resolved
        """
        start_time = time.time()
        self.phase = BuildPhase.INIT
        self.errors.clear()
        try:
            return self._build(target_names, start_time)
        except (ManifestError, ResolutionError, ExpansionError):
            self.phase = BuildPhase.FAILED
            raise
        except Exception as e:
            self.phase = BuildPhase.FAILED
            error_trace = traceback.format_exc()
            logger.error(f"Build failed unexpectedly: {e}")
            return BuildResult(
                success=False,
                phase=BuildPhase.FAILED,
                errors=self.errors.get_errors(),
                build_time=time.time() - start_time,
                message=f"Build failed: {e}\n\n{error_trace}",
            )

    def _build(self, target_names: Sequence[str], start_time: float) -> BuildResult:
        targets = self.manifest.select_targets(target_names)

        self.phase = BuildPhase.RESOLVE_SOURCES
        output.log_phase(1, TOTAL_PHASES, "Resolving sources...")
        context = self._create_context()
        output.log_detail(f"Found {len(context.sources)} source files")

        self.phase = BuildPhase.RUN_BEFORE_SCRIPTS
        output.log_phase(2, TOTAL_PHASES, "Running before-scripts...", verbose_only=not self.manifest.project.before_script)
        if not self._run_scripts(context, self.manifest.project.before_script, "before-script"):
            return self._finish(start_time, targets=[], message="before-script failed")

        self.phase = BuildPhase.COMPILE_OBJECTS
        record = ArtifactRecord.load(self.layout.record_path, self.layout.root) or ArtifactRecord(
            self.layout.record_path, self.layout.root
        )
        tracker = BuildStateTracker(self.layout.build_dir)
        config_changed, reasons, state = tracker.check_invalidation(self.manifest.project.compiler, context.flags)
        if config_changed:
            for reason in reasons:
                logger.info(f"Compile configuration changed: {reason}")

        # Files produced so far stay recorded even if a later step raises
        try:
            with output.TimedLogger("Compiling objects", phase=(3, TOTAL_PHASES)):
                compile_outcome = self._compile(context, targets, record, state)
            record.save()

            if compile_outcome.failed and self.params.fail_fast:
                results = [
                    TargetResult(name=t.name, success=False, message="not linked: compilation failed (fail-fast)")
                    for t in targets
                ]
                return self._finish(
                    start_time,
                    targets=results,
                    compile_outcome=compile_outcome,
                    message=f"{len(compile_outcome.failed)} source file(s) failed to compile",
                )

            self.phase = BuildPhase.LINK_OR_ARCHIVE_TARGETS
            output.log_phase(4, TOTAL_PHASES, "Linking targets...", verbose_only=not targets)
            results = self._link(context, targets, compile_outcome, record, state)
        finally:
            record.save()
            tracker.save_state(state)

        failed = [r for r in results if not r.success]
        if failed:
            names = ", ".join(r.name for r in failed)
            return self._finish(
                start_time,
                targets=results,
                compile_outcome=compile_outcome,
                message=f"{len(failed)} target(s) failed: {names}",
            )
        if compile_outcome.failed:
            # Only reachable without targets: a failed source otherwise fails its target
            return self._finish(
                start_time,
                targets=results,
                compile_outcome=compile_outcome,
                message=f"{len(compile_outcome.failed)} source file(s) failed to compile",
            )

        self.phase = BuildPhase.RUN_AFTER_SCRIPTS
        output.log_phase(5, TOTAL_PHASES, "Running after-scripts...", verbose_only=not self.manifest.project.after_script)
        if not self._run_scripts(context, self.manifest.project.after_script, "after-script"):
            return self._finish(
                start_time,
                targets=results,
                compile_outcome=compile_outcome,
                message="after-script failed",
            )

        self.phase = BuildPhase.DONE
        return self._finish(
            start_time,
            targets=results,
            compile_outcome=compile_outcome,
            message="Build successful",
        )

    def _create_context(self) -> BuildContext:
        sources = SourceResolver(self.manifest, self.layout).resolve()
        resolver = ExpansionResolver(self.runner, self.manifest.root, self.params.timeout)
        flags = resolve_flags(self.manifest.project, resolver, position_independent=self.manifest.wants_shared)
        if resolver.resolved_count:
            logger.info(f"Resolved {resolver.resolved_count} shell expansion token(s)")
        return BuildContext.create(self.params, self.manifest, self.layout, flags, sources)

    def _run_scripts(self, context: BuildContext, scripts: Sequence[str], label: str) -> bool:
        """Run scripts in order; stop at the first failure.

        Returns:
            True if every script succeeded
        """
        for script in scripts:
            output.log_detail(f"$ {script}")
            result = self.runner.run_shell(script, context.root, context.timeout)
            if result.output:
                output.log_detail(result.output, indent=8, verbose_only=True)
            if not result.success:
                error = ScriptError(f"{label} '{script}' failed ({result.describe_failure()})", result)
                logger.error(str(error))
                self.errors.add_exception(error, "script")
                self.phase = BuildPhase.FAILED
                return False
        return True

    def _compile(
        self,
        context: BuildContext,
        targets: Sequence[Target],
        record: ArtifactRecord,
        state: BuildState,
    ) -> CompileOutcome:
        scope = self._sources_in_scope(context, targets)
        self.layout.obj_dir.mkdir(parents=True, exist_ok=True)

        stale: list[CompilationJob] = []
        current: list[SourceFile] = []
        for source in scope:
            command = context.synthesizer.compile_command(source)
            if self._object_up_to_date(source, command, state):
                current.append(source)
                output.log_file("compile", source.path, cached=True)
            else:
                stale.append(CompilationJob(source=source, command=command))

        outcome = CompileOutcome(up_to_date={s.path for s in current})
        try:
            self._run_jobs(context, stale)
        finally:
            for job in stale:
                key = self.layout.relative(job.source.object_path)
                if job.state == JobState.COMPLETED:
                    outcome.compiled.add(job.job_id)
                    state.record_command(key, job.command)
                elif job.state == JobState.FAILED:
                    outcome.failed.add(job.job_id)
                    state.forget(key)
                    self.errors.add_exception(CompileError(job.job_id, job.result), "compile")
                else:
                    outcome.cancelled.add(job.job_id)

            for source in scope:
                if source.path in outcome.compiled or source.path in outcome.up_to_date:
                    record.add(source.object_path, ArtifactKind.OBJECT)
                    outcome.objects.append(source.object_path)

        output.log_detail(
            f"{len(outcome.compiled)} compiled, {len(outcome.up_to_date)} up to date"
            + (f", {len(outcome.failed)} failed" if outcome.failed else "")
            + (f", {len(outcome.cancelled)} cancelled" if outcome.cancelled else "")
        )
        return outcome

    def _run_jobs(self, context: BuildContext, jobs: list[CompilationJob]) -> list[CompilationJob]:
        if not jobs:
            return []

        if context.verbose:
            def report(job: CompilationJob) -> None:
                output.log_file("compile", job.job_id)

            pool = CompilePool(
                self.runner,
                context.root,
                jobs=self.params.jobs,
                timeout=context.timeout,
                fail_fast=self.params.fail_fast,
                progress_callback=report,
            )
            return pool.run(jobs)

        # Use tqdm progress bar for non-verbose mode
        with tqdm(total=len(jobs), desc="Compiling", unit="file", ncols=80, leave=False) as pbar:
            pool = CompilePool(
                self.runner,
                context.root,
                jobs=self.params.jobs,
                timeout=context.timeout,
                fail_fast=self.params.fail_fast,
                progress_callback=lambda _job: pbar.update(1),
            )
            return pool.run(jobs)

    def _link(
        self,
        context: BuildContext,
        targets: Sequence[Target],
        compile_outcome: CompileOutcome,
        record: ArtifactRecord,
        state: BuildState,
    ) -> list[TargetResult]:
        steps = context.synthesizer.plan_link_steps(targets, context.sources)
        unusable = compile_outcome.failed | compile_outcome.cancelled

        results: list[TargetResult] = []
        for target in targets:
            target_steps = [s for s in steps if s.target == target.name]
            result = TargetResult(name=target.name, success=True, outputs=[s.output for s in target_steps])
            results.append(result)

            broken = sorted(set(p for s in target_steps for p in s.sources) & unusable)
            if broken:
                result.success = False
                result.message = f"not linked: compilation failed for {', '.join(broken)}"
                logger.warning(f"Skipping target '{target.name}': {result.message}")
                continue

            for step in target_steps:
                if not self._link_step(context, step, compile_outcome, result, state):
                    break
                record.add(step.output, step.kind, target.name)
        return results

    def _link_step(
        self,
        context: BuildContext,
        step: LinkStep,
        compile_outcome: CompileOutcome,
        result: TargetResult,
        state: BuildState,
    ) -> bool:
        display = self.layout.relative(step.output)
        action = "archive" if step.kind == ArtifactKind.STATIC_LIBRARY else "link"
        command = context.synthesizer.link_command(step)

        if self._output_up_to_date(step, command, compile_outcome, state):
            output.log_file(action, display, cached=True)
            result.up_to_date.append(step.output)
            return True

        step.output.parent.mkdir(parents=True, exist_ok=True)
        if step.kind == ArtifactKind.STATIC_LIBRARY:
            # ar would otherwise keep members of objects that no longer exist
            step.output.unlink(missing_ok=True)

        output.log_file(action, display, verbose_only=False)
        command_result = self.runner.run(command, context.root, context.timeout)
        if not command_result.success:
            state.forget(display)
            error = LinkError(step.target, display, command_result)
            logger.error(str(error))
            if command_result.output:
                logger.error(command_result.output)
            self.errors.add_exception(error, "link", target=step.target)
            result.success = False
            result.message = str(error)
            return False

        state.record_command(display, command)
        result.linked.append(step.output)
        return True

    def _sources_in_scope(self, context: BuildContext, targets: Sequence[Target]) -> list[SourceFile]:
        """Sources whose objects the selected targets need, in source order."""
        if not self.manifest.targets:
            return list(context.sources)
        needed: set[str] = set()
        for target in targets:
            needed.update(s.path for s in context.synthesizer.target_sources(target, context.sources))
        return [s for s in context.sources if s.path in needed]

    def _object_up_to_date(self, source: SourceFile, command: Sequence[str], state: BuildState) -> bool:
        """An object is current if it is not older than its source and was built by the same command."""
        if not source.object_path.exists():
            return False
        if not state.command_matches(self.layout.relative(source.object_path), command):
            return False
        source_path = source.absolute(self.manifest.root)
        try:
            return source.object_path.stat().st_mtime >= source_path.stat().st_mtime
        except FileNotFoundError:
            return False

    def _output_up_to_date(
        self,
        step: LinkStep,
        command: Sequence[str],
        compile_outcome: CompileOutcome,
        state: BuildState,
    ) -> bool:
        """An output is current if none of its objects changed and it was linked by the same command.

        The command includes the object list and every link setting, so a
        source leaving the set or a changed linker flag forces a relink.
        """
        if not step.output.exists():
            return False
        if not state.command_matches(self.layout.relative(step.output), command):
            return False
        if any(path in compile_outcome.compiled for path in step.sources):
            return False
        output_mtime = step.output.stat().st_mtime
        for obj in step.objects:
            if not obj.exists() or obj.stat().st_mtime > output_mtime:
                return False
        return True

    def _finish(
        self,
        start_time: float,
        targets: list[TargetResult],
        message: str,
        compile_outcome: Optional[CompileOutcome] = None,
    ) -> BuildResult:
        build_time = time.time() - start_time
        success = self.phase == BuildPhase.DONE
        if not success:
            self.phase = BuildPhase.FAILED

        artifacts: list[Path] = []
        if compile_outcome is not None:
            artifacts.extend(compile_outcome.objects)
        for target in targets:
            artifacts.extend(target.linked + target.up_to_date)

        result = BuildResult(
            success=success,
            phase=self.phase,
            targets=targets,
            compiled=len(compile_outcome.compiled) if compile_outcome else 0,
            up_to_date=len(compile_outcome.up_to_date) if compile_outcome else 0,
            cancelled=len(compile_outcome.cancelled) if compile_outcome else 0,
            artifacts=artifacts,
            errors=self.errors.get_errors(),
            build_time=build_time,
            message=message,
        )
        if success:
            output.log_build_complete(build_time)
        else:
            logger.info(f"Build failed after {build_time:.2f}s: {message} ({self.errors.format_summary()})")
        return result

