"""
Command-line interface for mbuild.

This module provides the `mbuild` CLI tool:

    mbuild build [TARGET ...]      Build all (or the named) targets
    mbuild build --sources         Print the resolved source files
    mbuild clean                   Remove generated files
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from . import __version__, output
from .build import BuildOrchestrator, BuildResult, Cleaner
from .build.build_context import BuildParams
from .config import find_manifest, load_manifest
from .errors import MbuildError


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    targets: list[str] = field(default_factory=list)
    jobs: Optional[int] = None
    fail_fast: Optional[bool] = None
    timeout: Optional[float] = None
    strict: bool = False
    verbose: bool = False
    sources: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    strict: bool = False
    verbose: bool = False


def _setup(verbose: bool) -> None:
    output.init_timer()
    output.set_verbose(verbose)
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def render_failures(result: BuildResult, console: Optional[Console] = None) -> None:
    """Print a failed build's targets and errors as a rich table."""
    console = console or Console()

    if result.targets:
        table = Table(title="Targets", show_lines=False)
        table.add_column("Target", style="bold")
        table.add_column("Status")
        table.add_column("Detail", overflow="fold")
        for target in result.targets:
            status = Text("ok", style="green") if target.success else Text("FAILED", style="bold red")
            table.add_row(target.name, status, target.message)
        console.print(table)

    for error in result.errors:
        console.print()
        header = f"[{error.phase}] {error.error_message}"
        console.print(Text(header, style="bold red"))
        if error.command:
            console.print(Text(f"$ {error.command}", style="dim"))
        if error.output:
            console.print(Text(error.output))


def build_command(args: BuildArgs) -> None:
    """Build the project's targets.

    Examples:
        mbuild build                   # Build every target
        mbuild build app               # Build only 'app'
        mbuild build -j 8 --fail-fast  # 8 parallel compilations, stop on first error
        mbuild build --sources         # List the resolved sources
    """
    _setup(args.verbose)

    try:
        manifest = load_manifest(find_manifest(args.project_dir), strict=args.strict)
        params = BuildParams.create(
            project_dir=manifest.root,
            jobs=args.jobs,
            fail_fast=args.fail_fast,
            timeout=args.timeout,
            verbose=args.verbose,
        )
        orchestrator = BuildOrchestrator(manifest, params)

        if args.sources:
            for source in orchestrator.list_sources():
                print(source.path)
            sys.exit(0)

        output.log_header("mbuild", __version__)
        output.log(f"Building project: {manifest.project.name}...")
        result = orchestrator.build(args.targets)

        if result.success:
            print()
            print("\033[1;32m✓ Build successful!\033[0m")
            print()
            print(result.summary())
            sys.exit(0)
        else:
            print()
            print("\033[1;31m✗ Build failed!\033[0m")
            print()
            print(result.message.splitlines()[0] if result.message else "")
            render_failures(result)
            if args.verbose and result.message:
                print()
                print(result.message)
            sys.exit(1)

    except MbuildError as e:
        print()
        output.log_error(str(e))
        sys.exit(1)

    except ValueError as e:
        print()
        output.log_error(f"Invalid option: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Build interrupted\033[0m")
        sys.exit(130)  # Standard exit code for SIGINT


def clean_command(args: CleanArgs) -> None:
    """Remove every file the build generated."""
    _setup(args.verbose)

    try:
        manifest = load_manifest(find_manifest(args.project_dir), strict=args.strict)
        with output.TimedLogger(f"Cleaning {manifest.project.name}"):
            result = Cleaner(manifest).clean()

        for path in result.removed:
            output.log_file("remove", str(path))
        for warning in result.warnings:
            output.log_warning(str(warning))

        if result.success:
            print(f"\033[1;32m✓ Removed {len(result.removed)} file(s)\033[0m")
            sys.exit(0)
        else:
            print(f"\033[1;31m✗ {len(result.warnings)} file(s) could not be removed\033[0m")
            sys.exit(1)

    except MbuildError as e:
        output.log_error(str(e))
        sys.exit(1)

    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Clean interrupted\033[0m")
        sys.exit(130)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-C",
        "--directory",
        dest="project_dir",
        type=Path,
        default=None,
        help="Run as if started in DIR (default: current directory)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Reject unknown manifest keys instead of warning",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose build output",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mbuild",
        description="mbuild - Manifest-driven C/C++ build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Build targets")
    build_parser.add_argument(
        "targets",
        nargs="*",
        metavar="TARGET",
        help="Targets to build (default: all)",
    )
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel compilations (default: $MBUILD_JOBS or CPU count)",
    )
    build_parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Stop compiling after the first failure",
    )
    build_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Timeout in seconds for each command (default: $MBUILD_TIMEOUT or 600)",
    )
    build_parser.add_argument(
        "--sources",
        action="store_true",
        help="Print the resolved source files and exit",
    )
    _add_common_arguments(build_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove generated files")
    _add_common_arguments(clean_parser)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """mbuild - Manifest-driven C/C++ build orchestrator."""
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    project_dir = parsed_args.project_dir or Path.cwd()
    if not project_dir.is_dir():
        print(f"\033[1;31m✗ Error: Not a directory: {project_dir}\033[0m")
        sys.exit(2)

    if parsed_args.command == "build":
        build_command(
            BuildArgs(
                project_dir=project_dir,
                targets=parsed_args.targets,
                jobs=parsed_args.jobs,
                fail_fast=parsed_args.fail_fast,
                timeout=parsed_args.timeout,
                strict=parsed_args.strict,
                verbose=parsed_args.verbose,
                sources=parsed_args.sources,
            )
        )
    elif parsed_args.command == "clean":
        clean_command(
            CleanArgs(
                project_dir=project_dir,
                strict=parsed_args.strict,
                verbose=parsed_args.verbose,
            )
        )


if __name__ == "__main__":
    main()
