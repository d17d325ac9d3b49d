"""
Build system components for mbuild.

This module provides the build engine:
- Source set resolution
- Flag expansion and command synthesis
- Parallel compilation
- Linking, archiving and shared objects
- Artifact tracking and cleanup
"""

from .cleaner import CleanResult, Cleaner
from .orchestrator import BuildOrchestrator, BuildPhase, BuildResult, TargetResult
from .source_resolver import SourceFile, SourceResolver, SourceSet

__all__ = [
    "BuildOrchestrator",
    "BuildPhase",
    "BuildResult",
    "CleanResult",
    "Cleaner",
    "SourceFile",
    "SourceResolver",
    "SourceSet",
    "TargetResult",
]
