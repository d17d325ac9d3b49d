"""mbuild - manifest-driven build orchestrator for C/C++ projects."""

__version__ = "0.3.0"
