"""Collector error taxonomy.

Fatal errors abort the run before any step executes and map to a process exit code.
Step-local errors never escape a step boundary; the executor converts them into a StepResult.
"""

from __future__ import annotations

EXIT_OK = 0
EXIT_MANDATORY_FAILED = 1
EXIT_PERMISSION_DENIED = 2
EXIT_OUTPUT_INIT_FAILED = 3


class CollectorFatalError(Exception):
    """Base class for errors that abort the whole run."""

    exit_code: int = EXIT_MANDATORY_FAILED


class PermissionDenied(CollectorFatalError):
    exit_code = EXIT_PERMISSION_DENIED


class OutputInitFailed(CollectorFatalError):
    exit_code = EXIT_OUTPUT_INIT_FAILED


class OutputCollision(OutputInitFailed):
    """The computed output root already exists (two runs with the same timestamp)."""


class LogSinkUnavailable(CollectorFatalError):
    exit_code = EXIT_OUTPUT_INIT_FAILED


class ActionFailed(Exception):
    """An action ran but did not produce what it was asked for."""


class ToolNotFound(ActionFailed):
    """The executable an action depends on is not installed on this machine."""

    def __init__(self, executable: str) -> None:
        super().__init__(f"executable not found: {executable}")
        self.executable = executable
