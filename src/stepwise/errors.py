# errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class StepwiseError(Exception):
    """Base class for every error the runner reports to its caller."""


# ----------------------------------------------------------------------
# Pre-flight
# ----------------------------------------------------------------------

class PreflightError(StepwiseError):
    """Raised while building the context, before any step runs."""


@dataclass
class ParameterCountError(PreflightError):
    expected: int
    got: int

    def __str__(self) -> str:
        return f"Expected {self.expected} parameters, got {self.got}"


@dataclass
class MissingSecretError(PreflightError):
    name: str
    env_var: str

    def __str__(self) -> str:
        return f"Secret '{self.name}' not found in env '{self.env_var}'"


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

@dataclass
class StepFailure(StepwiseError):
    """
    A step that did not succeed.

    exit_code is None when no process exit status exists
    (spawn error, directory change).
    """
    command: str
    cause: str
    exit_code: Optional[int] = None
    description: Optional[str] = None

    def __str__(self) -> str:
        if self.exit_code is not None:
            return f"`{self.command}` failed (exit={self.exit_code}): {self.cause}"
        return f"`{self.command}` failed: {self.cause}"


@dataclass
class ScriptFailure(StepwiseError):
    """An unrecovered step failure that ended a script run."""
    script: str
    failure: StepFailure
    concurrent: bool = False

    @property
    def command(self) -> str:
        return self.failure.command

    def __str__(self) -> str:
        where = " (concurrent group)" if self.concurrent else ""
        return f"Error executing command in script '{self.script}'{where}: {self.failure}"


# ----------------------------------------------------------------------
# Loading / discovery
# ----------------------------------------------------------------------

class ScriptFormatError(StepwiseError, ValueError):
    """The script document does not have the expected shape."""


class ScriptNotFoundError(StepwiseError, FileNotFoundError):
    """No script file or shortcut matched the requested name."""
