__version__ = "0.4.0"

from .dsl import sh, cd, fallback, concurrent, secret, script
from .runner import execute, RunReport
from .model import Script, Step, Options, FallbackStep, Single, Concurrent, OperatingSystem
from .errors import StepwiseError, PreflightError, StepFailure, ScriptFailure

__all__ = [
    "sh", "cd", "fallback", "concurrent", "secret", "script",
    "execute", "RunReport",
    "Script", "Step", "Options", "FallbackStep", "Single", "Concurrent", "OperatingSystem",
    "StepwiseError", "PreflightError", "StepFailure", "ScriptFailure",
]
