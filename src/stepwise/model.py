# model.py
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union


class OperatingSystem(str, Enum):
    """Platforms a step can be pinned to with `operating_system`."""
    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"

    @classmethod
    def current(cls) -> Optional["OperatingSystem"]:
        # None on platforms outside the closed set: no filtered step matches there
        if sys.platform.startswith("linux"):
            return cls.LINUX
        if sys.platform == "win32":
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return None

    def is_current(self) -> bool:
        return self is OperatingSystem.current()


@dataclass(frozen=True)
class Options:
    """Per-step execution policy."""
    proceed_on_failure: bool = False
    delay_ms: Optional[int] = None
    interactive: bool = False
    operating_system: Optional[OperatingSystem] = None
    fallback: Tuple["FallbackStep", ...] = ()

    # Re-attempt the original step once after the fallback chain ran.
    retry_after_fallback: bool = False

    def __post_init__(self) -> None:
        if self.delay_ms is not None and self.delay_ms < 0:
            raise ValueError(f"delay_ms must be non-negative, got {self.delay_ms}")


@dataclass(frozen=True)
class FallbackStep:
    """A best-effort recovery command. Cannot declare a fallback of its own."""
    command: str
    description: Optional[str] = None
    options: Options = field(default_factory=Options)

    def __post_init__(self) -> None:
        if self.options.fallback:
            raise ValueError(f"fallback step {self.command!r} cannot declare its own fallback")


@dataclass(frozen=True)
class Step:
    """A single shell command template inside a script."""
    command: str
    capture: Optional[str] = None
    description: Optional[str] = None
    options: Options = field(default_factory=Options)


@dataclass(frozen=True)
class Single:
    """Runs in the main sequential flow."""
    step: Step


@dataclass(frozen=True)
class Concurrent:
    """Steps run in order among themselves, concurrently with the rest of the script."""
    steps: Tuple[Step, ...]


StepGroup = Union[Single, Concurrent]


@dataclass(frozen=True)
class SecretDefinition:
    name: str      # placeholder, e.g. "commit_password"
    env_var: str   # e.g. "COMMIT_PASSWORD"


@dataclass
class Script:
    """
    A named automation unit.

    `groups` is ordered: later groups may depend on captures of earlier ones.
    """
    name: str
    groups: List[StepGroup] = field(default_factory=list)
    description: Optional[str] = None
    params: Optional[List[str]] = None
    secrets: List[SecretDefinition] = field(default_factory=list)

    @property
    def concurrent_groups(self) -> int:
        return sum(1 for g in self.groups if isinstance(g, Concurrent))
