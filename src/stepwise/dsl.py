# src/stepwise/dsl.py
from __future__ import annotations

import shlex
from typing import Iterable, List, Optional, Union

from .model import (
    Concurrent,
    FallbackStep,
    OperatingSystem,
    Options,
    Script,
    SecretDefinition,
    Single,
    Step,
    StepGroup,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def _options(
    proceed_on_failure: bool = False,
    delay_ms: Optional[int] = None,
    interactive: bool = False,
    operating_system: Union[OperatingSystem, str, None] = None,
    fallback: Iterable[FallbackStep] = (),
    retry_after_fallback: bool = False,
) -> Options:
    if isinstance(operating_system, str):
        operating_system = OperatingSystem(operating_system)
    return Options(
        proceed_on_failure=proceed_on_failure,
        delay_ms=delay_ms,
        interactive=interactive,
        operating_system=operating_system,
        fallback=tuple(fallback),
        retry_after_fallback=retry_after_fallback,
    )


def sh(
    cmd: str,
    *,
    capture: str | None = None,
    description: str | None = None,
    **options,
) -> Step:
    """Create a shell step. Extra keyword arguments become its Options."""
    return Step(command=cmd, capture=capture, description=description, options=_options(**options))


def fallback(
    cmd: str,
    *,
    description: str | None = None,
    interactive: bool = False,
    operating_system: Union[OperatingSystem, str, None] = None,
) -> FallbackStep:
    """Create a recovery step for `sh(..., fallback=[...])`."""
    return FallbackStep(
        command=cmd,
        description=description,
        options=_options(interactive=interactive, operating_system=operating_system),
    )


def cd(path: str, *, description: str | None = None, **options) -> Step:
    """Change the working directory of the following steps."""
    return sh(f"cd {shlex.quote(path)}", description=description, **options)


def concurrent(*steps: Step) -> Concurrent:
    """Group steps that run together, alongside the rest of the script."""
    if not steps:
        raise ValueError("concurrent() needs at least one step")
    return Concurrent(tuple(steps))


def secret(name: str, env_var: str) -> SecretDefinition:
    return SecretDefinition(name=name, env_var=env_var)


# ---------------------------------------------------------------------
# Script helper
# ---------------------------------------------------------------------

def script(
    name: str,
    *groups: Union[Step, StepGroup],  # bare steps are wrapped in Single
    description: Optional[str] = None,
    params: Optional[List[str]] = None,
    secrets: Optional[List[SecretDefinition]] = None,
) -> Script:
    """
    Script definition helper:

        from stepwise import script, sh, concurrent

        build = script(
            "build",
            sh("make deps"),
            concurrent(sh("make docs"), sh("make lint")),
            sh("make test"),
        )
    """
    final: List[StepGroup] = []
    for g in groups:
        if isinstance(g, Step):
            final.append(Single(g))
        elif isinstance(g, (Single, Concurrent)):
            final.append(g)
        else:
            raise TypeError(f"script({name!r}): expected a Step or step group, got {g!r}")

    return Script(
        name=name,
        groups=final,
        description=description,
        params=params,
        secrets=list(secrets or []),
    )
