# runner.py
from __future__ import annotations

import os
import re
import shlex
import subprocess
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from .context import Context
from .errors import (
    MissingSecretError,
    ParameterCountError,
    ScriptFailure,
    StepFailure,
    StepwiseError,
)
from .events import Emitter, EventSink
from .model import Concurrent, FallbackStep, Options, Script, Single, Step


class RunInterrupted(StepwiseError):
    """The run is being torn down; no new process may start."""

    def __str__(self) -> str:
        return "run interrupted"


# ----------------------------------------------------------------------
# Per-run state
# ----------------------------------------------------------------------

class ProcessRegistry:
    """
    Child processes currently running for one script run.

    Once `terminate_all()` was called the registry refuses new processes,
    so concurrent units wind down at their next spawn or delay.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._procs: set = set()
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def add(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if self._stop.is_set():
                proc.terminate()
                raise RunInterrupted()
            self._procs.add(proc)

    def discard(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def sleep(self, seconds: float) -> None:
        # returns early (and raises) when the run is stopped
        if self._stop.wait(seconds):
            raise RunInterrupted()

    def terminate_all(self, timeout: float = 5.0) -> int:
        """Terminate every in-flight child. Returns how many were signalled."""
        with self._lock:
            self._stop.set()
            procs = list(self._procs)

        for proc in procs:
            if proc.poll() is None:
                proc.terminate()
        for proc in procs:
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        return len(procs)


class Runtime:
    """Collaborators shared by the main flow and every concurrent unit of a run."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.emit = Emitter(sink)
        self.processes = ProcessRegistry()


@dataclass
class StepResult:
    """
    Outcome of one step:
      - "ok"
      - "skipped"   (operating_system filter did not match)
      - "tolerated" (failed, proceed_on_failure)
    """
    status: str
    command: Optional[str] = None
    failure: Optional[StepFailure] = None


@dataclass
class RunReport:
    script: str
    context: Context
    results: List[StepResult] = field(default_factory=list)
    concurrent_units: int = 0

    @property
    def executed(self) -> int:
        return sum(1 for r in self.results if r.status != "skipped")

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.status == "skipped")

    @property
    def tolerated(self) -> List[StepFailure]:
        return [r.failure for r in self.results if r.status == "tolerated" and r.failure]


# ----------------------------------------------------------------------
# Pre-flight
# ----------------------------------------------------------------------

def build_context(
    script: Script,
    params: Sequence[str],
    environ: Optional[Mapping[str, str]] = None,
) -> Context:
    """
    Bind declared params positionally, then secrets from the environment.

    Secrets win over a param of the same name.
    """
    environ = os.environ if environ is None else environ
    context = Context()

    if script.params is not None:
        if len(script.params) != len(params):
            raise ParameterCountError(expected=len(script.params), got=len(params))
        context.update(zip(script.params, params))

    for secret in script.secrets:
        if secret.env_var not in environ:
            raise MissingSecretError(name=secret.name, env_var=secret.env_var)
        context[secret.name] = environ[secret.env_var]

    return context


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

_CD = re.compile(r"^\s*cd(?:\s+(?P<target>.*?))?\s*$", re.DOTALL)
_SHELL_CONTROL = set(";&|<>`()\n")
# quoted spans and backslash escapes are literal; "..." still expands `...` and $(...)
_QUOTED = re.compile(r"'[^']*'|\"(?:\\.|[^\"\\])*\"|\\.", re.DOTALL)


def _blank_quoted(match: re.Match) -> str:
    text = match.group(0)
    if text.startswith('"') and ("`" in text or "$(" in text):
        return "`"
    return "_"


def parse_cd(command: str) -> Optional[str]:
    """
    Target of a directory-change command ("" for a bare `cd`),
    or None when the command must go to the shell.

    Control operators only count outside quotes, so `cd "a;b"` stays
    in-process while `cd a; b` goes to the shell.
    """
    match = _CD.match(command)
    if not match:
        return None
    target = match.group("target") or ""
    if any(ch in _SHELL_CONTROL for ch in _QUOTED.sub(_blank_quoted, target)):
        return None
    return target


def resolve_directory(target: str, context: Context) -> Path:
    # `#` starts a comment, as in the shell
    parts = shlex.split(target, comments=True, posix=os.name != "nt") if target else []
    if len(parts) > 1:
        raise ValueError(f"too many arguments: {target}")

    raw = parts[0] if parts else "~"
    path = Path(os.path.expanduser(os.path.expandvars(raw)))
    if not path.is_absolute():
        path = context.cwd / path

    resolved = path.resolve(strict=True)
    if not resolved.is_dir():
        raise NotADirectoryError(f"not a directory: {resolved}")
    return resolved


def _forward(stream, emit: Emitter, is_error: bool, keep: Optional[List[str]] = None) -> None:
    """Pass a child's output on line by line while it runs."""
    with stream:
        for line in stream:
            if keep is not None:
                keep.append(line)
            else:
                emit.log(line.rstrip("\r\n"), is_error=is_error)


def _stop(proc: subprocess.Popen, timeout: float = 5.0) -> None:
    if proc.poll() is None:
        proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def _spawn(command: str, *, cwd: Optional[str], interactive: bool, capture: bool, runtime: Runtime) -> Tuple[int, str]:
    """Run `command` through the platform shell. Returns (exit_code, stdout)."""
    proc = subprocess.Popen(
        command,
        shell=True,
        cwd=cwd,
        stdin=None if interactive else subprocess.DEVNULL,
        stdout=subprocess.PIPE if capture or not interactive else None,
        stderr=None if interactive else subprocess.PIPE,
        text=True,
        errors="replace",
    )
    captured: List[str] = []
    try:
        runtime.processes.add(proc)
        errors = None
        if proc.stderr is not None:
            errors = threading.Thread(
                target=_forward,
                args=(proc.stderr, runtime.emit, True),
                name="stepwise-stderr",
                daemon=True,
            )
            errors.start()
        if proc.stdout is not None:
            _forward(proc.stdout, runtime.emit, False, captured if capture else None)
        if errors is not None:
            errors.join()
        proc.wait()
    except BaseException:
        # interrupted while the child runs; it must not outlive the run
        _stop(proc)
        raise
    finally:
        runtime.processes.discard(proc)

    return proc.returncode, "".join(captured)


def _attempt(
    command: str,
    context: Context,
    runtime: Runtime,
    *,
    description: Optional[str] = None,
    interactive: bool = False,
    capture: bool = False,
) -> Optional[str]:
    """
    One execution attempt of an already substituted command.

    Returns the trimmed stdout when `capture` is set. Raises StepFailure.
    """
    runtime.emit.started(command)
    if description:
        runtime.emit.log(f"  # {description}")

    target = parse_cd(command)
    if target is not None:
        try:
            context.cwd = resolve_directory(target, context)
        except (OSError, ValueError) as e:
            runtime.emit.finished(command, None)
            raise StepFailure(
                command=command,
                cause=f"cannot change directory: {e}",
                description=description,
            ) from e
        runtime.emit.finished(command, None)
        return None

    try:
        code, out = _spawn(
            command,
            cwd=context.process_cwd(),
            interactive=interactive,
            capture=capture,
            runtime=runtime,
        )
    except OSError as e:
        runtime.emit.finished(command, None)
        raise StepFailure(
            command=command,
            cause=f"failed to spawn shell: {e}",
            description=description,
        ) from e

    runtime.emit.finished(command, code)
    if code != 0:
        raise StepFailure(
            command=command,
            cause="non-zero exit status",
            exit_code=code,
            description=description,
        )
    return out.strip() if capture else None


def _skipped(options: Options, command: str, runtime: Runtime) -> bool:
    os_filter = options.operating_system
    if os_filter is None or os_filter.is_current():
        return False
    runtime.emit.log(
        f"Skipping `{command}` due to operating_system mismatch "
        f"(requires '{os_filter.value}', current OS is '{sys.platform}')."
    )
    return True


def _run_step_once(step: Step, context: Context, runtime: Runtime) -> str:
    command = context.substitute(step.command)
    captured = _attempt(
        command,
        context,
        runtime,
        description=step.description,
        interactive=step.options.interactive,
        capture=step.capture is not None,
    )
    if step.capture is not None:
        context[step.capture] = captured or ""
    return command


def run_fallbacks(
    fallbacks: Sequence[FallbackStep],
    context: Context,
    runtime: Runtime,
) -> List[StepFailure]:
    """
    Invoke every fallback step once, in order. Failures are logged and
    returned, never raised.
    """
    failures: List[StepFailure] = []
    for fb in fallbacks:
        if _skipped(fb.options, fb.command, runtime):
            continue
        command = context.substitute(fb.command)
        try:
            _attempt(
                command,
                context,
                runtime,
                description=fb.description,
                interactive=fb.options.interactive,
            )
        except StepFailure as e:
            runtime.emit.log(f"  fallback `{command}` errored: {e}", is_error=True)
            failures.append(e)
    return failures


def _recover(step: Step, failure: StepFailure, context: Context, runtime: Runtime) -> Optional[StepFailure]:
    """Run the fallback chain (and the optional retry). Returns the failure left over."""
    options = step.options
    if not options.fallback:
        return failure

    run_fallbacks(options.fallback, context, runtime)
    if not options.retry_after_fallback:
        return failure

    try:
        _run_step_once(step, context, runtime)
    except StepFailure as retry_failure:
        runtime.emit.log(f"Retry also failed: {retry_failure}", is_error=True)
        return retry_failure
    return None


def execute_step(step: Step, context: Context, runtime: Optional[Runtime] = None) -> StepResult:
    """
    Run one step against `context`.

    On success a `capture` value is stored in `context`. A failure that
    survives the fallback chain is raised unless proceed_on_failure is set.
    """
    runtime = runtime or Runtime()
    options = step.options

    if _skipped(options, step.command, runtime):
        return StepResult("skipped")

    command: Optional[str] = None
    try:
        command = _run_step_once(step, context, runtime)
        failure = None
    except StepFailure as e:
        runtime.emit.log(f"Step error: {e}", is_error=True)
        command = e.command
        failure = _recover(step, e, context, runtime)

    if failure is not None and not options.proceed_on_failure:
        raise failure

    if failure is not None:
        runtime.emit.log("Continuing despite failure as proceed_on_failure is true.")

    if options.delay_ms:
        runtime.processes.sleep(options.delay_ms / 1000)

    if failure is not None:
        return StepResult("tolerated", command, failure)
    return StepResult("ok", command)


def _run_unit(steps: Sequence[Step], context: Context, runtime: Runtime) -> List[StepResult]:
    """A concurrent group: its steps in order, on its own context copy."""
    return [execute_step(step, context, runtime) for step in steps]


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def _join(units: List[Future], report: RunReport, runtime: Runtime) -> Optional[StepFailure]:
    """Wait for every unit; first failure in dispatch order wins."""
    first: Optional[StepFailure] = None
    for fut in units:
        try:
            report.results.extend(fut.result())
        except StepFailure as e:
            runtime.emit.log(f"Concurrent group failed: {e}", is_error=True)
            if first is None:
                first = e
    return first


def run_script(
    script: Script,
    context: Context,
    *,
    runtime: Optional[Runtime] = None,
    max_workers: int | None = None,
) -> RunReport:
    """
    Drive the script's step groups to completion.

    Concurrent groups get a snapshot of `context` and run on a thread pool;
    they are all awaited before the result is decided, even when the main
    flow already failed.
    """
    runtime = runtime or Runtime()
    report = RunReport(script=script.name, context=context)

    if max_workers is None:
        max_workers = max(1, script.concurrent_groups)

    units: List[Future] = []
    main_failure: Optional[StepFailure] = None

    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stepwise")
    try:
        for group in script.groups:
            if isinstance(group, Single):
                try:
                    report.results.append(execute_step(group.step, context, runtime))
                except StepFailure as e:
                    main_failure = e
                    break
            elif isinstance(group, Concurrent):
                units.append(pool.submit(_run_unit, group.steps, context.snapshot(), runtime))
                report.concurrent_units += 1
            else:
                raise TypeError(f"Unknown step group: {group!r}")

        unit_failure = _join(units, report, runtime)
    except KeyboardInterrupt:
        runtime.processes.terminate_all()
        raise
    finally:
        pool.shutdown(wait=True, cancel_futures=True)

    if main_failure is not None:
        raise ScriptFailure(script=script.name, failure=main_failure)
    if unit_failure is not None:
        raise ScriptFailure(script=script.name, failure=unit_failure, concurrent=True)
    return report


def execute(
    script: Script,
    params: Sequence[str] = (),
    *,
    sink: Optional[EventSink] = None,
    max_workers: int | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RunReport:
    """
    Build the context for `script` and run it.

    Raises PreflightError before any step runs, ScriptFailure for an
    unrecovered step failure. Tolerated failures are listed in the report.
    """
    context = build_context(script, params, environ=environ)
    return run_script(script, context, runtime=Runtime(sink), max_workers=max_workers)
