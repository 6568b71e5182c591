# cli.py
from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from stepwise import __version__
from stepwise.errors import PreflightError, ScriptFailure, ScriptFormatError, ScriptNotFoundError
from stepwise.loader import SCRIPT_DIR_NAME, find_script, global_script_dir, init_dirs, load_script
from stepwise.model import Concurrent, Script, Single, Step
from stepwise.runner import execute
from stepwise.ui.console import Console, ConsoleSink, get_console, set_console


EXIT_HINTS = {
    126: "The command was found but is not executable (check permissions).",
    127: "Command not found. Install it or fix PATH.",
}


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt()


def discover_script(name: str) -> Path:
    """
    Resolve a script name, or exit with a readable error.

    Args:
        name: Script path, script name or shortcut

    Returns:
        Path to the script file
    """
    console = get_console()
    try:
        return find_script(name, local_dir=SCRIPT_DIR_NAME, global_dir=global_script_dir())
    except ScriptNotFoundError as e:
        console.print_error(
            "Script not found",
            str(e),
            details=[
                "Looked for:",
                f"  {name}",
                f"  {SCRIPT_DIR_NAME}/{name}.(yaml|yml|json|toml)",
                f"  {global_script_dir()}/{name}.(yaml|yml|json|toml)",
                "  shortcuts in .shortcuts.yaml of both directories",
            ],
            suggestion="Create the directories with:\n  stepwise init",
        )
        sys.exit(1)
    except ScriptFormatError as e:
        console.print_error("Invalid shortcuts file", str(e))
        sys.exit(1)


def _load_or_exit(path: Path) -> Script:
    try:
        return load_script(path)
    except ScriptFormatError as e:
        get_console().print_error(
            "Invalid script",
            f"Could not load script from {path}",
            details=[str(e)],
        )
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.version_option(__version__, prog_name="stepwise")
@click.pass_context
def cli(ctx, debug):
    """stepwise: run declarative shell scripts."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("params", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--workers",
    default=None,
    type=click.IntRange(min=1),
    envvar="STEPWISE_WORKERS",
    help="Maximum number of concurrent groups running at once",
)
def run(name, params, workers):
    """Run script NAME with positional PARAMS."""
    console = get_console()

    script_path = discover_script(name)
    script = _load_or_exit(script_path)

    console.print_script_started(script.name, script.description, str(script_path))
    console.print_debug(f"params={list(params)} workers={workers}")

    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        report = execute(script, list(params), sink=ConsoleSink(console), max_workers=workers)
    except PreflightError as e:
        console.print_error("Cannot start script", str(e))
        sys.exit(1)
    except ScriptFailure as e:
        console.print_failure(
            e.command,
            str(e),
            exit_code=e.failure.exit_code,
            hint=EXIT_HINTS.get(e.failure.exit_code),
        )
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        signal.signal(signal.SIGTERM, previous)

    console.print_summary(
        report.script,
        executed=report.executed,
        skipped=report.skipped,
        concurrent_units=report.concurrent_units,
        tolerated=report.tolerated,
    )


def _describe_step(step: Step, indent: str) -> list[str]:
    lines = [f"{indent}- {step.command}"]
    if step.description:
        lines.append(f"{indent}    # {step.description}")
    opts = step.options
    flags = []
    if step.capture:
        flags.append(f"capture={step.capture}")
    if opts.operating_system:
        flags.append(f"os={opts.operating_system.value}")
    if opts.interactive:
        flags.append("interactive")
    if opts.proceed_on_failure:
        flags.append("proceed_on_failure")
    if opts.delay_ms:
        flags.append(f"delay={opts.delay_ms}ms")
    if opts.fallback:
        flags.append(f"fallback={len(opts.fallback)}")
    if opts.retry_after_fallback:
        flags.append("retry")
    if flags:
        lines.append(f"{indent}    [{', '.join(flags)}]")
    return lines


@cli.command()
@click.argument("name")
def show(name):
    """Print script NAME without running it."""
    console = get_console()
    script_path = discover_script(name)
    script = _load_or_exit(script_path)

    console.print_info(f"Script: {script.name}")
    if script.description:
        console.print_info(f"Description: {script.description}")
    if script.params is not None:
        console.print_info(f"Params: {', '.join(script.params) or '(none)'}")
    for s in script.secrets:
        console.print_info(f"Secret: {s.name} <- ${s.env_var}")

    console.print_info("Commands:")
    for group in script.groups:
        if isinstance(group, Single):
            lines = _describe_step(group.step, "  ")
        elif isinstance(group, Concurrent):
            lines = ["  - concurrent:"]
            for step in group.steps:
                lines.extend(_describe_step(step, "      "))
        for line in lines:
            console.print_info(line)


@cli.command()
@click.option(
    "--local/--no-local",
    default=None,
    help=f"Also create {SCRIPT_DIR_NAME}/ in the current directory (asks when omitted)",
)
def init(local):
    """Create the global and (optionally) the local script directory."""
    console = get_console()
    local_dir = Path(SCRIPT_DIR_NAME)

    if local is None:
        local = local_dir.exists() or click.confirm(
            f"Would you like to initialize {SCRIPT_DIR_NAME} in the current directory?",
            default=False,
        )

    created = init_dirs(global_script_dir(), local_dir if local else None)
    for path in created:
        console.print_info(f"Created {path}")
    if not created:
        console.print_info("Nothing to do, script directories already exist.")


def main():
    cli()


if __name__ == "__main__":
    main()
