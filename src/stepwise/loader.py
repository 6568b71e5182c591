# loader.py
from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ScriptFormatError, ScriptNotFoundError
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

SCRIPT_DIR_NAME = ".stepwise"
SHORTCUTS_FILE = ".shortcuts.yaml"
SUPPORTED_EXTENSIONS = ("yaml", "yml", "json", "toml")

_OPTION_KEYS = {
    "proceed_on_failure",
    "delay_ms",
    "interactive",
    "operating_system",
    "fallback",
    "on_failure",  # older name for `fallback`
    "retry_after_fallback",
}


# ----------------------------------------------------------------------
# Document -> model
# ----------------------------------------------------------------------

def _require_mapping(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ScriptFormatError(f"{where}: expected a mapping, got {type(value).__name__}")
    return value


def _optional_str(data: Dict[str, Any], key: str, where: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ScriptFormatError(f"{where}: '{key}' must be a string")
    return value


def _optional_bool(data: Dict[str, Any], key: str, where: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ScriptFormatError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


def _parse_options(data: Any, where: str, *, allow_fallback: bool = True) -> Options:
    if data is None:
        return Options()
    data = _require_mapping(data, where)

    unknown = sorted(set(data) - _OPTION_KEYS)
    if unknown:
        raise ScriptFormatError(f"{where}: unknown option(s) {unknown}")

    delay_ms = data.get("delay_ms")
    if delay_ms is not None and (
        isinstance(delay_ms, bool) or not isinstance(delay_ms, int) or delay_ms < 0
    ):
        raise ScriptFormatError(f"{where}: 'delay_ms' must be a non-negative integer")

    os_name = data.get("operating_system")
    operating_system = None
    if os_name is not None:
        try:
            operating_system = OperatingSystem(str(os_name).lower())
        except ValueError:
            allowed = [o.value for o in OperatingSystem]
            raise ScriptFormatError(
                f"{where}: unknown operating_system {os_name!r}, expected one of {allowed}"
            ) from None

    # ---- fallback (alias: on_failure) ----
    raw_fallback = data.get("fallback")
    if raw_fallback is None:
        raw_fallback = data.get("on_failure")
    if raw_fallback is not None and not allow_fallback:
        raise ScriptFormatError(f"{where}: a fallback step cannot declare its own fallback")
    if raw_fallback is not None and not isinstance(raw_fallback, list):
        raise ScriptFormatError(f"{where}: 'fallback' must be a list of steps")

    fallback = tuple(
        _parse_fallback(item, f"{where}.fallback[{i}]")
        for i, item in enumerate(raw_fallback or [])
    )

    return Options(
        proceed_on_failure=_optional_bool(data, "proceed_on_failure", where),
        delay_ms=delay_ms,
        interactive=_optional_bool(data, "interactive", where),
        operating_system=operating_system,
        fallback=fallback,
        retry_after_fallback=_optional_bool(data, "retry_after_fallback", where),
    )


def _parse_command(data: Dict[str, Any], where: str) -> str:
    command = data.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ScriptFormatError(f"{where}: 'command' is required and must be a non-empty string")
    return command


def _parse_fallback(data: Any, where: str) -> FallbackStep:
    data = _require_mapping(data, where)
    return FallbackStep(
        command=_parse_command(data, where),
        description=_optional_str(data, "description", where),
        options=_parse_options(data.get("options"), f"{where}.options", allow_fallback=False),
    )


def _parse_step(data: Any, where: str) -> Step:
    data = _require_mapping(data, where)
    return Step(
        command=_parse_command(data, where),
        capture=_optional_str(data, "capture", where),
        description=_optional_str(data, "description", where),
        options=_parse_options(data.get("options"), f"{where}.options"),
    )


def _parse_group(item: Any, where: str) -> StepGroup:
    # a list, or {concurrent: [...]}, is a concurrent group
    if isinstance(item, dict) and "concurrent" in item:
        if set(item) != {"concurrent"}:
            raise ScriptFormatError(f"{where}: 'concurrent' cannot be mixed with step fields")
        item = item["concurrent"]
        if not isinstance(item, list):
            raise ScriptFormatError(f"{where}: 'concurrent' must be a list of steps")

    if isinstance(item, list):
        if not item:
            raise ScriptFormatError(f"{where}: concurrent group is empty")
        return Concurrent(tuple(_parse_step(s, f"{where}[{i}]") for i, s in enumerate(item)))

    return Single(_parse_step(item, where))


def script_from_dict(data: Any) -> Script:
    """Validate a parsed document and turn it into a Script."""
    data = _require_mapping(data, "script")

    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise ScriptFormatError("script: 'name' is required")

    commands = data.get("commands")
    if not isinstance(commands, list):
        raise ScriptFormatError("script: 'commands' must be a list")

    params = data.get("params")
    if params is not None and (
        not isinstance(params, list) or not all(isinstance(p, str) for p in params)
    ):
        raise ScriptFormatError("script: 'params' must be a list of names")

    secrets: List[SecretDefinition] = []
    for i, raw in enumerate(data.get("secrets") or []):
        where = f"secrets[{i}]"
        raw = _require_mapping(raw, where)
        secret_name, env_var = raw.get("name"), raw.get("env_var")
        if not isinstance(secret_name, str) or not isinstance(env_var, str):
            raise ScriptFormatError(f"{where}: 'name' and 'env_var' are required strings")
        secrets.append(SecretDefinition(name=secret_name, env_var=env_var))

    return Script(
        name=name,
        description=_optional_str(data, "description", "script"),
        params=list(params) if params is not None else None,
        secrets=secrets,
        groups=[_parse_group(item, f"commands[{i}]") for i, item in enumerate(commands)],
    )


def load_script(path: str | Path) -> Script:
    """
    Load a script document. The parser is picked by extension:
      - .yaml / .yml
      - .json
      - .toml
    """
    script_path = Path(path).expanduser()
    if not script_path.exists():
        raise ScriptNotFoundError(f"Script file not found: {script_path}")

    ext = script_path.suffix.lower().lstrip(".")

    try:
        text = script_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ScriptFormatError(f"Could not read {script_path.name}: {e}") from e

    try:
        if ext in ("yaml", "yml"):
            data = yaml.safe_load(text)
        elif ext == "json":
            data = json.loads(text)
        elif ext == "toml":
            data = tomllib.loads(text)
        else:
            raise ScriptFormatError(f"Unsupported extension: {ext or '(none)'}")
    except (yaml.YAMLError, json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ScriptFormatError(f"Could not parse {script_path.name}: {e}") from e

    return script_from_dict(data)


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def global_script_dir() -> Path:
    """`$STEPWISE_HOME`, or `~/.stepwise`."""
    override = os.environ.get("STEPWISE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / SCRIPT_DIR_NAME


def _with_extensions(directory: Path, name: str) -> Optional[Path]:
    for ext in SUPPORTED_EXTENSIONS:
        candidate = directory / f"{name}.{ext}"
        if candidate.exists():
            return candidate.resolve()
    return None


def _read_shortcuts(directory: Path) -> Dict[str, str]:
    path = directory / SHORTCUTS_FILE
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ScriptFormatError(f"Could not parse {path}: {e}") from e
    shortcuts = data.get("shortcuts") if isinstance(data, dict) else None
    if not isinstance(shortcuts, dict):
        raise ScriptFormatError(f"{path}: expected a 'shortcuts' mapping")
    return {str(k): str(v) for k, v in shortcuts.items()}


def find_script_in_dir(directory: Path, name: str) -> Optional[Path]:
    found = _with_extensions(directory, name)
    if found:
        return found

    mapped = _read_shortcuts(directory).get(name)
    if mapped is None:
        return None
    target = directory / mapped
    if target.is_file():
        return target.resolve()
    return _with_extensions(directory, mapped)


def find_script(
    name: str,
    local_dir: str | Path = SCRIPT_DIR_NAME,
    global_dir: str | Path | None = None,
) -> Path:
    """
    Resolve a script name to a file.

    Order: an existing path as given, then `<local_dir>/<name>.<ext>` and
    its shortcuts, then the same in the global directory.
    """
    direct = Path(name).expanduser()
    if direct.is_file():
        return direct.resolve()

    dirs = [Path(local_dir), Path(global_dir) if global_dir is not None else global_script_dir()]
    for directory in dirs:
        if not directory.is_dir():
            continue
        found = find_script_in_dir(directory, name)
        if found:
            return found

    raise ScriptNotFoundError(f"No script or shortcut found for '{name}'")


DEFAULT_SHORTCUTS = "shortcuts:\n  e: \"example.yaml\"\n"


def init_dirs(global_dir: Path, local_dir: Optional[Path] = None) -> List[Path]:
    """
    Create the global script directory (and `local_dir` when given), each
    with a default shortcuts file. Returns the paths that were created.
    """
    created: List[Path] = []
    for directory in [global_dir] + ([local_dir] if local_dir is not None else []):
        if not directory.exists():
            directory.mkdir(parents=True)
            created.append(directory)
        shortcuts = directory / SHORTCUTS_FILE
        if not shortcuts.exists():
            shortcuts.write_text(DEFAULT_SHORTCUTS, encoding="utf-8")
            created.append(shortcuts)
    return created
