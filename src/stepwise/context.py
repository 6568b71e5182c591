# context.py
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Mapping

CWD_KEY = "cwd"

_PLACEHOLDER = re.compile(r"\$\{([^}]*)\}")


def substitute(template: str, context: Mapping[str, str]) -> str:
    """
    Replace every `${key}` whose key is in `context` with its value.

    Single pass: replaced text is never scanned again. Unknown placeholders
    are left as-is so a missing value shows up in the command text.
    """
    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in context:
            return context[key]
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template)


class Context(dict):
    """
    Variables visible to step commands: params, secrets, captures and `cwd`.

    Keys are only ever inserted or overwritten.
    """

    @property
    def cwd(self) -> Path:
        """The logical working directory for the next step."""
        value = self.get(CWD_KEY)
        return Path(value) if value else Path(os.getcwd())

    @cwd.setter
    def cwd(self, path: str | Path) -> None:
        self[CWD_KEY] = str(path)

    def process_cwd(self) -> str | None:
        """The directory to launch a child in, or None to inherit the runner's."""
        return self.get(CWD_KEY) or None

    def substitute(self, template: str) -> str:
        return substitute(template, self)

    def snapshot(self) -> "Context":
        """Independent copy handed to a concurrent group."""
        return Context(self)
