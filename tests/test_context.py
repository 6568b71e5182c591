"""
Tests for context handling and placeholder substitution.
Run with: pytest tests/test_context.py -v
"""
import os
from pathlib import Path

from stepwise.context import CWD_KEY, Context, substitute


class TestSubstitute:
    """Tests for `${name}` substitution."""

    def test_known_placeholder(self):
        assert substitute("echo ${msg}", {"msg": "hi"}) == "echo hi"

    def test_unknown_placeholder_left_verbatim(self):
        assert substitute("echo ${missing}", {"msg": "hi"}) == "echo ${missing}"

    def test_every_occurrence_replaced(self):
        out = substitute("${a}-${a}-${b}", {"a": "1", "b": "2"})
        assert out == "1-1-2"

    def test_replaced_text_is_not_rescanned(self):
        ctx = {"a": "${b}", "b": "x"}
        assert substitute("value=${a}", ctx) == "value=${b}"

    def test_keys_are_case_sensitive(self):
        assert substitute("${Name} ${name}", {"name": "lower"}) == "${Name} lower"

    def test_no_placeholders(self):
        assert substitute("ls -la | wc -l", {"x": "y"}) == "ls -la | wc -l"

    def test_shell_variables_untouched_without_braces(self):
        assert substitute("echo $HOME ${HOME}", {}) == "echo $HOME ${HOME}"


class TestContext:
    """Tests for the Context mapping."""

    def test_cwd_defaults_to_process_directory(self):
        ctx = Context()
        assert ctx.cwd == Path(os.getcwd())
        assert ctx.process_cwd() is None

    def test_cwd_setter_stores_string(self, tmp_path):
        ctx = Context()
        ctx.cwd = tmp_path
        assert ctx[CWD_KEY] == str(tmp_path)
        assert ctx.cwd == tmp_path
        assert ctx.process_cwd() == str(tmp_path)

    def test_snapshot_is_independent(self):
        ctx = Context({"a": "1"})
        copy = ctx.snapshot()
        copy["a"] = "changed"
        copy["b"] = "new"

        assert ctx == {"a": "1"}
        assert isinstance(copy, Context)

    def test_substitute_method(self):
        ctx = Context({"who": "world"})
        assert ctx.substitute("hello ${who}") == "hello world"
