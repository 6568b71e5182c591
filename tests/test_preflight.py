"""
Tests for parameter and secret resolution before a run starts.
Run with: pytest tests/test_preflight.py -v
"""
import sys

import pytest

from stepwise import execute, script, secret, sh
from stepwise.errors import MissingSecretError, ParameterCountError, PreflightError
from stepwise.runner import build_context


class TestParameters:

    def test_params_bound_positionally(self):
        s = script("p", sh("true"), params=["first", "second"])
        ctx = build_context(s, ["one", "two"], environ={})
        assert ctx == {"first": "one", "second": "two"}

    @pytest.mark.parametrize("given", [[], ["a", "b"]])
    def test_wrong_count_fails(self, given):
        s = script("p", sh("true"), params=["only"])
        with pytest.raises(ParameterCountError) as exc:
            build_context(s, given, environ={})
        assert exc.value.expected == 1
        assert exc.value.got == len(given)
        assert str(exc.value) == f"Expected 1 parameters, got {len(given)}"

    def test_declared_empty_list_rejects_params(self):
        s = script("p", sh("true"), params=[])
        with pytest.raises(ParameterCountError):
            build_context(s, ["extra"], environ={})

    def test_undeclared_params_are_ignored(self):
        s = script("p", sh("true"))
        assert build_context(s, ["extra"], environ={}) == {}

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
    def test_mismatch_runs_no_step(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = script("p", sh("touch ran"), params=["message"])

        with pytest.raises(PreflightError):
            execute(s, [])

        assert not (tmp_path / "ran").exists()


class TestSecrets:

    def test_secret_read_from_environment(self):
        s = script("s", sh("true"), secrets=[secret("password", "COMMIT_PASSWORD")])
        ctx = build_context(s, [], environ={"COMMIT_PASSWORD": "hunter2"})
        assert ctx["password"] == "hunter2"

    def test_secret_defaults_to_os_environ(self, monkeypatch):
        monkeypatch.setenv("STEPWISE_TEST_SECRET", "from-env")
        s = script("s", sh("true"), secrets=[secret("value", "STEPWISE_TEST_SECRET")])
        assert build_context(s, [])["value"] == "from-env"

    def test_missing_secret_names_placeholder_and_variable(self):
        s = script("s", sh("true"), secrets=[secret("password", "COMMIT_PASSWORD")])
        with pytest.raises(MissingSecretError) as exc:
            build_context(s, [], environ={})

        message = str(exc.value)
        assert "password" in message
        assert "COMMIT_PASSWORD" in message

    def test_secret_overrides_param_of_same_name(self):
        s = script(
            "s",
            sh("true"),
            params=["token"],
            secrets=[secret("token", "TOKEN")],
        )
        ctx = build_context(s, ["from-cli"], environ={"TOKEN": "from-env"})
        assert ctx["token"] == "from-env"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
    def test_missing_secret_runs_no_step(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = script("s", sh("touch ran"), secrets=[secret("x", "STEPWISE_UNSET_SECRET")])

        with pytest.raises(MissingSecretError):
            execute(s, [], environ={})

        assert not (tmp_path / "ran").exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
    def test_params_and_secrets_substituted(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = script(
            "commit",
            sh("echo ${commit_message} ${commit_password} > output.txt"),
            params=["commit_message"],
            secrets=[secret("commit_password", "COMMIT_PASSWORD")],
        )

        execute(s, ["My commit message"], environ={"COMMIT_PASSWORD": "secret_value"})

        assert (tmp_path / "output.txt").read_text().strip() == "My commit message secret_value"
