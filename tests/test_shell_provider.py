"""Shell runner tests."""
from __future__ import annotations

import sys

import pytest

from endpointctl.providers import CommandError, ShellRunner
from endpointctl.providers.shell import (
    TIMEOUT_EXIT_CODE,
    UnsafeArgumentError,
    validate_shell_argument,
)
from tests.conftest import FakeRunner


@pytest.mark.parametrize(
    "value",
    ["C:& calc", "a|b", "x;y", "$(whoami)", "`id`", "a>b", "wow!", "line\nbreak", "%COMSPEC%", "a^b", "\"C:\\x\" /Q"],
)
def test_metacharacters_are_rejected(value: str) -> None:
    with pytest.raises(UnsafeArgumentError, match="unsafe argument"):
        validate_shell_argument(value)


def test_plain_values_pass() -> None:
    assert validate_shell_argument(r"C:\Users\alice\AppData") == r"C:\Users\alice\AppData"


def test_run_cmd_validates_before_running(runner: FakeRunner) -> None:
    with pytest.raises(UnsafeArgumentError):
        runner.run_cmd("chkdsk {} /F", "C: & del")

    assert runner.calls == []


def test_run_cmd_formats_template(runner: FakeRunner) -> None:
    runner.exit_codes["regsvr32"] = 5

    code = runner.run_cmd("regsvr32 /s {}", "ole32.dll")

    assert code == 5
    assert runner.calls == [("cmd.exe", "/C", "regsvr32 /s ole32.dll")]


def test_templates_without_args_are_not_formatted(runner: FakeRunner) -> None:
    runner.run_cmd("bcdedit /bootsequence {memdiag}")
    assert runner.command_lines() == ["bcdedit /bootsequence {memdiag}"]


def test_missing_executable_raises() -> None:
    with pytest.raises(CommandError, match="Executable not found"):
        ShellRunner().run(["endpointctl-no-such-binary-xyz"])


def test_timeout_kills_and_reports() -> None:
    result = ShellRunner().run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)

    assert result.timed_out is True
    assert result.returncode == TIMEOUT_EXIT_CODE
    assert result.ok is False


def test_check_raises_on_failure() -> None:
    with pytest.raises(CommandError, match="boom"):
        ShellRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"],
            check=True,
        )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", []),
        ('{"Name": "C:"}', [{"Name": "C:"}]),
        ('[{"Name": "C:"}, 3, {"Name": "D:"}]', [{"Name": "C:"}, {"Name": "D:"}]),
        ("42", []),
    ],
)
def test_ps_json_normalises_output(monkeypatch: pytest.MonkeyPatch, raw: str, expected: list[dict[str, str]]) -> None:
    runner = FakeRunner()
    monkeypatch.setattr(runner, "powershell", lambda script, timeout=30.0: raw)

    assert runner.ps_json("Get-Volume") == expected


def test_ps_json_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    runner = FakeRunner()
    monkeypatch.setattr(runner, "powershell", lambda script, timeout=30.0: "{not json")

    with pytest.raises(CommandError, match="Invalid JSON"):
        runner.ps_json("Get-Volume")
