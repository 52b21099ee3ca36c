"""Subprocess runner for cmd.exe, PowerShell and plain executables."""
from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

import psutil

LOGGER = logging.getLogger(__name__)

# Characters that change the meaning of a cmd.exe command line.
SHELL_METACHARACTERS = frozenset("&|;`$()<>!%^\"\r\n")

DEFAULT_TIMEOUT = 600.0
TIMEOUT_EXIT_CODE = -1

_CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class CommandError(RuntimeError):
    """Raised when an external command cannot be started or fails under ``check``."""


class UnsafeArgumentError(ValueError):
    """Raised when an interpolated argument contains shell metacharacters."""


def validate_shell_argument(value: str) -> str:
    """Return *value* unchanged, or raise :class:`UnsafeArgumentError`."""
    bad = sorted({char for char in value if char in SHELL_METACHARACTERS})
    if bad:
        shown = " ".join(repr(char) for char in bad)
        raise UnsafeArgumentError(f"unsafe argument: {value!r} contains {shown}")
    return value


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited with status 0."""
        return self.returncode == 0


def _kill_tree(pid: int) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    for child in parent.children(recursive=True):
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue
    try:
        parent.kill()
    except psutil.NoSuchProcess:
        return


@dataclass(slots=True)
class ShellRunner:
    """Run external commands with bounded timeouts and no console window."""

    cmd_bin: str = "cmd.exe"
    powershell_bin: str = "powershell"

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float = DEFAULT_TIMEOUT,
        check: bool = False,
        capture_output: bool = True,
    ) -> CommandResult:
        """Execute *args* and return a :class:`CommandResult`.

        A command that outruns *timeout* has its whole process tree killed and
        reports exit code ``-1``.
        """
        argv = tuple(str(arg) for arg in args)
        LOGGER.debug("running %s (timeout=%ss)", argv, timeout)
        stream = subprocess.PIPE if capture_output else subprocess.DEVNULL
        try:
            process = subprocess.Popen(  # noqa: S603
                list(argv),
                stdout=stream,
                stderr=stream,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                creationflags=_CREATE_NO_WINDOW,
            )
        except FileNotFoundError as exc:
            raise CommandError(f"Executable not found: {argv[0]}") from exc
        except OSError as exc:
            raise CommandError(f"Failed to start {argv[0]}: {exc}") from exc

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            LOGGER.debug("timeout after %ss, killing process tree of %s", timeout, process.pid)
            _kill_tree(process.pid)
            process.communicate()
            return CommandResult(argv, TIMEOUT_EXIT_CODE, timed_out=True)

        result = CommandResult(
            argv,
            process.returncode,
            (stdout or "").replace("\x00", "").strip(),
            (stderr or "").replace("\x00", "").strip(),
        )
        if check and not result.ok:
            detail = result.stderr or result.stdout or f"exit code {result.returncode}"
            raise CommandError(f"{argv[0]} failed: {detail}")
        return result

    def run_cmd(self, template: str, *args: str, timeout: float = DEFAULT_TIMEOUT) -> int:
        """Run a command line through ``cmd.exe /C`` and return its exit code.

        *template* is fixed command text; ``{}`` placeholders are filled with
        *args*, each of which is checked for shell metacharacters before
        anything is started. Output is discarded.
        """
        for arg in args:
            validate_shell_argument(arg)
        command_line = template.format(*args) if args else template
        result = self.run(
            [self.cmd_bin, "/C", command_line],
            timeout=timeout,
            capture_output=False,
        )
        return result.returncode

    def powershell(self, script: str, *, timeout: float = 30.0) -> str:
        """Run a PowerShell script and return its stdout."""
        result = self.run(
            [self.powershell_bin, "-NoProfile", "-NonInteractive", "-Command", script],
            timeout=timeout,
        )
        if result.timed_out:
            raise CommandError(f"PowerShell query timed out after {timeout}s")
        return result.stdout

    def ps_json(self, script: str, *, timeout: float = 30.0) -> list[dict[str, object]]:
        """Run *script* piped into ``ConvertTo-Json`` and return a list of objects."""
        raw = self.powershell(f"{script} | ConvertTo-Json -Compress -Depth 4", timeout=timeout)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CommandError(f"Invalid JSON from PowerShell: {exc}") from exc
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        return []


__all__ = [
    "SHELL_METACHARACTERS",
    "TIMEOUT_EXIT_CODE",
    "CommandError",
    "CommandResult",
    "ShellRunner",
    "UnsafeArgumentError",
    "validate_shell_argument",
]
