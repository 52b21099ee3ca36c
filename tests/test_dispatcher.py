"""Dispatcher and remediation procedure tests."""
from __future__ import annotations

from pathlib import Path

import psutil
import pytest

from endpointctl.cancellation import CancellationToken
from endpointctl.remediation import ActionStatus, CooldownStore, RemediationHost, dispatch
from endpointctl.remediation import procedures
from endpointctl.remediation.actions import (
    ClearTempFiles,
    ClearUpdateCache,
    DisableFastStartup,
    KillProcess,
    LaunchDiskCleanup,
    ManualEscalation,
    RunSfc,
    ScheduleChkdsk,
    StartWuauserv,
    SwitchToPerformanceVisuals,
)
from endpointctl.remediation.dispatcher import run_action
from endpointctl.state import StateRegistry, StateRegistryError
from tests.conftest import (
    HKCU,
    HKLM,
    FakeProcess,
    FakeRegistry,
    FakeRunner,
    FakeServices,
    FakeSystem,
    make_action,
    write_files,
)


def test_clear_temp_files_then_nothing_left(host: RemediationHost, system: FakeSystem) -> None:
    """A second run over emptied temp folders reports NoChange."""
    write_files(system.user_temp_dir, 3)
    write_files(system.windows_temp_dir / "nested", 2)
    action = make_action(ClearTempFiles())

    first = run_action(action, host)
    second = run_action(action, host)

    assert first.status is ActionStatus.SUCCESS
    assert first.deleted_count == 5
    assert first.skipped_count == 0
    assert system.user_temp_dir.is_dir()
    assert not (system.windows_temp_dir / "nested").exists()
    assert second.status is ActionStatus.NO_CHANGE
    assert second.detail == "Nothing to clean"


def test_locked_files_make_partial_success(
    host: RemediationHost,
    system: FakeSystem,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    paths = write_files(system.user_temp_dir, 3)
    locked = paths[0]
    original_unlink = Path.unlink

    def unlink(self: Path, missing_ok: bool = False) -> None:
        if self == locked:
            raise PermissionError("in use")
        original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", unlink)

    result = run_action(make_action(ClearTempFiles()), host)

    assert result.status is ActionStatus.PARTIAL_SUCCESS
    assert (result.deleted_count, result.skipped_count) == (2, 1)
    assert locked.exists()


def test_update_cache_restarts_service_even_on_failure(
    host: RemediationHost,
    services: FakeServices,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """wuauserv is started again whether or not the cleanup succeeded."""

    def explode(*args: object, **kwargs: object) -> None:
        raise OSError("disk removed")

    monkeypatch.setattr(procedures, "clean_paths", explode)

    result = run_action(make_action(ClearUpdateCache()), host)

    assert result.status is ActionStatus.FAILED
    assert "disk removed" in result.error
    assert services.events == [("stop", "wuauserv"), ("start", "wuauserv")]
    assert services.query("wuauserv").running


def test_update_cache_success(host: RemediationHost, system: FakeSystem, services: FakeServices) -> None:
    write_files(system.update_download_dir / "abc123", 4)

    result = run_action(make_action(ClearUpdateCache()), host)

    assert result.status is ActionStatus.SUCCESS
    assert result.deleted_count == 4
    assert services.events[-1] == ("start", "wuauserv")


def test_unsafe_argument_fails_without_running_anything(
    tmp_path: Path,
    runner: FakeRunner,
    registry: FakeRegistry,
    services: FakeServices,
    host: RemediationHost,
) -> None:
    """Metacharacters in an interpolated value abort the action."""
    host.system = FakeSystem(tmp_path / "evil&calc", runner, registry, services)

    result = run_action(make_action(ScheduleChkdsk()), host)

    assert result.status is ActionStatus.FAILED
    assert result.error.startswith("unsafe argument")
    assert runner.command_lines() == []


def test_run_sfc_nonzero_exit_is_reported_as_success(host: RemediationHost, runner: FakeRunner) -> None:
    runner.exit_codes["sfc /scannow"] = 1

    result = run_action(make_action(RunSfc()), host)

    assert result.status is ActionStatus.SUCCESS
    assert result.exit_code == 1
    assert "exit code 1" in result.detail


def test_timeout_is_a_failure(host: RemediationHost, runner: FakeRunner) -> None:
    runner.exit_codes["sfc /scannow"] = -1

    result = run_action(make_action(RunSfc()), host)

    assert result.status is ActionStatus.FAILED
    assert result.error == "System File Checker timed out"


def test_manual_entries_are_skipped(host: RemediationHost) -> None:
    result = run_action(make_action(ManualEscalation("Battery", 1)), host)
    assert result.status is ActionStatus.SKIPPED
    assert result.key == "Manual:Battery:1"


def test_cooldown_recorded_only_for_successful_actions(
    host: RemediationHost,
    runner: FakeRunner,
    state: StateRegistry,
) -> None:
    runner.exit_codes["chkdsk"] = -1
    store = CooldownStore(state)
    actions = [
        make_action(RunSfc(), remediation_category="BSODs"),
        make_action(ScheduleChkdsk(), remediation_category="DiskErrors"),
    ]

    results = dispatch(actions, host, cooldown=store)

    assert [result.status for result in results] == [ActionStatus.SUCCESS, ActionStatus.FAILED]
    assert set(store.records()) == {"BSODs"}


def test_cancellation_skips_remaining_actions(host: RemediationHost, runner: FakeRunner) -> None:
    token = CancellationToken()
    seen: list[str] = []

    def on_result(action: object, result: object) -> None:
        seen.append(result.key)  # type: ignore[attr-defined]
        token.cancel()

    actions = [make_action(RunSfc()), make_action(ScheduleChkdsk()), make_action(ClearTempFiles())]

    results = dispatch(actions, host, token, on_result=on_result)

    assert [result.status for result in results] == [
        ActionStatus.SUCCESS,
        ActionStatus.SKIPPED,
        ActionStatus.SKIPPED,
    ]
    assert results[1].detail == "cancelled"
    assert runner.command_lines() == ["sfc /scannow"]
    assert seen == ["RunSfc", "ScheduleChkdsk", "ClearTempFiles"]


def test_cancel_during_a_command_lets_it_finish(
    host: RemediationHost,
    runner: FakeRunner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A running external process is not interrupted; only later actions are skipped."""
    token = CancellationToken()
    finished: list[str] = []
    original_run = runner.run

    def run(args, **kwargs):  # type: ignore[no-untyped-def]
        token.cancel()
        result = original_run(args, **kwargs)
        finished.append(" ".join(args))
        return result

    monkeypatch.setattr(runner, "run", run)
    runner.exit_codes["sfc /scannow"] = 1
    actions = [make_action(RunSfc()), make_action(ScheduleChkdsk()), make_action(ClearTempFiles())]

    results = dispatch(actions, host, token)

    assert results[0].status is ActionStatus.SUCCESS
    assert results[0].exit_code == 1
    assert [(result.status, result.detail) for result in results[1:]] == [
        (ActionStatus.SKIPPED, "cancelled"),
        (ActionStatus.SKIPPED, "cancelled"),
    ]
    assert finished == ["cmd.exe /C sfc /scannow"]
    assert runner.command_lines() == ["sfc /scannow"]


def test_cooldown_write_failure_keeps_results(
    host: RemediationHost,
    state: StateRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def refuse(self: StateRegistry, name: str, payload: object) -> None:
        raise StateRegistryError("disk full")

    monkeypatch.setattr(StateRegistry, "write", refuse)
    store = CooldownStore(state)

    results = dispatch([make_action(RunSfc(), remediation_category="BSODs")], host, None, store)

    assert [result.status for result in results] == [ActionStatus.SUCCESS]
    assert store.records() == {}


def test_kill_process_terminates_tree(host: RemediationHost, monkeypatch: pytest.MonkeyPatch) -> None:
    child = FakeProcess(101, "Teams.exe")
    parent = FakeProcess(100, "Teams.exe", children=[child])
    host.process_factory = lambda pid: parent  # type: ignore[assignment,return-value]
    monkeypatch.setattr(psutil, "wait_procs", lambda procs, timeout=None: (list(procs), []))

    result = run_action(make_action(KillProcess(100, "Teams.exe")), host)

    assert result.status is ActionStatus.SUCCESS
    assert parent.killed and child.killed
    assert "1 child process" in result.detail


def test_kill_process_guards(host: RemediationHost) -> None:
    """Protected names are refused; a recycled PID is left alone."""
    protected = run_action(make_action(KillProcess(4, "csrss.exe")), host)
    recycled = run_action(make_action(KillProcess(200, "Teams.exe")), host)

    assert protected.status is ActionStatus.FAILED
    assert "protected" in protected.error
    assert recycled.status is ActionStatus.NO_CHANGE
    assert "gone.exe" in recycled.detail


def test_kill_process_already_exited(host: RemediationHost) -> None:
    def missing(pid: int) -> psutil.Process:
        raise psutil.NoSuchProcess(pid)

    host.process_factory = missing

    result = run_action(make_action(KillProcess(300, "Teams.exe")), host)

    assert result.status is ActionStatus.SUCCESS
    assert "already exited" in result.detail


def test_start_wuauserv_enables_disabled_service(host: RemediationHost, services: FakeServices) -> None:
    services.set_start_type("wuauserv", "disabled")
    services.stop("wuauserv")
    services.events.clear()

    result = run_action(make_action(StartWuauserv()), host)

    assert result.status is ActionStatus.SUCCESS
    assert services.events == [("config", "wuauserv=demand"), ("start", "wuauserv")]
    assert run_action(make_action(StartWuauserv()), host).status is ActionStatus.NO_CHANGE


def test_disable_fast_startup_journals_registry_change(
    host: RemediationHost,
    registry: FakeRegistry,
) -> None:
    registry.set(HKLM, procedures.POWER_KEY, "HiberbootEnabled", 1)

    result = run_action(make_action(DisableFastStartup()), host)

    assert result.status is ActionStatus.SUCCESS
    assert registry.read(HKLM, procedures.POWER_KEY, "HiberbootEnabled").value == 0  # type: ignore[union-attr]
    (entry,) = host.journal.entries()
    assert entry.existed is True
    assert entry.value == 1
    assert entry.action_key == "DisableFastStartup"
    assert run_action(make_action(DisableFastStartup()), host).status is ActionStatus.NO_CHANGE


def test_disable_fast_startup_falls_back_to_powercfg(host: RemediationHost, runner: FakeRunner) -> None:
    result = run_action(make_action(DisableFastStartup()), host)

    assert result.status is ActionStatus.SUCCESS
    assert runner.command_lines() == ["powercfg /hibernate off"]


def test_performance_visuals_are_reversible(host: RemediationHost, registry: FakeRegistry) -> None:
    result = run_action(make_action(SwitchToPerformanceVisuals()), host)

    assert result.status is ActionStatus.SUCCESS
    assert registry.read(HKCU, r"Control Panel\Desktop", "UserPreferencesMask") is not None
    entries = {entry.name: entry for entry in host.journal.entries()}
    assert set(entries) == {"EnableTransparency", "MinAnimate", "VisualFXSetting", "UserPreferencesMask"}
    assert entries["EnableTransparency"].existed is True
    assert entries["UserPreferencesMask"].existed is False


def test_disk_cleanup_removes_staging_flags(
    host: RemediationHost,
    system: FakeSystem,
    registry: FakeRegistry,
    runner: FakeRunner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Staged cleanmgr flags are reset and leave nothing in the journal."""
    write_files(system.windows_old_dir, 1)
    first_handler = f"{procedures.VOLUME_CACHES}\\{procedures.CLEANMGR_HANDLERS[0]}"
    registry.set(HKLM, first_handler, procedures.CLEANMGR_STATE_FLAGS, 7)
    host.journal.write(HKCU, r"Control Panel\Desktop", "UserPreferencesMask", b"\x90", "REG_BINARY")
    staged_during_run: list[int] = []
    original_run = runner.run

    def run(args, **kwargs):  # type: ignore[no-untyped-def]
        staged_during_run.append(
            sum(1 for key in registry.values if key[2] == procedures.CLEANMGR_STATE_FLAGS)
        )
        return original_run(args, **kwargs)

    monkeypatch.setattr(runner, "run", run)

    result = run_action(make_action(LaunchDiskCleanup()), host)

    assert result.status is ActionStatus.NO_CHANGE
    (line,) = runner.command_lines()
    assert line.startswith("cleanmgr /d ") and line.endswith(" /sagerun:65")
    assert staged_during_run == [len(procedures.CLEANMGR_HANDLERS)]
    flags = {
        key: value.value for key, value in registry.values.items() if key[2] == procedures.CLEANMGR_STATE_FLAGS
    }
    assert flags == {(HKLM, first_handler, procedures.CLEANMGR_STATE_FLAGS): 7}
    assert [entry.name for entry in host.journal.entries()] == ["UserPreferencesMask"]


def test_disk_cleanup_without_windows_old(host: RemediationHost, runner: FakeRunner) -> None:
    result = run_action(make_action(LaunchDiskCleanup()), host)

    assert result.status is ActionStatus.NO_CHANGE
    assert runner.calls == []


@pytest.mark.parametrize(
    ("gpu", "fragment"),
    [
        ("NVIDIA GeForce RTX 3060", "nvidia.com"),
        ("AMD Radeon RX 6600", "amd.com"),
        ("Intel(R) UHD Graphics 620", "intel.com"),
        ("Matrox G200eW", "google.com/search?q=download+Matrox"),
    ],
)
def test_gpu_driver_url(gpu: str, fragment: str) -> None:
    assert fragment in procedures.gpu_driver_url(gpu)
