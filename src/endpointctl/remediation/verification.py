"""Post-dispatch verification of remediation results."""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

import psutil

from .actions import (
    ActionKind,
    ActionResult,
    ActionStatus,
    ClearCrashDumps,
    ClearPrefetch,
    ClearTempFiles,
    ClearUpdateCache,
    CleanUpgradeLogs,
    DisableFastStartup,
    EmptyRecycleBin,
    InstallDriverUpdates,
    KillProcess,
    LaunchDiskCleanup,
    OptimizationAction,
    ReRegisterComponents,
    RunDism,
    RunSfc,
    ScheduleChkdsk,
    ScheduleMemoryDiagnostic,
    ScheduleRestart,
    SetPowerPlanBalanced,
    StartWuauserv,
    SwitchToPerformanceVisuals,
    VerificationOutcome,
    VerificationStatus,
)
from .procedures import BALANCED_SCHEME_GUID, HKCU, HKLM, POWER_KEY, RemediationHost

LOGGER = logging.getLogger(__name__)

HIBERNATE_KEY = r"SYSTEM\CurrentControlSet\Control\Power"

CHECK_FAILED_MESSAGE = "verification check failed"

_SCHEDULED: frozenset[type[ActionKind]] = frozenset(
    {ScheduleChkdsk, ScheduleMemoryDiagnostic, ScheduleRestart, InstallDriverUpdates}
)
_TRUSTED_BY_EXIT_CODE: frozenset[type[ActionKind]] = frozenset({RunSfc, RunDism, ReRegisterComponents})

Measure = Callable[[RemediationHost], int]
StateCheck = Callable[[OptimizationAction, RemediationHost], bool]


def _sum_sizes(host: RemediationHost, paths: Sequence[Path]) -> int:
    return sum(host.system.folder_size_mb(path) for path in paths)


# kind -> (remaining size in MB, verified when strictly below)
_MEASURED: dict[type[ActionKind], tuple[Measure, int]] = {
    ClearTempFiles: (
        lambda host: _sum_sizes(host, (host.system.user_temp_dir, host.system.windows_temp_dir)),
        100,
    ),
    ClearPrefetch: (lambda host: host.system.folder_size_mb(host.system.prefetch_dir), 50),
    EmptyRecycleBin: (lambda host: host.system.recycle_bin_mb(), 10),
    ClearUpdateCache: (lambda host: host.system.folder_size_mb(host.system.update_download_dir), 50),
    CleanUpgradeLogs: (lambda host: _sum_sizes(host, host.system.upgrade_log_dirs()), 50),
}


def _process_gone(action: OptimizationAction, host: RemediationHost) -> bool:
    kind = action.kind
    if not isinstance(kind, KillProcess):
        return False
    try:
        return host.process_factory(kind.pid).name().lower() != kind.name.lower()
    except psutil.NoSuchProcess:
        return True


def _registry_dword_is_zero(hive: str, subkey: str, name: str) -> StateCheck:
    def _check(action: OptimizationAction, host: RemediationHost) -> bool:
        current = host.registry.read(hive, subkey, name)
        return current is not None and current.value == 0

    return _check


def _wuauserv_running(action: OptimizationAction, host: RemediationHost) -> bool:
    return host.services.query("wuauserv").running


_HIBERBOOT_OFF = _registry_dword_is_zero(HKLM, POWER_KEY, "HiberbootEnabled")
_HIBERNATE_OFF = _registry_dword_is_zero(HKLM, HIBERNATE_KEY, "HibernateEnabled")


def _fast_startup_off(action: OptimizationAction, host: RemediationHost) -> bool:
    # powercfg /hibernate off leaves HiberbootEnabled alone but disables hibernation.
    return _HIBERBOOT_OFF(action, host) or _HIBERNATE_OFF(action, host)


def _crash_dumps_gone(action: OptimizationAction, host: RemediationHost) -> bool:
    system = host.system
    minidump = system.windows_dir / "Minidump"
    return not system.directory_has_files(minidump) and not system.path_exists(system.full_memory_dump)


_STATE_CHECKS: dict[type[ActionKind], StateCheck] = {
    LaunchDiskCleanup: lambda action, host: not host.system.path_exists(host.system.windows_old_dir),
    KillProcess: _process_gone,
    SetPowerPlanBalanced: lambda action, host: host.system.active_power_scheme()[0] == BALANCED_SCHEME_GUID,
    SwitchToPerformanceVisuals: _registry_dword_is_zero(
        HKCU, r"Software\Microsoft\Windows\CurrentVersion\Themes\Personalize", "EnableTransparency"
    ),
    ClearUpdateCache: _wuauserv_running,
    StartWuauserv: _wuauserv_running,
    DisableFastStartup: _fast_startup_off,
    ClearCrashDumps: _crash_dumps_gone,
}


def _verify_one(action: OptimizationAction | None, result: ActionResult, host: RemediationHost) -> VerificationOutcome:
    key = result.key
    if result.status in {ActionStatus.FAILED, ActionStatus.SKIPPED} or action is None:
        return VerificationOutcome(key, VerificationStatus.UNVERIFIED, result.error or result.detail)

    kind_type = type(action.kind)
    if kind_type in _SCHEDULED:
        return VerificationOutcome(key, VerificationStatus.REQUIRES_REBOOT, "takes effect after a restart")

    if kind_type in _TRUSTED_BY_EXIT_CODE:
        if result.exit_code == 0:
            return VerificationOutcome(key, VerificationStatus.TRUSTED, "exit code 0")
        return VerificationOutcome(key, VerificationStatus.UNVERIFIED, f"exit code {result.exit_code}")

    try:
        measured = ""
        if kind_type in _MEASURED:
            measure, threshold = _MEASURED[kind_type]
            remaining = measure(host)
            if remaining >= threshold:
                return VerificationOutcome(
                    key,
                    VerificationStatus.PARTIALLY_VERIFIED,
                    f"{remaining:,} MB remaining (target < {threshold} MB)",
                )
            measured = f"{remaining:,} MB remaining"
            if kind_type not in _STATE_CHECKS:
                return VerificationOutcome(key, VerificationStatus.VERIFIED, measured)
        if kind_type in _STATE_CHECKS:
            confirmed = _STATE_CHECKS[kind_type](action, host)
            detail = f"{measured}; " if measured else ""
            if confirmed:
                return VerificationOutcome(key, VerificationStatus.VERIFIED, f"{detail}state confirmed")
            return VerificationOutcome(key, VerificationStatus.PARTIALLY_VERIFIED, f"{detail}state not confirmed")
    except Exception:
        LOGGER.debug("verification of %s raised", key, exc_info=True)
        return VerificationOutcome(key, VerificationStatus.UNVERIFIED, CHECK_FAILED_MESSAGE)

    if result.status is ActionStatus.SUCCESS:
        return VerificationOutcome(key, VerificationStatus.VERIFIED, "trusted success status")
    return VerificationOutcome(key, VerificationStatus.PARTIALLY_VERIFIED, result.detail)


def verify(
    results: Sequence[ActionResult],
    actions: Sequence[OptimizationAction],
    host: RemediationHost,
) -> list[VerificationOutcome]:
    """Classify each dispatched result by re-checking the machine state."""
    by_key = {action.key: action for action in actions}
    return [_verify_one(by_key.get(result.key), result, host) for result in results]


__all__ = ["CHECK_FAILED_MESSAGE", "verify"]
