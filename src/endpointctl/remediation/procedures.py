"""Procedures that carry out each remediation kind.

Every procedure takes the planned action and a :class:`RemediationHost` and
returns an :class:`ActionResult`. Provider exceptions propagate; the
dispatcher turns them into ``Failed`` results.
"""
from __future__ import annotations

import ctypes
import logging
import os
import stat
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar
from urllib.parse import quote_plus

import psutil

from ..providers.registry import RegistryError, RegistryProvider
from ..providers.services import WindowsServices
from ..providers.shell import TIMEOUT_EXIT_CODE, CommandError, ShellRunner
from ..providers.system import BROWSER_EXECUTABLES, BYTES_PER_MB, SystemQueries
from ..rollback import RollbackJournal
from .actions import (
    ActionKind,
    ActionResult,
    ActionStatus,
    ClearBrowserCache,
    ClearCrashDumps,
    ClearPrefetch,
    ClearTempFiles,
    ClearUpdateCache,
    ClearWerReports,
    CleanUpgradeLogs,
    DisableFastStartup,
    EmptyRecycleBin,
    InstallDriverUpdates,
    KillProcess,
    LaunchDiskCleanup,
    OpenAppsSettings,
    OpenBitLocker,
    OpenGpuDriverPage,
    OpenResourceMonitor,
    OpenTaskManagerStartup,
    OptimizationAction,
    ReRegisterComponents,
    RepairPowerConfig,
    RunDism,
    RunSfc,
    ScheduleChkdsk,
    ScheduleMemoryDiagnostic,
    ScheduleRestart,
    SetPowerPlanBalanced,
    StartWuauserv,
    SwitchToPerformanceVisuals,
    is_protected_process,
)

LOGGER = logging.getLogger(__name__)

HKLM = "HKEY_LOCAL_MACHINE"
HKCU = "HKEY_CURRENT_USER"

BALANCED_SCHEME_GUID = "381b4222-f694-41f0-9685-ff5bb260df2e"

# Timeouts in seconds.
SFC_TIMEOUT = 1200
DISM_TIMEOUT = 2700
CLEANMGR_TIMEOUT = 900
CHKDSK_TIMEOUT = 30
BCDEDIT_TIMEOUT = 15
DEFAULT_COMMAND_TIMEOUT = 600
SERVICE_STOP_TIMEOUT = 30.0
FONT_CACHE_STOP_TIMEOUT = 15.0

VOLUME_CACHES = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\VolumeCaches"
CLEANMGR_HANDLERS = ("Previous Installations", "Temporary Setup Files")
CLEANMGR_STATE_FLAGS = "StateFlags0065"

POWER_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Power"

# (hive, subkey, name, value, kind) written by SwitchToPerformanceVisuals.
PERFORMANCE_VISUALS: tuple[tuple[str, str, str, object, str], ...] = (
    (HKCU, r"Software\Microsoft\Windows\CurrentVersion\Themes\Personalize", "EnableTransparency", 0, "REG_DWORD"),
    (HKCU, r"Control Panel\Desktop\WindowMetrics", "MinAnimate", "0", "REG_SZ"),
    (HKCU, r"Software\Microsoft\Windows\CurrentVersion\Explorer\VisualEffects", "VisualFXSetting", 2, "REG_DWORD"),
    (
        HKCU,
        r"Control Panel\Desktop",
        "UserPreferencesMask",
        bytes([0x90, 0x12, 0x01, 0x80, 0x10, 0x00, 0x00, 0x00]),
        "REG_BINARY",
    ),
)

# (subgroup, setting) pairs zeroed on the Balanced scheme, AC and DC.
POWER_SETTINGS: tuple[tuple[str, str, str], ...] = (
    ("wake timers", "238c9fa8-0aad-41ed-83f4-97be242c8f20", "bd3b718a-0680-4d9d-8ab2-e1d2b4ac806d"),
    ("USB selective suspend", "2a737441-1930-4402-8d77-b2bebba308a3", "48e6b7a6-50f5-4782-a5d4-53bb8f07e226"),
    ("PCIe link-state power management", "501a4d13-42af-4429-9fd1-a8218c268e20", "ee12f906-d277-404b-b6da-e5fa1a576df5"),
)

CORE_LIBRARIES = ("oleaut32.dll", "ole32.dll", "mshtml.dll", "urlmon.dll", "shell32.dll")

GPU_DRIVER_PAGES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("nvidia", "geforce"), "https://www.nvidia.com/Download/index.aspx"),
    (("amd", "radeon"), "https://www.amd.com/en/support"),
    (("intel",), "https://www.intel.com/content/www/us/en/download-center/home.html"),
)

RESTART_MESSAGE = "Scheduled restart by endpointctl"

_STICKY_ATTRIBUTES = (
    stat.FILE_ATTRIBUTE_READONLY | stat.FILE_ATTRIBUTE_HIDDEN | stat.FILE_ATTRIBUTE_SYSTEM
)

Launcher = Callable[[str, str], None]
Procedure = Callable[[OptimizationAction, "RemediationHost"], ActionResult]
KindT = TypeVar("KindT", bound=ActionKind)


def _start_file(target: str, arguments: str = "") -> None:
    starter = getattr(os, "startfile", None)
    if starter is None:
        raise CommandError(f"Cannot open {target}: shell launching is only available on Windows")
    try:
        if arguments:
            starter(target, arguments=arguments)
        else:
            starter(target)
    except OSError as exc:
        raise CommandError(f"Failed to open {target}: {exc}") from exc


@dataclass(slots=True)
class RemediationHost:
    """Providers a dispatch runs against."""

    system: SystemQueries
    runner: ShellRunner
    services: WindowsServices
    registry: RegistryProvider
    journal: RollbackJournal
    delete_workers: int = 4
    launcher: Launcher = field(default=_start_file)
    process_factory: Callable[[int], psutil.Process] = field(default=psutil.Process)


# ---------------------------------------------------------------------------
# File cleanup
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class CleanupStats:
    """Totals of one cleanup pass."""

    deleted: int = 0
    skipped: int = 0
    freed_bytes: int = 0

    @property
    def freed_mb(self) -> int:
        return self.freed_bytes // BYTES_PER_MB


def _clear_attributes(path: Path, info: os.stat_result) -> None:
    attributes = getattr(info, "st_file_attributes", 0)
    if attributes & _STICKY_ATTRIBUTES:
        windll = getattr(ctypes, "windll", None)
        if windll is not None:
            windll.kernel32.SetFileAttributesW(str(path), stat.FILE_ATTRIBUTE_NORMAL)
            return
    if not info.st_mode & stat.S_IWRITE:
        os.chmod(path, info.st_mode | stat.S_IWRITE)


def _delete_file(path: Path) -> int | None:
    """Delete *path* and return its size, or ``None`` when it was skipped."""
    try:
        info = path.lstat()
        _clear_attributes(path, info)
        path.unlink()
    except OSError as exc:
        LOGGER.debug("skipped %s: %s", path, exc)
        return None
    return info.st_size


def _collect(roots: Iterable[Path]) -> tuple[list[Path], list[Path]]:
    files: list[Path] = []
    directories: list[Path] = []
    for root in roots:
        if root.is_file():
            files.append(root)
            continue
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            base = Path(dirpath)
            files.extend(base / name for name in filenames)
            directories.extend(base / name for name in dirnames)
    return files, directories


def clean_paths(roots: Iterable[Path], *, workers: int = 4) -> CleanupStats:
    """Delete every file under *roots* and prune the emptied directories.

    Roots themselves are kept. A root that is a plain file is deleted.
    """
    files, directories = _collect(roots)
    if not files and not directories:
        return CleanupStats()
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        sizes = list(pool.map(_delete_file, files))
    deleted = [size for size in sizes if size is not None]
    for directory in sorted(directories, key=lambda path: len(path.parts), reverse=True):
        try:
            directory.rmdir()
        except OSError:
            continue
    return CleanupStats(
        deleted=len(deleted),
        skipped=len(sizes) - len(deleted),
        freed_bytes=sum(deleted),
    )


def _cleanup_result(action: OptimizationAction, stats: CleanupStats, noun: str) -> ActionResult:
    detail = (
        f"Deleted {stats.deleted:,} {noun} ({stats.freed_mb:,} MB freed), "
        f"{stats.skipped:,} skipped"
    )
    if stats.deleted == 0 and stats.skipped > 0:
        status = ActionStatus.NO_CHANGE
        detail = f"All {stats.skipped:,} {noun} are in use or locked"
    elif stats.deleted == 0:
        status = ActionStatus.NO_CHANGE
        detail = "Nothing to clean"
    elif stats.skipped > 0:
        status = ActionStatus.PARTIAL_SUCCESS
    else:
        status = ActionStatus.SUCCESS
    return ActionResult(
        key=action.key,
        status=status,
        freed_mb=stats.freed_mb,
        deleted_count=stats.deleted,
        skipped_count=stats.skipped,
        detail=detail,
    )


def _command_result(
    action: OptimizationAction,
    exit_code: int,
    what: str,
    *,
    detail: str,
    nonzero_ok: bool = False,
) -> ActionResult:
    if exit_code == TIMEOUT_EXIT_CODE:
        return ActionResult(
            key=action.key,
            status=ActionStatus.FAILED,
            error=f"{what} timed out",
            exit_code=exit_code,
        )
    if exit_code != 0 and not nonzero_ok:
        return ActionResult(
            key=action.key,
            status=ActionStatus.FAILED,
            error=f"{what} failed with exit code {exit_code}",
            exit_code=exit_code,
        )
    if exit_code != 0:
        detail = f"{what} finished with exit code {exit_code}"
    return ActionResult(key=action.key, status=ActionStatus.SUCCESS, detail=detail, exit_code=exit_code)


def _kind(action: OptimizationAction, expected: type[KindT]) -> KindT:
    if not isinstance(action.kind, expected):
        raise TypeError(f"{action.key} is not a {expected.__name__} action")
    return action.kind


# ---------------------------------------------------------------------------
# Disk cleanup
# ---------------------------------------------------------------------------


def clear_temp_files(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    system = host.system
    stats = clean_paths([system.user_temp_dir, system.windows_temp_dir], workers=host.delete_workers)
    return _cleanup_result(action, stats, "temp files")


def clear_prefetch(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    stats = clean_paths([host.system.prefetch_dir], workers=host.delete_workers)
    return _cleanup_result(action, stats, "prefetch files")


def empty_recycle_bin(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    before = host.system.recycle_bin_mb()
    if before == 0:
        return ActionResult(key=action.key, status=ActionStatus.NO_CHANGE, detail="Recycle bin is already empty")
    host.system.empty_recycle_bin()
    after = host.system.recycle_bin_mb()
    freed = max(0, before - after)
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS,
        freed_mb=freed,
        detail=f"Recycle bin emptied ({freed:,} MB freed)",
    )


def clear_update_cache(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Clear the update download cache with ``wuauserv`` stopped."""
    with host.services.stopped("wuauserv", timeout=SERVICE_STOP_TIMEOUT):
        stats = clean_paths([host.system.update_download_dir], workers=host.delete_workers)
    return _cleanup_result(action, stats, "update cache files")


def launch_disk_cleanup(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Remove Windows.old through a staged ``cleanmgr /sagerun`` profile."""
    system = host.system
    target = system.windows_old_dir
    if not system.path_exists(target):
        return ActionResult(key=action.key, status=ActionStatus.NO_CHANGE, detail="Windows.old already removed")
    before = system.folder_size_mb(target)
    drive = str(system.system_drive).rstrip("\\/")

    # Staging flags only live while cleanmgr runs.
    try:
        for handler in CLEANMGR_HANDLERS:
            subkey = f"{VOLUME_CACHES}\\{handler}"
            host.journal.write(HKLM, subkey, CLEANMGR_STATE_FLAGS, 2, "REG_DWORD", action_key=action.key)
        exit_code = host.runner.run_cmd("cleanmgr /d {} /sagerun:65", drive, timeout=CLEANMGR_TIMEOUT)
    finally:
        for outcome in host.journal.restore_action(action.key):
            if not outcome.ok:
                LOGGER.debug("could not reset %s: %s", outcome.entry.location, outcome.message)

    if exit_code == TIMEOUT_EXIT_CODE:
        return _command_result(action, exit_code, "cleanmgr", detail="")
    if not system.path_exists(target):
        return ActionResult(
            key=action.key,
            status=ActionStatus.SUCCESS,
            freed_mb=before,
            detail=f"Windows.old removed via Disk Cleanup ({before:,} MB freed)",
            exit_code=exit_code,
        )
    freed = max(0, before - system.folder_size_mb(target))
    if freed > 0:
        return ActionResult(
            key=action.key,
            status=ActionStatus.PARTIAL_SUCCESS,
            freed_mb=freed,
            detail=f"Partially cleaned ({freed:,} MB freed); finish removal in Settings > System > Storage",
            exit_code=exit_code,
        )
    return ActionResult(
        key=action.key,
        status=ActionStatus.NO_CHANGE,
        detail=f"Disk Cleanup exited with code {exit_code} and Windows.old is unchanged",
        exit_code=exit_code,
    )


def clean_upgrade_logs(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    stats = clean_paths(host.system.upgrade_log_dirs(), workers=host.delete_workers)
    return _cleanup_result(action, stats, "upgrade log files")


def clear_browser_cache(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    kind = _kind(action, ClearBrowserCache)
    stats = clean_paths(host.system.browser_cache_dirs(kind.browser), workers=host.delete_workers)
    result = _cleanup_result(action, stats, f"{kind.browser} cache files")
    executable = BROWSER_EXECUTABLES.get(kind.browser)
    if stats.skipped and executable and host.system.process_count(executable):
        detail = f"{result.detail}; close {kind.browser} to clear locked files"
        return ActionResult(
            key=result.key,
            status=result.status,
            freed_mb=result.freed_mb,
            deleted_count=result.deleted_count,
            skipped_count=result.skipped_count,
            detail=detail,
        )
    return result


def clear_crash_dumps(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    system = host.system
    roots = [*system.crash_dump_dirs(), system.full_memory_dump]
    stats = clean_paths(roots, workers=host.delete_workers)
    return _cleanup_result(action, stats, "crash dump files")


def clear_wer_reports(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    stats = clean_paths(host.system.wer_report_dirs(), workers=host.delete_workers)
    return _cleanup_result(action, stats, "error report files")


# ---------------------------------------------------------------------------
# Performance and settings
# ---------------------------------------------------------------------------


def _launched(action: OptimizationAction, host: RemediationHost, target: str, arguments: str, detail: str) -> ActionResult:
    host.launcher(target, arguments)
    return ActionResult(key=action.key, status=ActionStatus.SUCCESS, detail=detail)


def open_resource_monitor(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    return _launched(
        action,
        host,
        "resmon.exe",
        "",
        "Resource Monitor opened; check the CPU tab for heavy processes",
    )


def open_task_manager_startup(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    return _launched(action, host, "taskmgr.exe", "/7", "Task Manager opened to the Startup tab")


def open_apps_settings(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    return _launched(action, host, "ms-settings:appsfeatures", "", "Apps & Features settings opened")


def open_bitlocker(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    return _launched(
        action,
        host,
        "control.exe",
        "/name Microsoft.BitLockerDriveEncryption",
        "BitLocker Drive Encryption settings opened",
    )


def gpu_driver_url(gpu_name: str) -> str:
    """Return the vendor driver download page for *gpu_name*."""
    lowered = gpu_name.lower()
    for needles, url in GPU_DRIVER_PAGES:
        if any(needle in lowered for needle in needles):
            return url
    query = f"download {gpu_name} driver update" if gpu_name else "download GPU driver update"
    return "https://www.google.com/search?q=" + quote_plus(query)


def open_gpu_driver_page(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    kind = _kind(action, OpenGpuDriverPage)
    url = gpu_driver_url(kind.gpu_name)
    return _launched(action, host, url, "", f"Opened {url}")


def set_power_plan_balanced(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    exit_code = host.runner.run_cmd("powercfg /setactive {}", BALANCED_SCHEME_GUID, timeout=BCDEDIT_TIMEOUT)
    return _command_result(action, exit_code, "powercfg /setactive", detail="Balanced power plan activated")


def switch_to_performance_visuals(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    for hive, subkey, name, value, kind in PERFORMANCE_VISUALS:
        host.journal.write(hive, subkey, name, value, kind, action_key=action.key)
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS,
        detail="Transparency and animations disabled; sign out to apply everywhere",
    )


def kill_process(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Terminate the planned process tree after re-checking the denylist."""
    kind = _kind(action, KillProcess)
    if is_protected_process(kind.name):
        return ActionResult(
            key=action.key,
            status=ActionStatus.FAILED,
            error=f"refusing to terminate protected process {kind.name}",
        )
    try:
        process = host.process_factory(kind.pid)
        actual = process.name()
    except psutil.NoSuchProcess:
        return ActionResult(key=action.key, status=ActionStatus.SUCCESS, detail=f"{kind.name} had already exited")
    if actual.lower() != kind.name.lower():
        return ActionResult(
            key=action.key,
            status=ActionStatus.NO_CHANGE,
            detail=f"PID {kind.pid} now belongs to {actual}; process already exited",
        )
    try:
        tree = [*process.children(recursive=True), process]
    except psutil.NoSuchProcess:
        return ActionResult(key=action.key, status=ActionStatus.SUCCESS, detail=f"{kind.name} had already exited")
    for member in tree:
        try:
            member.kill()
        except psutil.NoSuchProcess:
            continue
    psutil.wait_procs(tree, timeout=5)
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS,
        detail=f"Terminated {kind.name} (PID {kind.pid}) and {len(tree) - 1} child process(es)",
    )


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


def start_wuauserv(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    services = host.services
    state = services.query("wuauserv")
    if state.start_type == "Disabled":
        services.set_start_type("wuauserv", "demand")
    elif state.running:
        return ActionResult(key=action.key, status=ActionStatus.NO_CHANGE, detail="Windows Update service already running")
    services.start("wuauserv")
    services.wait_for("wuauserv", "running", timeout=SERVICE_STOP_TIMEOUT)
    return ActionResult(key=action.key, status=ActionStatus.SUCCESS, detail="Windows Update service enabled and started")


def schedule_restart(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    exit_code = host.runner.run_cmd(f'shutdown /r /t 120 /c "{RESTART_MESSAGE}"')
    return _command_result(action, exit_code, "shutdown", detail="System restart scheduled in 2 minutes")


def run_sfc(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    exit_code = host.runner.run_cmd("sfc /scannow", timeout=SFC_TIMEOUT)
    return _command_result(
        action,
        exit_code,
        "System File Checker",
        detail="System File Checker completed successfully",
        nonzero_ok=True,
    )


def run_dism(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    exit_code = host.runner.run_cmd("DISM /Online /Cleanup-Image /RestoreHealth", timeout=DISM_TIMEOUT)
    return _command_result(
        action,
        exit_code,
        "DISM",
        detail="DISM component store repair completed successfully",
        nonzero_ok=True,
    )


def install_driver_updates(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    runner = host.runner
    runner.run_cmd("pnputil /scan-devices", timeout=DEFAULT_COMMAND_TIMEOUT)
    exit_code = runner.run_cmd("UsoClient StartInstall", timeout=DEFAULT_COMMAND_TIMEOUT)
    if exit_code != 0:
        LOGGER.debug("UsoClient returned %s, falling back to wuauclt", exit_code)
        exit_code = runner.run_cmd("wuauclt /detectnow /updatenow", timeout=DEFAULT_COMMAND_TIMEOUT)
    runner.run_cmd("pnputil /enum-devices /problem", timeout=DEFAULT_COMMAND_TIMEOUT)
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS,
        detail="Driver updates triggered; pending installs finish in the background or after reboot",
        exit_code=exit_code,
    )


def schedule_memory_diagnostic(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    exit_code = host.runner.run_cmd("bcdedit /bootsequence {memdiag}", timeout=BCDEDIT_TIMEOUT)
    return _command_result(
        action,
        exit_code,
        "bcdedit",
        detail="Windows Memory Diagnostic scheduled for the next reboot",
    )


def schedule_chkdsk(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    drive = str(host.system.system_drive).rstrip("\\/")
    exit_code = host.runner.run_cmd("echo Y| chkdsk {} /F /R", drive, timeout=CHKDSK_TIMEOUT)
    if exit_code == TIMEOUT_EXIT_CODE:
        return _command_result(action, exit_code, f"chkdsk scheduling for {drive}", detail="")
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS,
        detail=f"Disk check scheduled for {drive} on the next restart",
        exit_code=exit_code,
    )


def re_register_components(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Repair component registrations, the Store cache and the font cache."""
    runner = host.runner
    system = host.system
    repairs = 0
    failures: list[int] = []

    exit_code = runner.run_cmd("DISM /Online /Cleanup-Image /StartComponentCleanup", timeout=DISM_TIMEOUT)
    if exit_code == 0:
        repairs += 1
    else:
        failures.append(exit_code)

    store_cache = system.local_appdata / "Packages" / "Microsoft.WindowsStore_8wekyb3d8bbwe" / "LocalCache"
    clean_paths([store_cache], workers=host.delete_workers)
    repairs += 1

    font_cache = system.windows_dir / "ServiceProfiles" / "LocalService" / "AppData" / "Local" / "FontCache"
    with host.services.stopped("FontCache", timeout=FONT_CACHE_STOP_TIMEOUT):
        stats = clean_paths([font_cache], workers=host.delete_workers)
    if stats.deleted:
        repairs += 1

    for library in CORE_LIBRARIES:
        exit_code = runner.run_cmd("regsvr32 /s {}", library)
        if exit_code == 0:
            repairs += 1
        else:
            failures.append(exit_code)

    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS if not failures else ActionStatus.PARTIAL_SUCCESS,
        detail=f"Completed {repairs} component repairs; apps should be more stable after reboot",
        exit_code=failures[0] if failures else 0,
    )


def disable_fast_startup(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Turn off Fast Startup, falling back to ``powercfg /hibernate off``."""
    try:
        current = host.registry.read(HKLM, POWER_KEY, "HiberbootEnabled")
        if current is not None and current.value == 0:
            return ActionResult(key=action.key, status=ActionStatus.NO_CHANGE, detail="Fast Startup was already disabled")
        if current is not None:
            host.journal.write(HKLM, POWER_KEY, "HiberbootEnabled", 0, "REG_DWORD", action_key=action.key)
            return ActionResult(
                key=action.key,
                status=ActionStatus.SUCCESS,
                detail="Fast Startup disabled; the next shutdown is a full one",
            )
    except RegistryError as exc:
        LOGGER.debug("registry access failed (%s), using powercfg", exc)
    exit_code = host.runner.run_cmd("powercfg /hibernate off", timeout=BCDEDIT_TIMEOUT)
    return _command_result(
        action,
        exit_code,
        "powercfg /hibernate off",
        detail="Hibernate and Fast Startup disabled via powercfg",
    )


def repair_power_config(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Restore default schemes, activate Balanced and zero flaky power settings."""
    runner = host.runner
    failed: list[str] = []

    restore_code = runner.run_cmd("powercfg /restoredefaultschemes", timeout=BCDEDIT_TIMEOUT)
    if restore_code != 0:
        failed.append("restore default schemes")
    if runner.run_cmd("powercfg /setactive {}", BALANCED_SCHEME_GUID, timeout=BCDEDIT_TIMEOUT) != 0:
        failed.append("activate Balanced")
    for label, subgroup, setting in POWER_SETTINGS:
        codes = [
            runner.run_cmd(
                f"powercfg /{verb} {{}} {{}} {{}} 0",
                BALANCED_SCHEME_GUID,
                subgroup,
                setting,
                timeout=BCDEDIT_TIMEOUT,
            )
            for verb in ("SETACVALUEINDEX", "SETDCVALUEINDEX")
        ]
        if any(code != 0 for code in codes):
            failed.append(f"disable {label}")
    runner.run_cmd("powercfg /setactive {}", BALANCED_SCHEME_GUID, timeout=BCDEDIT_TIMEOUT)

    total = 2 + len(POWER_SETTINGS)
    applied = total - len(failed)
    if applied == 0:
        return ActionResult(
            key=action.key,
            status=ActionStatus.FAILED,
            error="powercfg rejected every power configuration change",
            exit_code=restore_code,
        )
    detail = f"Applied {applied} of {total} power configuration fixes"
    if failed:
        detail += f"; failed: {', '.join(failed)}"
    return ActionResult(
        key=action.key,
        status=ActionStatus.SUCCESS if not failed else ActionStatus.PARTIAL_SUCCESS,
        detail=detail,
        exit_code=restore_code,
    )


PROCEDURES: dict[type[ActionKind], Procedure] = {
    ClearTempFiles: clear_temp_files,
    ClearPrefetch: clear_prefetch,
    EmptyRecycleBin: empty_recycle_bin,
    ClearUpdateCache: clear_update_cache,
    LaunchDiskCleanup: launch_disk_cleanup,
    CleanUpgradeLogs: clean_upgrade_logs,
    ClearBrowserCache: clear_browser_cache,
    ClearCrashDumps: clear_crash_dumps,
    ClearWerReports: clear_wer_reports,
    OpenResourceMonitor: open_resource_monitor,
    SetPowerPlanBalanced: set_power_plan_balanced,
    SwitchToPerformanceVisuals: switch_to_performance_visuals,
    KillProcess: kill_process,
    OpenTaskManagerStartup: open_task_manager_startup,
    StartWuauserv: start_wuauserv,
    ScheduleRestart: schedule_restart,
    OpenGpuDriverPage: open_gpu_driver_page,
    OpenAppsSettings: open_apps_settings,
    OpenBitLocker: open_bitlocker,
    RunSfc: run_sfc,
    RunDism: run_dism,
    InstallDriverUpdates: install_driver_updates,
    ScheduleMemoryDiagnostic: schedule_memory_diagnostic,
    ScheduleChkdsk: schedule_chkdsk,
    ReRegisterComponents: re_register_components,
    DisableFastStartup: disable_fast_startup,
    RepairPowerConfig: repair_power_config,
}


__all__ = [
    "BALANCED_SCHEME_GUID",
    "PROCEDURES",
    "CleanupStats",
    "RemediationHost",
    "clean_paths",
    "gpu_driver_url",
]
