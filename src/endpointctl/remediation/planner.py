"""Remediation plan builder.

Maps a :class:`ScanResult` and the cooldown records to an ordered list of
candidate actions. Candidates are generated section by section in a fixed
order, deduplicated by key (first occurrence wins) and then stably sorted by
risk tier, reclaimable space and impact.
"""

from __future__ import annotations

from datetime import datetime

from ..diagnostics.models import ScanResult
from ..diagnostics.utils import format_mb
from .actions import (
    ActionKind,
    ActionRisk,
    ClearBrowserCache,
    ClearCrashDumps,
    ClearPrefetch,
    ClearTempFiles,
    ClearUpdateCache,
    ClearWerReports,
    CleanUpgradeLogs,
    DisableFastStartup,
    EmptyRecycleBin,
    ImpactLevel,
    InstallDriverUpdates,
    KillProcess,
    LaunchDiskCleanup,
    ManualEscalation,
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
    action_type_for,
    estimate_duration,
    impact_for,
    is_protected_process,
)
from .cooldown import CooldownStore

TEMP_THRESHOLD_MB = 500
PREFETCH_THRESHOLD_MB = 128
RECYCLE_BIN_THRESHOLD_MB = 100
UPDATE_CACHE_THRESHOLD_MB = 500
UPGRADE_LOGS_THRESHOLD_MB = 200
BROWSER_CACHE_THRESHOLD_MB = 200
BROWSER_TABS_THRESHOLD = 30
KILL_PROCESS_THRESHOLD_MB = 500
APP_CRASH_THRESHOLD = 5
TOP_CRASHERS = 3

OFFICE_EXECUTABLES = frozenset(
    name.lower()
    for name in (
        "OUTLOOK.EXE",
        "WINWORD.EXE",
        "EXCEL.EXE",
        "POWERPNT.EXE",
        "MSACCESS.EXE",
        "ONENOTE.EXE",
        "MSPUB.EXE",
        "lync.exe",
    )
)

BROWSER_BY_EXECUTABLE = {
    "chrome.exe": "Chrome",
    "msedge.exe": "Microsoft Edge",
    "firefox.exe": "Firefox",
}

POWER_CONFIG_WARNING = "custom power plans will be deleted"

_RISK_TIER = {ActionRisk.SAFE: 0, ActionRisk.MODERATE: 1, ActionRisk.REQUIRES_REBOOT: 2}
_IMPACT_RANK = {ImpactLevel.HIGH: 0, ImpactLevel.MEDIUM: 1, ImpactLevel.LOW: 2}


def format_event_context(
    count: int,
    event_type: str,
    last_fix: datetime | None,
) -> str:
    """Describe *count* events relative to the last remediation, if any."""
    if last_fix is None:
        return f"{count} {event_type}(s) detected"
    local = last_fix.astimezone()
    hour = local.hour % 12 or 12
    return (
        f"{count} new {event_type}(s) since last fix on "
        f"{local:%b %d} at {hour}:{local:%M %p}"
    )


class _PlanBuilder:
    """Accumulates candidates in generation order."""

    def __init__(self, result: ScanResult, cooldown: CooldownStore) -> None:
        self.result = result
        self.cooldown = cooldown
        self.actions: list[OptimizationAction] = []
        self._manual_counts: dict[str, int] = {}

    def add(
        self,
        kind: ActionKind,
        title: str,
        category: str,
        description: str,
        *,
        risk: ActionRisk,
        auto: bool,
        trigger: str = "",
        free_mb: int = 0,
        remediation_category: str | None = None,
        warning: str = "",
    ) -> None:
        self.actions.append(
            OptimizationAction(
                kind=kind,
                title=title,
                category=category,
                description=description,
                risk=risk,
                auto_selected=auto,
                trigger=trigger,
                action_type=action_type_for(kind),
                impact=impact_for(kind),
                estimated_duration=estimate_duration(kind),
                estimated_free_mb=max(0, int(free_mb)),
                remediation_category=remediation_category,
                warning=warning,
            )
        )

    def manual(
        self,
        category: str,
        title: str,
        description: str,
        *,
        risk: ActionRisk = ActionRisk.SAFE,
        trigger: str = "",
    ) -> None:
        index = self._manual_counts.get(category, 0) + 1
        self._manual_counts[category] = index
        self.add(
            ManualEscalation(category=category, index=index),
            title,
            category,
            description,
            risk=risk,
            auto=False,
            trigger=trigger,
        )

    def event_context(self, category: str, count: int, event_type: str) -> str:
        return format_event_context(count, event_type, self.cooldown.last_remediated(category))

    # ------------------------------------------------------------------
    def build(self) -> list[OptimizationAction]:
        self._disk()
        self._browser_cache()
        self._performance()
        self._memory()
        self._browser_tabs()
        self._system()
        self._bsods()
        self._disk_errors()
        self._app_crashes()
        self._shutdowns()
        self._manual_entries()
        return self.actions

    def _disk(self) -> None:
        disk = self.result.disk
        temp = disk.temp_total_mb
        if temp > TEMP_THRESHOLD_MB and disk.temp_has_files:
            self.add(
                ClearTempFiles(),
                "Clear Temporary Files",
                "Disk Cleanup",
                f"Delete Windows and user temp files (~{format_mb(temp)})",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"temp folders hold {format_mb(temp)}",
                free_mb=temp,
            )
        if disk.prefetch_mb > PREFETCH_THRESHOLD_MB and disk.prefetch_has_files:
            self.add(
                ClearPrefetch(),
                "Clear Prefetch Cache",
                "Disk Cleanup",
                f"Delete Windows prefetch data (~{format_mb(disk.prefetch_mb)})",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"prefetch holds {format_mb(disk.prefetch_mb)}",
                free_mb=disk.prefetch_mb,
            )
        if disk.recycle_bin_mb > RECYCLE_BIN_THRESHOLD_MB:
            self.add(
                EmptyRecycleBin(),
                "Empty Recycle Bin",
                "Disk Cleanup",
                f"Permanently delete recycled files ({format_mb(disk.recycle_bin_mb)})",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"recycle bin holds {format_mb(disk.recycle_bin_mb)}",
                free_mb=disk.recycle_bin_mb,
            )
        sd_mb = disk.software_distribution_mb
        if sd_mb > UPDATE_CACHE_THRESHOLD_MB and disk.software_distribution_has_files:
            self.add(
                ClearUpdateCache(),
                "Clear Windows Update Cache",
                "Disk Cleanup",
                f"Stop wuauserv and clear update downloads (~{format_mb(sd_mb)})",
                risk=ActionRisk.MODERATE,
                auto=False,
                trigger=f"update download cache holds {format_mb(sd_mb)}",
                free_mb=sd_mb,
            )
        if disk.windows_old_exists and disk.windows_old_mb > 0:
            self.add(
                LaunchDiskCleanup(),
                "Remove Windows.old",
                "Disk Cleanup",
                f"Delete the previous Windows installation (~{format_mb(disk.windows_old_mb)})",
                risk=ActionRisk.MODERATE,
                auto=False,
                trigger="Windows.old present",
                free_mb=disk.windows_old_mb,
            )
        if disk.upgrade_logs_mb > UPGRADE_LOGS_THRESHOLD_MB:
            self.add(
                CleanUpgradeLogs(),
                "Clean Windows Upgrade Logs",
                "Disk Cleanup",
                "Remove upgrade logs, Panther files and temporary setup data "
                f"(~{format_mb(disk.upgrade_logs_mb)})",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"upgrade logs hold {format_mb(disk.upgrade_logs_mb)}",
                free_mb=disk.upgrade_logs_mb,
            )

    def _browser_cache(self) -> None:
        for browser in self.result.browser.browsers:
            if browser.cache_size_mb > BROWSER_CACHE_THRESHOLD_MB:
                self.add(
                    ClearBrowserCache(browser.name),
                    f"Clear {browser.name} Cache",
                    "Browser",
                    f"Delete browser cache files (~{format_mb(browser.cache_size_mb)})",
                    risk=ActionRisk.SAFE,
                    auto=True,
                    trigger=f"{browser.name} cache holds {format_mb(browser.cache_size_mb)}",
                    free_mb=browser.cache_size_mb,
                )

    def _performance(self) -> None:
        result = self.result
        if result.cpu.load_flagged:
            self.add(
                OpenResourceMonitor(),
                "Open Resource Monitor",
                "CPU",
                f"CPU load is {result.cpu.load_percent:.0f}%; open Resource Monitor to find the cause",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"CPU load {result.cpu.load_percent:.0f}%",
            )
        if "power saver" in result.battery.power_plan.lower():
            self.add(
                SetPowerPlanBalanced(),
                "Switch to Balanced Power Plan",
                "Performance",
                "Power saver mode throttles the CPU; switch to Balanced",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"power plan '{result.battery.power_plan}'",
            )
        visual = result.visual
        if visual.transparency_enabled or visual.animations_enabled:
            self.add(
                SwitchToPerformanceVisuals(),
                "Switch to Performance Visuals",
                "Visual Settings",
                "Disable transparency and animations to reduce CPU/GPU overhead",
                risk=ActionRisk.SAFE,
                auto=False,
                trigger="transparency or animations enabled",
            )

    def _killable_process(self) -> KillProcess | None:
        candidates = [
            proc
            for proc in self.result.ram.top_processes
            if not is_protected_process(proc.name)
        ]
        if not candidates:
            return None
        heaviest = max(candidates, key=lambda proc: proc.memory_mb)
        if heaviest.memory_mb <= KILL_PROCESS_THRESHOLD_MB:
            return None
        return KillProcess(pid=heaviest.pid, name=heaviest.name)

    def _memory(self) -> None:
        ram = self.result.ram
        if not ram.usage_flagged:
            return
        kind = self._killable_process()
        if kind is None:
            return
        memory_mb = next(p.memory_mb for p in ram.top_processes if p.pid == kind.pid)
        self.add(
            kind,
            f"End Memory-Heavy Process: {kind.name}",
            "RAM",
            f"{kind.name} (PID {kind.pid}) is using {format_mb(memory_mb)} of RAM",
            risk=ActionRisk.MODERATE,
            auto=False,
            trigger=f"RAM {ram.percent_used:.0f}% used",
        )

    def _browser_tabs(self) -> None:
        for browser in self.result.browser.browsers:
            if browser.open_tabs > BROWSER_TABS_THRESHOLD:
                self.manual(
                    "Browser",
                    f"Close {browser.name} Tabs",
                    f"{browser.open_tabs} tabs open; excessive tabs consume RAM",
                    trigger=f"{browser.open_tabs} tabs",
                )

    def _system(self) -> None:
        result = self.result
        if result.startup.too_many_flagged:
            self.add(
                OpenTaskManagerStartup(),
                "Open Task Manager (Startup)",
                "Startup",
                f"{result.startup.enabled_count} startup items enabled; review them in Task Manager",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"{result.startup.enabled_count} startup items",
            )
        if result.windows_update.service_disabled:
            self.add(
                StartWuauserv(),
                "Enable Windows Update Service",
                "Windows Update",
                "The Windows Update service is disabled; security patches will not install",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger="wuauserv disabled",
            )
        if result.system.uptime_flagged or result.windows_update.reboot_pending:
            reason = (
                f"System has been running for {result.system.uptime_days} days"
                if result.system.uptime_flagged
                else "Pending updates require a reboot"
            )
            self.add(
                ScheduleRestart(),
                "Schedule System Restart",
                "System",
                reason,
                risk=ActionRisk.REQUIRES_REBOOT,
                auto=False,
                trigger=reason,
            )
        if result.gpu.driver_outdated:
            self.add(
                OpenGpuDriverPage(result.gpu.name),
                "Open GPU Driver Update Page",
                "GPU",
                f"GPU driver dated {result.gpu.driver_date}; open the vendor download page",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=f"driver dated {result.gpu.driver_date}",
            )
        if result.office.installed and result.office.repair_needed:
            self.add(
                OpenAppsSettings(),
                "Launch Office Repair",
                "Office",
                "Open Settings > Apps to repair the Office installation",
                risk=ActionRisk.MODERATE,
                auto=False,
                trigger="Office repair needed",
            )
        if result.antivirus.bitlocker_off:
            self.add(
                OpenBitLocker(),
                "Open BitLocker Settings",
                "Security",
                "The system drive is not encrypted; open BitLocker management",
                risk=ActionRisk.MODERATE,
                auto=False,
                trigger="BitLocker off",
            )

    def _bsods(self) -> None:
        count = len(self.result.event_log.bsods)
        if not count:
            return
        context = self.event_context("BSODs", count, "BSOD")
        if self.cooldown.is_cooling_down("BSODs"):
            self.manual(
                "Event Log",
                "BSODs persist after previous repair",
                f"{context}. Previous automated repairs (SFC, DISM, driver updates) did not "
                "resolve the issue; run hardware diagnostics or reinstall Windows",
                risk=ActionRisk.MODERATE,
                trigger=context,
            )
        else:
            self.add(
                RunSfc(),
                "Run System File Checker",
                "Event Log",
                f"{context}; repair corrupted system files with sfc /scannow",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=context,
                remediation_category="BSODs",
            )
            self.add(
                RunDism(),
                "Run DISM System Image Repair",
                "Event Log",
                "Repair the Windows component store",
                risk=ActionRisk.SAFE,
                auto=True,
                trigger=context,
                remediation_category="BSODs",
            )
            self.add(
                InstallDriverUpdates(),
                "Install Available Driver Updates",
                "Event Log",
                "Faulty drivers are the most common cause of BSODs; rescan for driver updates",
                risk=ActionRisk.MODERATE,
                auto=True,
                trigger=context,
                remediation_category="BSODs",
            )
            self.add(
                ScheduleMemoryDiagnostic(),
                "Schedule Memory Diagnostic",
                "Event Log",
                "Test RAM with Windows Memory Diagnostic on the next reboot",
                risk=ActionRisk.REQUIRES_REBOOT,
                auto=False,
                trigger=context,
                remediation_category="BSODs",
            )
        self.add(
            ClearCrashDumps(),
            "Clear Crash Dump Files",
            "Disk Cleanup",
            "Delete old BSOD memory dumps (minidumps and MEMORY.DMP)",
            risk=ActionRisk.SAFE,
            auto=True,
            trigger=context,
        )

    def _disk_errors(self) -> None:
        count = len(self.result.event_log.disk_errors)
        if not count:
            return
        context = self.event_context("DiskErrors", count, "disk error")
        if self.cooldown.is_cooling_down("DiskErrors"):
            self.manual(
                "Event Log",
                "Disk errors persist after chkdsk",
                f"{context}. The drive may be failing; back up data and plan a replacement",
                risk=ActionRisk.MODERATE,
                trigger=context,
            )
            return
        self.add(
            ScheduleChkdsk(),
            "Schedule Disk Check (chkdsk)",
            "Event Log",
            f"{context}; scan and repair the system drive on the next reboot",
            risk=ActionRisk.REQUIRES_REBOOT,
            auto=False,
            trigger=context,
            remediation_category="DiskErrors",
        )

    def _app_crashes(self) -> None:
        event_log = self.result.event_log
        count = len(event_log.app_crashes)
        if count < APP_CRASH_THRESHOLD:
            return
        context = self.event_context("AppCrashes", count, "app crash")
        top = event_log.top_crashing_apps(TOP_CRASHERS)
        summary = ", ".join(f"{name} ({hits}×)" for name, hits in top)
        office = next((item for item in top if item[0].lower() in OFFICE_EXECUTABLES), None)
        browser = next(
            (BROWSER_BY_EXECUTABLE[name.lower()] for name, _ in top if name.lower() in BROWSER_BY_EXECUTABLE),
            None,
        )

        if self.cooldown.is_cooling_down("AppCrashes"):
            detail = f"{context}. Previous automated repairs did not resolve the issue"
            if summary:
                detail += f"; reinstall or update: {summary}"
            self.manual(
                "Event Log",
                "App crashes persist after previous repair",
                detail,
                trigger=context,
            )
        else:
            targeted = office is not None or browser is not None
            if office is not None:
                self.add(
                    OpenAppsSettings(),
                    "Repair Office Installation",
                    "Event Log",
                    f"{office[0]} crashed {office[1]}×; run Office Online Repair",
                    risk=ActionRisk.MODERATE,
                    auto=True,
                    trigger=context,
                    remediation_category="AppCrashes",
                )
            if browser is not None:
                self.add(
                    ClearBrowserCache(browser),
                    f"Clear {browser} Cache",
                    "Event Log",
                    f"{browser} is crashing; corrupt cache files are a common cause",
                    risk=ActionRisk.SAFE,
                    auto=True,
                    trigger=context,
                    remediation_category="AppCrashes",
                )
            if not event_log.bsods:
                suffix = f" (top: {summary})" if summary else ""
                self.add(
                    RunSfc(),
                    "Run System File Checker",
                    "Event Log",
                    f"{context}{suffix}; repair corrupted system files",
                    risk=ActionRisk.SAFE,
                    auto=not targeted,
                    trigger=context,
                    remediation_category="AppCrashes",
                )
            self.add(
                ReRegisterComponents(),
                "Re-register System Components",
                "Event Log",
                "Repair broken COM/DLL registrations and reset app platforms",
                risk=ActionRisk.SAFE,
                auto=not targeted,
                trigger=context,
                remediation_category="AppCrashes",
            )
        self.add(
            ClearWerReports(),
            "Clear Error Reports",
            "Disk Cleanup",
            "Delete old Windows Error Reporting data and application crash dumps",
            risk=ActionRisk.SAFE,
            auto=True,
            trigger=context,
        )

    def _shutdowns(self) -> None:
        count = len(self.result.event_log.unexpected_shutdowns)
        if not count:
            return
        context = self.event_context("UnexpectedShutdowns", count, "unexpected shutdown")
        if self.cooldown.is_cooling_down("UnexpectedShutdowns"):
            self.manual(
                "Event Log",
                "Unexpected shutdowns persist",
                f"{context}. Fast Startup and power configuration were already repaired; "
                "check the power supply, UPS or overheating",
                trigger=context,
            )
            return
        self.add(
            DisableFastStartup(),
            "Disable Fast Startup",
            "Event Log",
            f"{context}; disable Fast Startup to avoid hibernate-related power issues",
            risk=ActionRisk.SAFE,
            auto=True,
            trigger=context,
            remediation_category="UnexpectedShutdowns",
        )
        self.add(
            RepairPowerConfig(),
            "Repair Power Configuration",
            "Event Log",
            "Reset power plans to defaults and fix wake timer, USB suspend and PCIe settings",
            risk=ActionRisk.SAFE,
            auto=True,
            trigger=context,
            remediation_category="UnexpectedShutdowns",
            warning=POWER_CONFIG_WARNING,
        )

    def _manual_entries(self) -> None:
        result = self.result
        if result.battery.health_flagged:
            self.manual(
                "Battery",
                "Manual Action Required",
                f"Battery holds {result.battery.health_percent:.0f}% of its design capacity; "
                "plan a replacement",
            )
        if result.ram.usage_flagged and self._killable_process() is None:
            self.manual(
                "RAM",
                "Manual Action Required",
                f"Memory usage is {result.ram.percent_used:.0f}% with no single process to end; "
                "close applications or add memory",
                risk=ActionRisk.MODERATE if result.ram.percent_used >= 90 else ActionRisk.SAFE,
            )
        for drive in result.disk.drives:
            if drive.health_status not in {"Healthy", "Unknown"}:
                self.manual(
                    "Disk",
                    "Manual Action Required",
                    f"Drive {drive.letter} health is '{drive.health_status}'; back up data and replace it",
                    risk=ActionRisk.MODERATE,
                )
        if result.user_profile.corruption_detected:
            self.manual(
                "User Profile",
                "Manual Action Required",
                "User profile corruption detected; back up data and rebuild the profile",
                risk=ActionRisk.MODERATE,
            )
        if result.antivirus.no_antivirus:
            self.manual(
                "Security",
                "Manual Action Required",
                "No antivirus product is registered; enable Microsoft Defender",
                risk=ActionRisk.MODERATE,
            )


def dedupe_actions(actions: list[OptimizationAction]) -> list[OptimizationAction]:
    """Drop later candidates whose key was already seen."""
    seen: set[str] = set()
    unique: list[OptimizationAction] = []
    for action in actions:
        if action.key in seen:
            continue
        seen.add(action.key)
        unique.append(action)
    return unique


def order_actions(actions: list[OptimizationAction]) -> list[OptimizationAction]:
    """Stable sort by risk tier, then reclaimable MB, then impact."""
    return sorted(
        actions,
        key=lambda action: (
            _RISK_TIER[action.risk],
            -action.estimated_free_mb,
            _IMPACT_RANK[action.impact],
        ),
    )


def build_plan(result: ScanResult, cooldown: CooldownStore) -> list[OptimizationAction]:
    """Return the ordered remediation plan for *result*."""
    candidates = _PlanBuilder(result, cooldown).build()
    return order_actions(dedupe_actions(candidates))


__all__ = ["build_plan", "dedupe_actions", "format_event_context", "order_actions"]
