"""Probe registration and the per-domain diagnostic probes."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from ..providers.services import ServiceError
from ..providers.shell import CommandError
from ..providers.system import BROWSER_EXECUTABLES, parse_ps_datetime
from .models import (
    PROBE_ORDER,
    AntivirusDiagnostics,
    BatteryDiagnostics,
    BrowserDiagnostics,
    BrowserInfo,
    CpuDiagnostics,
    DiskDiagnostics,
    DomainResult,
    DriveInfo,
    EventLogDiagnostics,
    EventLogEntry,
    GpuDiagnostics,
    InstalledApp,
    InstalledSoftwareDiagnostics,
    Issue,
    NetworkDiagnostics,
    NetworkDriveDiagnostics,
    NetworkDriveInfo,
    OfficeDiagnostics,
    OutlookDataFile,
    OutlookDiagnostics,
    ProbeContext,
    ProbeDefinition,
    ProbeId,
    ProcessInfo,
    RamDiagnostics,
    Severity,
    StartupDiagnostics,
    StartupEntry,
    SystemOverview,
    ThroughputDiagnostics,
    UserProfileDiagnostics,
    VisualSettingsDiagnostics,
    WindowsUpdateDiagnostics,
)

LOGGER = logging.getLogger(__name__)

# Thresholds
UPTIME_FLAG_DAYS = 7
CPU_LOAD_FLAG = 50.0
CPU_LOAD_CRITICAL = 80.0
CPU_TEMP_FLAG_C = 85.0
CPU_TEMP_THROTTLE_C = 95.0
RAM_FLAG_PERCENT = 80.0
RAM_CRITICAL_PERCENT = 90.0
RAM_MINIMUM_MB = 8 * 1024
DRIVE_FLAG_PERCENT = 90.0
BATTERY_FLAG_PERCENT = 60.0
STARTUP_FLAG_COUNT = 15
PING_FLAG_MS = 100.0
THROUGHPUT_FLAG_MBPS = 10.0
NETWORK_DRIVE_LATENCY_FLAG_MS = 200
NETWORK_DRIVE_FREE_FLAG_PERCENT = 10.0
OUTLOOK_FILE_FLAG_MB = 10 * 1024
DESKTOP_ITEMS_FLAG = 50
GPU_DRIVER_MAX_AGE_DAYS = 365
APP_CRASH_FLAG_COUNT = 5
BROWSER_TAB_FLAG = 30
BROWSER_CACHE_FLAG_MB = 200
# Browser helper processes (browser, GPU, network, storage) that are not tabs.
BROWSER_HELPER_PROCESSES = 4

# Probes that only touch psutil, the registry or the local filesystem.
FAST_PROBES = frozenset({"cpu", "ram", "visual", "outlook", "office", "software"})
# Probes with their own budget regardless of the fast/slow split.
EXPLICIT_TIMEOUTS: dict[str, float] = {"event_log": 60.0, "throughput": 45.0}
OPT_IN_PROBES = frozenset({"throughput"})

VPN_KEYWORDS = (
    "vpn",
    "tap-windows",
    "wireguard",
    "anyconnect",
    "globalprotect",
    "fortinet",
    "openvpn",
    "pangp",
    "zscaler",
)

EOL_SOFTWARE = (
    "Adobe Flash Player",
    "Microsoft Silverlight",
    "QuickTime",
    "Java 6",
    "Java 7",
    "Microsoft Office 2010",
    "Microsoft Office 2013",
    "Python 2.",
    "Internet Explorer",
)

BLOATWARE = (
    "WildTangent",
    "Candy Crush",
    "Booking.com",
    "McAfee WebAdvisor",
    "Norton Security Scan",
    "CyberLink Power2Go",
    "Dropbox Promotion",
    "HP JumpStart",
)

VISUAL_EFFECTS_LABELS = {
    0: "Let Windows choose",
    1: "Best appearance",
    2: "Best performance",
    3: "Custom",
}

BSOD_EVENT_IDS = (1001,)
BSOD_PROVIDERS = ("Microsoft-Windows-WER-SystemErrorReporting", "BugCheck")
SHUTDOWN_EVENT_IDS = (41, 6008)
DISK_ERROR_EVENT_IDS = (7, 11, 51, 55, 153)
DISK_ERROR_PROVIDERS = ("disk", "Ntfs", "stornvme", "storahci")
APP_CRASH_EVENT_IDS = (1000, 1002)
APP_CRASH_PROVIDERS = ("Application Error", "Application Hang")

HKLM = "HKEY_LOCAL_MACHINE"
HKCU = "HKEY_CURRENT_USER"
APP_PATHS = r"SOFTWARE\Microsoft\Windows\CurrentVersion\App Paths"


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return every probe in fixed domain order with its resolved timeout."""
    handlers: dict[str, Callable[[ProbeContext], DomainResult]] = {
        "system": probe_system,
        "cpu": probe_cpu,
        "ram": probe_ram,
        "disk": probe_disk,
        "battery": probe_battery,
        "startup": probe_startup,
        "visual": probe_visual,
        "antivirus": probe_antivirus,
        "windows_update": probe_windows_update,
        "network": probe_network,
        "throughput": probe_throughput,
        "network_drives": probe_network_drives,
        "outlook": probe_outlook,
        "browser": probe_browser,
        "user_profile": probe_user_profile,
        "office": probe_office,
        "software": probe_software,
        "gpu": probe_gpu,
        "event_log": probe_event_log,
    }
    return tuple(
        _make_probe(probe_id, handlers[probe_id], resolve_timeout(context, probe_id))
        for probe_id in PROBE_ORDER
    )


def resolve_timeout(context: ProbeContext, probe_id: str) -> float:
    """Return the timeout budget for *probe_id* under the current config."""
    config = context.config
    if probe_id in config.probe_timeouts:
        return float(config.probe_timeouts[probe_id])
    if probe_id in EXPLICIT_TIMEOUTS:
        return EXPLICIT_TIMEOUTS[probe_id]
    if probe_id in FAST_PROBES:
        return config.fast_timeout
    return config.slow_timeout


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: ProbeId,
    handler: Callable[[ProbeContext], DomainResult],
    timeout: float,
) -> ProbeDefinition:
    def _runner(context: ProbeContext) -> DomainResult:
        return handler(context)

    return ProbeDefinition(
        id=probe_id,
        run=_runner,
        timeout=timeout,
        opt_in=probe_id in OPT_IN_PROBES,
    )


def _issue(
    category: str,
    severity: Severity,
    message: str,
    recommendation: str = "",
    magnitude: float | None = None,
) -> Issue:
    return Issue(
        category=category,
        severity=severity,
        message=message,
        recommendation=recommendation,
        magnitude=magnitude,
    )


def _first(rows: list[dict[str, Any]]) -> dict[str, Any]:
    return rows[0] if rows else {}


def _int(value: object) -> int:
    try:
        return int(float(str(value)))
    except (TypeError, ValueError):
        return 0


def _processes(rows: list[dict[str, Any]]) -> tuple[ProcessInfo, ...]:
    return tuple(
        ProcessInfo(name=str(row["name"]), pid=int(row["pid"]), memory_mb=int(row.get("memory_mb", 0)))
        for row in rows
    )


def _matches_any(name: str, patterns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


def probe_system(context: ProbeContext) -> SystemOverview:
    """Identify the host and measure uptime."""
    system = context.system
    computer = _first(system.cim("Win32_ComputerSystem", properties="Name, Manufacturer, Model"))
    os_info = _first(system.cim("Win32_OperatingSystem", properties="Caption, BuildNumber"))
    cpu = _first(system.cim("Win32_Processor", properties="Name"))
    total_ram_mb, _used, _available, _percent = system.virtual_memory()
    uptime = max(0.0, time.time() - system.boot_time())
    flagged = uptime > UPTIME_FLAG_DAYS * 86400
    issues: list[Issue] = []
    if flagged:
        days = int(uptime // 86400)
        issues.append(
            _issue(
                "System",
                Severity.WARNING,
                f"System has not been restarted in {days} days",
                "Restart the computer to apply updates and clear leaked resources.",
                magnitude=days,
            )
        )
    return SystemOverview(
        computer_name=str(computer.get("Name") or ""),
        manufacturer=str(computer.get("Manufacturer") or ""),
        model=str(computer.get("Model") or ""),
        windows_version=str(os_info.get("Caption") or ""),
        windows_build=str(os_info.get("BuildNumber") or ""),
        cpu_model=str(cpu.get("Name") or "").strip(),
        total_ram_mb=total_ram_mb,
        uptime_seconds=uptime,
        uptime_flagged=flagged,
        issues=tuple(issues),
    )


def probe_cpu(context: ProbeContext) -> CpuDiagnostics:
    """Sample CPU load and read the thermal zone where exposed."""
    system = context.system
    load = system.cpu_percent(context.config.cpu_samples)
    try:
        temperature = system.thermal_zone_celsius()
    except CommandError as exc:
        LOGGER.debug("thermal zone unavailable: %s", exc)
        temperature = None
    top = _processes(system.top_processes(by="cpu", limit=5))

    issues: list[Issue] = []
    load_flagged = load > CPU_LOAD_FLAG
    if load_flagged:
        issues.append(
            _issue(
                "CPU",
                Severity.CRITICAL if load >= CPU_LOAD_CRITICAL else Severity.WARNING,
                f"CPU load is {load:.0f}%",
                "Review the busiest processes in Resource Monitor.",
                magnitude=load,
            )
        )
    temp_flagged = temperature is not None and temperature >= CPU_TEMP_FLAG_C
    throttling = temperature is not None and temperature >= CPU_TEMP_THROTTLE_C
    if temp_flagged:
        issues.append(
            _issue(
                "CPU",
                Severity.CRITICAL if throttling else Severity.WARNING,
                f"CPU temperature is {temperature:.0f} °C",
                "Check cooling: clean vents and confirm the fans spin.",
                magnitude=temperature,
            )
        )
    return CpuDiagnostics(
        load_percent=load,
        load_flagged=load_flagged,
        temperature_c=temperature,
        temperature_flagged=temp_flagged,
        throttling=throttling,
        top_processes=top,
        issues=tuple(issues),
    )


def probe_ram(context: ProbeContext) -> RamDiagnostics:
    """Measure physical memory pressure."""
    system = context.system
    total, used, available, percent = system.virtual_memory()
    top = _processes(system.top_processes(by="memory", limit=5))
    issues: list[Issue] = []
    flagged = percent >= RAM_FLAG_PERCENT
    if flagged:
        issues.append(
            _issue(
                "RAM",
                Severity.CRITICAL if percent >= RAM_CRITICAL_PERCENT else Severity.WARNING,
                f"Memory usage is {percent:.0f}%",
                "Close unused applications or browser tabs.",
                magnitude=percent,
            )
        )
    insufficient = 0 < total < RAM_MINIMUM_MB
    if insufficient:
        issues.append(
            _issue(
                "RAM",
                Severity.INFO,
                f"Only {total} MB of RAM installed",
                "Consider a memory upgrade to at least 8 GB.",
                magnitude=total,
            )
        )
    return RamDiagnostics(
        total_mb=total,
        used_mb=used,
        available_mb=available,
        percent_used=percent,
        usage_flagged=flagged,
        insufficient=insufficient,
        top_processes=top,
        issues=tuple(issues),
    )


def probe_disk(context: ProbeContext) -> DiskDiagnostics:
    """Measure drive capacity and the reclaimable locations."""
    system = context.system
    try:
        health = system.physical_disk_health()
    except CommandError as exc:
        LOGGER.debug("physical disk health unavailable: %s", exc)
        health = []

    drives: list[DriveInfo] = []
    issues: list[Issue] = []
    for index, raw in enumerate(system.fixed_drives()):
        status = health[index] if index < len(health) else "Unknown"
        drive = DriveInfo(
            letter=str(raw["letter"]),
            total_mb=int(raw["total_mb"]),
            used_mb=int(raw["used_mb"]),
            free_mb=int(raw["free_mb"]),
            percent_used=float(raw["percent_used"]),
            usage_flagged=float(raw["percent_used"]) >= DRIVE_FLAG_PERCENT,
            health_status=status,
            drive_type="Fixed",
        )
        drives.append(drive)
        if drive.usage_flagged:
            issues.append(
                _issue(
                    "Disk",
                    Severity.CRITICAL,
                    f"Drive {drive.letter} is {drive.percent_used:.0f}% full",
                    "Free space by clearing temporary files and caches.",
                    magnitude=drive.percent_used,
                )
            )
        if status not in {"Healthy", "Unknown"}:
            issues.append(
                _issue(
                    "Disk",
                    Severity.CRITICAL,
                    f"Drive {drive.letter} reports health '{status}'",
                    "Back up data and replace the drive.",
                )
            )

    windows_old = system.windows_old_dir
    windows_old_exists = system.path_exists(windows_old)
    try:
        recycle_bin_mb = system.recycle_bin_mb()
    except OSError as exc:
        LOGGER.debug("recycle bin size unavailable: %s", exc)
        recycle_bin_mb = 0
    return DiskDiagnostics(
        drives=tuple(drives),
        windows_temp_mb=system.folder_size_mb(system.windows_temp_dir),
        user_temp_mb=system.folder_size_mb(system.user_temp_dir),
        temp_has_files=system.directory_has_files(system.user_temp_dir)
        or system.directory_has_files(system.windows_temp_dir),
        software_distribution_mb=system.folder_size_mb(system.update_download_dir),
        software_distribution_has_files=system.directory_has_files(system.update_download_dir),
        windows_old_exists=windows_old_exists,
        windows_old_mb=system.folder_size_mb(windows_old) if windows_old_exists else 0,
        upgrade_logs_mb=sum(system.folder_size_mb(path) for path in system.upgrade_log_dirs()),
        recycle_bin_mb=recycle_bin_mb,
        prefetch_mb=system.folder_size_mb(system.prefetch_dir),
        prefetch_has_files=system.directory_has_files(system.prefetch_dir),
        issues=tuple(issues),
    )


def probe_battery(context: ProbeContext) -> BatteryDiagnostics:
    """Read battery wear and the active power plan."""
    system = context.system
    _guid, plan = system.active_power_scheme()
    battery = system.battery()
    issues: list[Issue] = []
    if battery is None:
        return BatteryDiagnostics(has_battery=False, power_source="AC", power_plan=plan)

    design, full = system.battery_capacity()
    health = round(full / design * 100, 1) if design > 0 else 0.0
    flagged = design > 0 and health < BATTERY_FLAG_PERCENT
    if flagged:
        issues.append(
            _issue(
                "Battery",
                Severity.WARNING,
                f"Battery holds {health:.0f}% of its design capacity",
                "Plan a battery replacement.",
                magnitude=health,
            )
        )
    return BatteryDiagnostics(
        has_battery=True,
        design_capacity_mwh=design,
        full_charge_capacity_mwh=full,
        health_percent=health,
        health_flagged=flagged,
        power_source="AC" if battery.get("plugged") else "Battery",
        power_plan=plan,
        issues=tuple(issues),
    )


def probe_startup(context: ProbeContext) -> StartupDiagnostics:
    """Count enabled startup entries."""
    entries = tuple(
        StartupEntry(name=row["name"], publisher=row.get("command", ""), enabled=bool(row["enabled"]))
        for row in context.system.startup_entries()
    )
    enabled = sum(1 for entry in entries if entry.enabled)
    flagged = enabled > STARTUP_FLAG_COUNT
    issues: tuple[Issue, ...] = ()
    if flagged:
        issues = (
            _issue(
                "Startup",
                Severity.WARNING,
                f"{enabled} programs start with Windows",
                "Disable unneeded entries in Task Manager > Startup.",
                magnitude=enabled,
            ),
        )
    return StartupDiagnostics(
        entries=entries,
        enabled_count=enabled,
        too_many_flagged=flagged,
        issues=issues,
    )


def probe_visual(context: ProbeContext) -> VisualSettingsDiagnostics:
    """Read visual effect preferences for the current user."""
    registry = context.system.registry
    fx = registry.read(
        HKCU, r"Software\Microsoft\Windows\CurrentVersion\Explorer\VisualEffects", "VisualFXSetting"
    )
    transparency = registry.read(
        HKCU, r"Software\Microsoft\Windows\CurrentVersion\Themes\Personalize", "EnableTransparency"
    )
    animate = registry.read(HKCU, r"Control Panel\Desktop\WindowMetrics", "MinAnimate")
    setting = VISUAL_EFFECTS_LABELS.get(_int(fx.value), "Unknown") if fx else "Let Windows choose"
    transparency_on = transparency is None or _int(transparency.value) != 0
    animations_on = animate is None or str(animate.value) != "0"
    issues: tuple[Issue, ...] = ()
    if transparency_on or animations_on:
        issues = (
            _issue(
                "Visual",
                Severity.INFO,
                "Transparency or animations are enabled",
                "Switch to 'Adjust for best performance' on low-end hardware.",
            ),
        )
    return VisualSettingsDiagnostics(
        visual_effects_setting=setting,
        transparency_enabled=transparency_on,
        animations_enabled=animations_on,
        issues=issues,
    )


def probe_antivirus(context: ProbeContext) -> AntivirusDiagnostics:
    """List registered antivirus products and the BitLocker state."""
    system = context.system
    rows = system.cim("AntiVirusProduct", properties="displayName", namespace="root/SecurityCenter2")
    products = tuple(str(row["displayName"]) for row in rows if row.get("displayName"))
    bitlocker = system.bitlocker_protection()
    issues: list[Issue] = []
    if not products:
        issues.append(
            _issue(
                "Security",
                Severity.CRITICAL,
                "No antivirus product is registered",
                "Enable Microsoft Defender or install a managed antivirus.",
            )
        )
    if bitlocker == "Not Encrypted":
        issues.append(
            _issue(
                "Security",
                Severity.WARNING,
                "System drive is not encrypted with BitLocker",
                "Turn on BitLocker drive encryption.",
            )
        )
    return AntivirusDiagnostics(
        products=products,
        no_antivirus=not products,
        bitlocker_status=bitlocker,
        issues=tuple(issues),
    )


def probe_windows_update(context: ProbeContext) -> WindowsUpdateDiagnostics:
    """Check the update service and whether a restart is pending."""
    system = context.system
    registry = system.registry
    reboot = registry.key_exists(
        HKLM, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Component Based Servicing\RebootPending"
    ) or registry.key_exists(
        HKLM, r"SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\RebootRequired"
    )
    count = system.pending_update_count()
    if reboot:
        pending = "Reboot required"
    elif count:
        pending = f"{count} pending"
    else:
        pending = "Up to date"
    try:
        service = system.services.query("wuauserv")
        status, start_type = service.status.title(), service.start_type
    except ServiceError as exc:
        LOGGER.debug("wuauserv query failed: %s", exc)
        status, start_type = "Unknown", "Unknown"

    issues: list[Issue] = []
    if reboot:
        issues.append(
            _issue(
                "Windows Update",
                Severity.WARNING,
                "A restart is required to finish installing updates",
                "Restart the computer.",
            )
        )
    if start_type == "Disabled":
        issues.append(
            _issue(
                "Windows Update",
                Severity.WARNING,
                "The Windows Update service is disabled",
                "Set the service to Manual and start it.",
            )
        )
    return WindowsUpdateDiagnostics(
        pending_updates=pending,
        service_status=status,
        service_start_type=start_type,
        update_cache_mb=system.folder_size_mb(system.update_download_dir),
        issues=tuple(issues),
    )


def probe_network(context: ProbeContext) -> NetworkDiagnostics:
    """Describe the active connection, latency and VPN use."""
    system = context.system
    interfaces = system.network_interfaces()
    vpn = next((i for i in interfaces if _matches_any(i["name"], VPN_KEYWORDS)), None)
    physical = [i for i in interfaces if i is not vpn]
    primary = physical[0] if physical else None
    if primary is None:
        connection = "Disconnected"
    elif _matches_any(primary["name"], ("wi-fi", "wlan", "wireless")):
        connection = "Wi-Fi"
    else:
        connection = "Ethernet"
    speed = f"{primary['speed_mbps']} Mbps" if primary and primary.get("speed_mbps") else "Unknown"
    ping = system.ping_ms()
    dns = system.dns_lookup_ms()

    issues: list[Issue] = []
    if primary is None:
        issues.append(_issue("Network", Severity.CRITICAL, "No active network connection"))
    elif ping is None:
        issues.append(
            _issue("Network", Severity.WARNING, "Internet host did not answer ping", "Check the gateway and firewall.")
        )
    elif ping > PING_FLAG_MS:
        issues.append(
            _issue(
                "Network",
                Severity.WARNING,
                f"High latency: {ping:.0f} ms",
                "Prefer a wired connection or move closer to the access point.",
                magnitude=ping,
            )
        )
    return NetworkDiagnostics(
        connection_type=connection,
        adapter_speed=speed,
        ping_latency_ms=ping,
        dns_response_ms=dns,
        vpn_active=vpn is not None,
        vpn_client=vpn["name"] if vpn else "N/A",
        issues=tuple(issues),
    )


def probe_throughput(context: ProbeContext) -> ThroughputDiagnostics:
    """Measure download throughput against the configured test URL."""
    timeout = resolve_timeout(context, "throughput")
    mbps = context.system.download_mbps(context.config.speedtest_url, timeout=timeout)
    flagged = mbps < THROUGHPUT_FLAG_MBPS
    issues: tuple[Issue, ...] = ()
    if flagged:
        issues = (
            _issue(
                "Network",
                Severity.WARNING,
                f"Download throughput is {mbps:.1f} Mbps",
                "Check for bandwidth-heavy applications or contact the ISP.",
                magnitude=mbps,
            ),
        )
    return ThroughputDiagnostics(measured=True, download_mbps=mbps, flagged=flagged, issues=issues)


def probe_network_drives(context: ProbeContext) -> NetworkDriveDiagnostics:
    """Check reachability and free space of mapped drives."""
    system = context.system
    drives: list[NetworkDriveInfo] = []
    issues: list[Issue] = []
    for row in system.mapped_drives():
        letter = str(row.get("DeviceID") or "")
        if not letter:
            continue
        latency = system.probe_latency_ms(Path(letter + "\\"))
        total_mb = _int(row.get("Size")) // (1024 * 1024)
        free_mb = _int(row.get("FreeSpace")) // (1024 * 1024)
        accessible = latency is not None
        latency_flagged = accessible and latency > NETWORK_DRIVE_LATENCY_FLAG_MS
        space_flagged = total_mb > 0 and free_mb / total_mb * 100 < NETWORK_DRIVE_FREE_FLAG_PERCENT
        drive = NetworkDriveInfo(
            letter=letter,
            unc_path=str(row.get("ProviderName") or ""),
            accessible=accessible,
            latency_ms=latency or 0,
            total_mb=total_mb,
            free_mb=free_mb,
            latency_flagged=latency_flagged,
            space_flagged=space_flagged,
        )
        drives.append(drive)
        if not accessible:
            issues.append(
                _issue("Network Drives", Severity.WARNING, f"{letter} ({drive.unc_path}) is unreachable")
            )
        elif latency_flagged:
            issues.append(
                _issue(
                    "Network Drives",
                    Severity.INFO,
                    f"{letter} responds slowly ({drive.latency_ms} ms)",
                    magnitude=drive.latency_ms,
                )
            )
        if space_flagged:
            issues.append(_issue("Network Drives", Severity.WARNING, f"{letter} is almost full"))
    return NetworkDriveDiagnostics(drives=tuple(drives), issues=tuple(issues))


def probe_outlook(context: ProbeContext) -> OutlookDiagnostics:
    """Locate Outlook data files and flag oversized ones."""
    system = context.system
    installed = system.registry.key_exists(HKLM, APP_PATHS + r"\OUTLOOK.EXE")
    if not installed:
        return OutlookDiagnostics(installed=False)
    found = system.list_files(system.local_appdata / "Microsoft" / "Outlook", "*.ost")
    found += system.list_files(system.user_profile_dir / "Documents" / "Outlook Files", "*.pst")
    files: list[OutlookDataFile] = []
    issues: list[Issue] = []
    for path, size_mb in found:
        flagged = size_mb >= OUTLOOK_FILE_FLAG_MB
        files.append(OutlookDataFile(path=str(path), size_mb=size_mb, size_flagged=flagged))
        if flagged:
            issues.append(
                _issue(
                    "Outlook",
                    Severity.WARNING,
                    f"Outlook data file {path.name} is {size_mb} MB",
                    "Archive old mail or reduce the cached mailbox window.",
                    magnitude=size_mb,
                )
            )
    return OutlookDiagnostics(installed=True, data_files=tuple(files), issues=tuple(issues))


def probe_browser(context: ProbeContext) -> BrowserDiagnostics:
    """Measure cache size and approximate open tabs per browser."""
    system = context.system
    browsers: list[BrowserInfo] = []
    issues: list[Issue] = []
    for name, executable in BROWSER_EXECUTABLES.items():
        root = system.browser_profile_root(name)
        if root is None or not system.path_exists(root):
            continue
        cache_mb = sum(system.folder_size_mb(path) for path in system.browser_cache_dirs(name))
        processes = system.process_count(executable)
        tabs = max(0, processes - BROWSER_HELPER_PROCESSES) if processes else 0
        extensions = system.count_entries(root / "Default" / "Extensions") if name != "Firefox" else 0
        browsers.append(
            BrowserInfo(name=name, open_tabs=tabs, cache_size_mb=cache_mb, extension_count=extensions)
        )
        if tabs > BROWSER_TAB_FLAG:
            issues.append(
                _issue(
                    "Browser",
                    Severity.INFO,
                    f"About {tabs} tabs open in {name}",
                    "Close or suspend unused tabs to free memory.",
                    magnitude=tabs,
                )
            )
        if cache_mb > BROWSER_CACHE_FLAG_MB:
            issues.append(
                _issue(
                    "Browser",
                    Severity.INFO,
                    f"{name} cache is {cache_mb} MB",
                    "Clear the browser cache.",
                    magnitude=cache_mb,
                )
            )
    return BrowserDiagnostics(browsers=tuple(browsers), issues=tuple(issues))


def probe_user_profile(context: ProbeContext) -> UserProfileDiagnostics:
    """Measure the profile and look for signs of a corrupted profile."""
    system = context.system
    profile = system.user_profile_dir
    desktop_items = system.count_entries(profile / "Desktop")
    profile_list = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"
    backups = [name for name in system.registry.subkeys(HKLM, profile_list) if name.endswith(".bak")]
    corrupted = bool(backups) or profile.name.upper().startswith("TEMP")
    issues: list[Issue] = []
    if desktop_items > DESKTOP_ITEMS_FLAG:
        issues.append(
            _issue(
                "User Profile",
                Severity.INFO,
                f"{desktop_items} items on the desktop",
                "Move desktop files into folders; a crowded desktop slows sign-in.",
                magnitude=desktop_items,
            )
        )
    if corrupted:
        issues.append(
            _issue(
                "User Profile",
                Severity.CRITICAL,
                "The user profile appears to be corrupted or temporary",
                "Back up user data and rebuild the profile.",
            )
        )
    return UserProfileDiagnostics(
        profile_size_mb=system.folder_size_mb(profile),
        desktop_item_count=desktop_items,
        desktop_items_flagged=desktop_items > DESKTOP_ITEMS_FLAG,
        corruption_detected=corrupted,
        issues=tuple(issues),
    )


def probe_office(context: ProbeContext) -> OfficeDiagnostics:
    """Detect Click-to-Run Office and broken application registrations."""
    registry = context.system.registry
    version = registry.read(HKLM, r"SOFTWARE\Microsoft\Office\ClickToRun\Configuration", "VersionToReport")
    if version is None:
        return OfficeDiagnostics(installed=False)
    word = registry.read(HKLM, APP_PATHS + r"\WINWORD.EXE", "")
    repair = word is None or not context.system.path_exists(Path(str(word.value).strip('"')))
    issues: tuple[Issue, ...] = ()
    if repair:
        issues = (
            _issue(
                "Office",
                Severity.WARNING,
                "Office is installed but its applications are not registered correctly",
                "Run an Online Repair from Apps & features.",
            ),
        )
    return OfficeDiagnostics(
        installed=True,
        version=str(version.value),
        repair_needed=repair,
        issues=issues,
    )


def probe_software(context: ProbeContext) -> InstalledSoftwareDiagnostics:
    """Inventory installed software, matching end-of-life and bloatware lists."""
    apps = [
        InstalledApp(name=row["name"], version=row.get("version", ""), publisher=row.get("publisher", ""))
        for row in context.system.installed_apps()
    ]
    eol = tuple(app for app in apps if _matches_any(app.name, EOL_SOFTWARE))
    bloat = tuple(app for app in apps if _matches_any(app.name, BLOATWARE))
    issues: list[Issue] = []
    if eol:
        issues.append(
            _issue(
                "Software",
                Severity.WARNING,
                f"{len(eol)} end-of-life application(s) installed",
                "Uninstall or upgrade: " + ", ".join(app.name for app in eol),
                magnitude=len(eol),
            )
        )
    if bloat:
        issues.append(
            _issue(
                "Software",
                Severity.INFO,
                f"{len(bloat)} preinstalled trial or bloatware application(s)",
                "Uninstall: " + ", ".join(app.name for app in bloat),
                magnitude=len(bloat),
            )
        )
    return InstalledSoftwareDiagnostics(
        total_count=len(apps),
        eol_apps=eol,
        bloatware_apps=bloat,
        issues=tuple(issues),
    )


def probe_gpu(context: ProbeContext) -> GpuDiagnostics:
    """Report the primary display adapter and its driver age."""
    rows = context.system.cim("Win32_VideoController", properties="Name, DriverVersion, DriverDate")
    if not rows:
        return GpuDiagnostics()
    primary = rows[0]
    driver_date = parse_ps_datetime(primary.get("DriverDate"))
    outdated = (
        driver_date is not None
        and datetime.now(UTC) - driver_date > timedelta(days=GPU_DRIVER_MAX_AGE_DAYS)
    )
    name = str(primary.get("Name") or "Unknown")
    issues: tuple[Issue, ...] = ()
    if outdated:
        issues = (
            _issue(
                "GPU",
                Severity.INFO,
                f"{name} driver is more than a year old",
                "Download the current driver from the vendor.",
            ),
        )
    return GpuDiagnostics(
        name=name,
        driver_version=str(primary.get("DriverVersion") or "Unknown"),
        driver_date=driver_date.date().isoformat() if driver_date else "Unknown",
        driver_outdated=outdated,
        issues=issues,
    )


def probe_event_log(context: ProbeContext) -> EventLogDiagnostics:
    """Collect crashes, disk errors and unexpected shutdowns in the lookback window."""
    system = context.system
    days = context.config.event_lookback_days
    since = datetime.now(UTC) - timedelta(days=days)

    def _entries(log: str, ids: tuple[int, ...], providers: tuple[str, ...] = ()) -> tuple[EventLogEntry, ...]:
        rows = system.events(log, ids, since=since, providers=providers)
        return tuple(
            EventLogEntry(
                source=str(row.get("ProviderName") or ""),
                event_id=_int(row.get("Id")),
                level=str(row.get("LevelDisplayName") or ""),
                timestamp=parse_ps_datetime(row.get("TimeCreatedUtc")),
                message=str(row.get("Message") or ""),
            )
            for row in rows
        )

    bsods = _entries("System", BSOD_EVENT_IDS, BSOD_PROVIDERS)
    shutdowns = _entries("System", SHUTDOWN_EVENT_IDS)
    disk_errors = _entries("System", DISK_ERROR_EVENT_IDS, DISK_ERROR_PROVIDERS)
    crashes = _entries("Application", APP_CRASH_EVENT_IDS, APP_CRASH_PROVIDERS)

    issues: list[Issue] = []
    if bsods:
        issues.append(
            _issue(
                "Event Log",
                Severity.CRITICAL,
                f"{len(bsods)} blue screen crash(es) in the last {days} days",
                "Run SFC/DISM, update drivers and test memory.",
                magnitude=len(bsods),
            )
        )
    if disk_errors:
        issues.append(
            _issue(
                "Event Log",
                Severity.CRITICAL,
                f"{len(disk_errors)} disk error(s) in the last {days} days",
                "Schedule CHKDSK and back up data.",
                magnitude=len(disk_errors),
            )
        )
    if shutdowns:
        issues.append(
            _issue(
                "Event Log",
                Severity.WARNING,
                f"{len(shutdowns)} unexpected shutdown(s) in the last {days} days",
                "Check power settings and the power supply.",
                magnitude=len(shutdowns),
            )
        )
    if len(crashes) >= APP_CRASH_FLAG_COUNT:
        issues.append(
            _issue(
                "Event Log",
                Severity.WARNING,
                f"{len(crashes)} application crash(es) in the last {days} days",
                "Repair or reinstall the crashing applications.",
                magnitude=len(crashes),
            )
        )
    return EventLogDiagnostics(
        bsods=bsods,
        app_crashes=crashes,
        disk_errors=disk_errors,
        unexpected_shutdowns=shutdowns,
        lookback_days=days,
        issues=tuple(issues),
    )


__all__ = ["collect_probes", "resolve_timeout"]
