"""Data models for diagnostic probes and scan results."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ..config import ScanConfig
    from ..providers.system import SystemQueries


class Severity(str, Enum):
    """Severity attached to a flagged issue."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True, frozen=True)
class Issue:
    """A single flagged condition produced by a probe."""

    category: str
    severity: Severity
    message: str
    recommendation: str = ""
    magnitude: float | None = None


ProbeId = Literal[
    "system",
    "cpu",
    "ram",
    "disk",
    "battery",
    "startup",
    "visual",
    "antivirus",
    "windows_update",
    "network",
    "throughput",
    "network_drives",
    "outlook",
    "browser",
    "user_profile",
    "office",
    "software",
    "gpu",
    "event_log",
]

# Fixed domain order used by the phase scheduler. Keep in sync with ``ProbeId``.
PROBE_ORDER: tuple[ProbeId, ...] = (
    "system",
    "cpu",
    "ram",
    "disk",
    "battery",
    "startup",
    "visual",
    "antivirus",
    "windows_update",
    "network",
    "throughput",
    "network_drives",
    "outlook",
    "browser",
    "user_profile",
    "office",
    "software",
    "gpu",
    "event_log",
)


# ----------------------------------------------------------------------
# Per-domain sub-results
# ----------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """Process name, id and resident memory."""

    name: str
    pid: int
    memory_mb: int = 0


@dataclass(slots=True, frozen=True)
class SystemOverview:
    """Host identity and uptime."""

    computer_name: str = ""
    manufacturer: str = ""
    model: str = ""
    windows_version: str = ""
    windows_build: str = ""
    cpu_model: str = ""
    total_ram_mb: int = 0
    uptime_seconds: float = 0.0
    uptime_flagged: bool = False
    issues: tuple[Issue, ...] = ()

    @property
    def uptime_days(self) -> int:
        """Return whole days of uptime."""
        return int(self.uptime_seconds // 86400)


@dataclass(slots=True, frozen=True)
class CpuDiagnostics:
    """Processor load and thermal state."""

    load_percent: float = 0.0
    load_flagged: bool = False
    temperature_c: float | None = None
    temperature_flagged: bool = False
    throttling: bool = False
    top_processes: tuple[ProcessInfo, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class RamDiagnostics:
    """Physical memory usage."""

    total_mb: int = 0
    used_mb: int = 0
    available_mb: int = 0
    percent_used: float = 0.0
    usage_flagged: bool = False
    insufficient: bool = False
    top_processes: tuple[ProcessInfo, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class DriveInfo:
    """Capacity and health of one fixed drive."""

    letter: str
    total_mb: int
    used_mb: int
    free_mb: int
    percent_used: float
    usage_flagged: bool = False
    health_status: str = "Unknown"
    drive_type: str = "Unknown"


@dataclass(slots=True, frozen=True)
class DiskDiagnostics:
    """Drive capacity plus the reclaimable locations remediation targets."""

    drives: tuple[DriveInfo, ...] = ()
    windows_temp_mb: int = 0
    user_temp_mb: int = 0
    temp_has_files: bool = False
    software_distribution_mb: int = 0
    software_distribution_has_files: bool = False
    windows_old_exists: bool = False
    windows_old_mb: int = 0
    upgrade_logs_mb: int = 0
    recycle_bin_mb: int = 0
    prefetch_mb: int = 0
    prefetch_has_files: bool = False
    issues: tuple[Issue, ...] = ()

    @property
    def temp_total_mb(self) -> int:
        """Return the combined Windows and user temp size."""
        return self.windows_temp_mb + self.user_temp_mb

    @property
    def system_free_mb(self) -> int:
        """Return free space on the first (system) drive, or 0 when unknown."""
        return self.drives[0].free_mb if self.drives else 0


@dataclass(slots=True, frozen=True)
class BatteryDiagnostics:
    """Battery wear and active power plan."""

    has_battery: bool = False
    design_capacity_mwh: int = 0
    full_charge_capacity_mwh: int = 0
    health_percent: float = 0.0
    health_flagged: bool = False
    power_source: str = "Unknown"
    power_plan: str = "Unknown"
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class StartupEntry:
    """One registered startup item."""

    name: str
    publisher: str = ""
    enabled: bool = True


@dataclass(slots=True, frozen=True)
class StartupDiagnostics:
    """Startup programs."""

    entries: tuple[StartupEntry, ...] = ()
    enabled_count: int = 0
    too_many_flagged: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class VisualSettingsDiagnostics:
    """Desktop effects that cost CPU/GPU time."""

    visual_effects_setting: str = "Unknown"
    transparency_enabled: bool = False
    animations_enabled: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class AntivirusDiagnostics:
    """Registered security products and system drive encryption."""

    products: tuple[str, ...] = ()
    no_antivirus: bool = False
    bitlocker_status: str = "Unknown"
    issues: tuple[Issue, ...] = ()

    @property
    def bitlocker_off(self) -> bool:
        """Return ``True`` when the system drive is reported unencrypted."""
        return self.bitlocker_status == "Not Encrypted"


@dataclass(slots=True, frozen=True)
class WindowsUpdateDiagnostics:
    """Update service state and pending work."""

    pending_updates: str = "Unknown"
    service_status: str = "Unknown"
    service_start_type: str = "Unknown"
    update_cache_mb: int = 0
    issues: tuple[Issue, ...] = ()

    @property
    def reboot_pending(self) -> bool:
        """Return ``True`` when pending updates require a restart."""
        return "reboot" in self.pending_updates.lower()

    @property
    def service_disabled(self) -> bool:
        """Return ``True`` when the update service start type is Disabled."""
        return self.service_start_type == "Disabled"


@dataclass(slots=True, frozen=True)
class NetworkDiagnostics:
    """Connectivity, latency and VPN presence."""

    connection_type: str = "Unknown"
    adapter_speed: str = "Unknown"
    ping_latency_ms: float | None = None
    dns_response_ms: float | None = None
    vpn_active: bool = False
    vpn_client: str = "N/A"
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class ThroughputDiagnostics:
    """Download throughput; only measured on explicit request."""

    measured: bool = False
    download_mbps: float = 0.0
    flagged: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class NetworkDriveInfo:
    """One mapped network drive."""

    letter: str
    unc_path: str = ""
    accessible: bool = False
    latency_ms: int = 0
    total_mb: int = 0
    free_mb: int = 0
    latency_flagged: bool = False
    space_flagged: bool = False


@dataclass(slots=True, frozen=True)
class NetworkDriveDiagnostics:
    """Mapped network drives."""

    drives: tuple[NetworkDriveInfo, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class OutlookDataFile:
    """A PST/OST data file."""

    path: str
    size_mb: int = 0
    size_flagged: bool = False


@dataclass(slots=True, frozen=True)
class OutlookDiagnostics:
    """Outlook installation and data file sizes."""

    installed: bool = False
    data_files: tuple[OutlookDataFile, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class BrowserInfo:
    """Per-browser cache size and open tab estimate."""

    name: str
    open_tabs: int = 0
    cache_size_mb: int = 0
    extension_count: int = 0


@dataclass(slots=True, frozen=True)
class BrowserDiagnostics:
    """Installed browsers."""

    browsers: tuple[BrowserInfo, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class UserProfileDiagnostics:
    """Size and health of the scanned user's profile."""

    profile_size_mb: int = 0
    desktop_item_count: int = 0
    desktop_items_flagged: bool = False
    corruption_detected: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class OfficeDiagnostics:
    """Microsoft Office installation state."""

    installed: bool = False
    version: str = "Unknown"
    repair_needed: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class InstalledApp:
    """An entry from the uninstall registry."""

    name: str
    version: str = ""
    publisher: str = ""


@dataclass(slots=True, frozen=True)
class InstalledSoftwareDiagnostics:
    """Installed software inventory with end-of-life and bloatware matches."""

    total_count: int = 0
    eol_apps: tuple[InstalledApp, ...] = ()
    bloatware_apps: tuple[InstalledApp, ...] = ()
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class GpuDiagnostics:
    """Primary display adapter and driver age."""

    name: str = "Unknown"
    driver_version: str = "Unknown"
    driver_date: str = "Unknown"
    driver_outdated: bool = False
    issues: tuple[Issue, ...] = ()


@dataclass(slots=True, frozen=True)
class EventLogEntry:
    """One event log record."""

    source: str
    event_id: int
    level: str = ""
    timestamp: datetime | None = None
    message: str = ""


@dataclass(slots=True, frozen=True)
class EventLogDiagnostics:
    """Crash, disk error and shutdown events within the lookback window."""

    bsods: tuple[EventLogEntry, ...] = ()
    app_crashes: tuple[EventLogEntry, ...] = ()
    disk_errors: tuple[EventLogEntry, ...] = ()
    unexpected_shutdowns: tuple[EventLogEntry, ...] = ()
    lookback_days: int = 30
    issues: tuple[Issue, ...] = ()

    @property
    def total_event_count(self) -> int:
        """Return the number of events across all categories."""
        return (
            len(self.bsods)
            + len(self.app_crashes)
            + len(self.disk_errors)
            + len(self.unexpected_shutdowns)
        )

    def top_crashing_apps(self, limit: int = 5) -> list[tuple[str, int]]:
        """Return ``(executable, count)`` pairs for the most frequent crashers."""
        counts: dict[str, int] = {}
        display: dict[str, str] = {}
        for entry in self.app_crashes:
            app = extract_faulting_app(entry.message)
            if not app:
                continue
            folded = app.lower()
            display.setdefault(folded, app)
            counts[folded] = counts.get(folded, 0) + 1
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [(display[name], count) for name, count in ranked[:limit]]


def extract_faulting_app(message: str) -> str | None:
    """Parse the faulting executable from an application error/hang message."""
    if not message:
        return None
    lowered = message.lower()
    marker = "application name:"
    index = lowered.find(marker)
    if index >= 0:
        start = index + len(marker)
        comma = message.find(",", start)
        name = message[start : comma if comma >= 0 else len(message)].strip()
        if name:
            return name
    # Application Hang events read "The program X stopped interacting ..."
    marker = "program "
    index = lowered.find(marker)
    if index >= 0:
        start = index + len(marker)
        space = message.find(" ", start)
        name = message[start : space if space >= 0 else len(message)].strip()
        if name:
            return name
    return None


DomainResult = (
    SystemOverview
    | CpuDiagnostics
    | RamDiagnostics
    | DiskDiagnostics
    | BatteryDiagnostics
    | StartupDiagnostics
    | VisualSettingsDiagnostics
    | AntivirusDiagnostics
    | WindowsUpdateDiagnostics
    | NetworkDiagnostics
    | ThroughputDiagnostics
    | NetworkDriveDiagnostics
    | OutlookDiagnostics
    | BrowserDiagnostics
    | UserProfileDiagnostics
    | OfficeDiagnostics
    | InstalledSoftwareDiagnostics
    | GpuDiagnostics
    | EventLogDiagnostics
)


# ----------------------------------------------------------------------
# Scheduler models
# ----------------------------------------------------------------------
class PhaseStatus(str, Enum):
    """Outcome of one scan phase."""

    COMPLETED = "completed"
    INCONCLUSIVE = "inconclusive"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class PhaseOutcome:
    """Scheduler bookkeeping for one probe execution."""

    probe_id: ProbeId
    status: PhaseStatus
    duration_ms: int = 0
    message: str = ""
    fault: Mapping[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class ScanOptions:
    """Caller-supplied switches for a scan."""

    include_throughput: bool = False


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """Execution context provided to probes."""

    system: SystemQueries
    config: ScanConfig
    options: ScanOptions = ScanOptions()


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """Metadata + callable for a probe."""

    id: ProbeId
    run: Callable[[ProbeContext], DomainResult]
    timeout: float
    opt_in: bool = False


@dataclass(slots=True, frozen=True)
class ScanResult:
    """Immutable aggregate of one diagnostic run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    scanned_user: str = ""
    duration_seconds: float = 0.0
    incomplete: bool = False
    phases: tuple[PhaseOutcome, ...] = ()
    system: SystemOverview = SystemOverview()
    cpu: CpuDiagnostics = CpuDiagnostics()
    ram: RamDiagnostics = RamDiagnostics()
    disk: DiskDiagnostics = DiskDiagnostics()
    battery: BatteryDiagnostics = BatteryDiagnostics()
    startup: StartupDiagnostics = StartupDiagnostics()
    visual: VisualSettingsDiagnostics = VisualSettingsDiagnostics()
    antivirus: AntivirusDiagnostics = AntivirusDiagnostics()
    windows_update: WindowsUpdateDiagnostics = WindowsUpdateDiagnostics()
    network: NetworkDiagnostics = NetworkDiagnostics()
    throughput: ThroughputDiagnostics = ThroughputDiagnostics()
    network_drives: NetworkDriveDiagnostics = NetworkDriveDiagnostics()
    outlook: OutlookDiagnostics = OutlookDiagnostics()
    browser: BrowserDiagnostics = BrowserDiagnostics()
    user_profile: UserProfileDiagnostics = UserProfileDiagnostics()
    office: OfficeDiagnostics = OfficeDiagnostics()
    software: InstalledSoftwareDiagnostics = InstalledSoftwareDiagnostics()
    gpu: GpuDiagnostics = GpuDiagnostics()
    event_log: EventLogDiagnostics = EventLogDiagnostics()

    def domain(self, probe_id: ProbeId) -> DomainResult:
        """Return the sub-result recorded for *probe_id*."""
        return getattr(self, probe_id)

    @property
    def issues(self) -> tuple[Issue, ...]:
        """Return every flagged issue in domain order."""
        collected: list[Issue] = []
        for probe_id in PROBE_ORDER:
            collected.extend(self.domain(probe_id).issues)
        return tuple(collected)

    @property
    def inconclusive_phases(self) -> tuple[PhaseOutcome, ...]:
        """Return phases that timed out or faulted."""
        return tuple(
            phase for phase in self.phases if phase.status is PhaseStatus.INCONCLUSIVE
        )


__all__ = [
    "PROBE_ORDER",
    "AntivirusDiagnostics",
    "BatteryDiagnostics",
    "BrowserDiagnostics",
    "BrowserInfo",
    "CpuDiagnostics",
    "DiskDiagnostics",
    "DomainResult",
    "DriveInfo",
    "EventLogDiagnostics",
    "EventLogEntry",
    "GpuDiagnostics",
    "InstalledApp",
    "InstalledSoftwareDiagnostics",
    "Issue",
    "NetworkDiagnostics",
    "NetworkDriveDiagnostics",
    "NetworkDriveInfo",
    "OfficeDiagnostics",
    "OutlookDataFile",
    "OutlookDiagnostics",
    "PhaseOutcome",
    "PhaseStatus",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeId",
    "ProcessInfo",
    "RamDiagnostics",
    "ScanOptions",
    "ScanResult",
    "Severity",
    "StartupDiagnostics",
    "StartupEntry",
    "SystemOverview",
    "ThroughputDiagnostics",
    "UserProfileDiagnostics",
    "VisualSettingsDiagnostics",
    "WindowsUpdateDiagnostics",
    "extract_faulting_app",
]
