"""Read-only system queries used by the diagnostic probes.

Native data (CPU, memory, disks, processes, battery) comes from psutil; CIM
classes and event logs are read through PowerShell with ``ConvertTo-Json``;
settings come from the registry. Every method returns plain data so the probes
can be exercised with a fake implementation of this class.
"""
from __future__ import annotations

import ctypes
import logging
import os
import re
import socket
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psutil
import requests

from .registry import RegistryProvider
from .services import WindowsServices
from .shell import ShellRunner

LOGGER = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

_PS_DATE = re.compile(r"/Date\((-?\d+)\)/")
_PING_AVERAGE = re.compile(r"Average = (\d+)ms")
_GUID = re.compile(r"([0-9a-fA-F-]{36})")

# SHEmptyRecycleBin flags: no confirmation, no progress UI, no sound.
SHERB_FLAGS = 0x1 | 0x2 | 0x4

# Browser display name -> executable.
BROWSER_EXECUTABLES = {
    "Chrome": "chrome.exe",
    "Microsoft Edge": "msedge.exe",
    "Firefox": "firefox.exe",
}

BROWSER_DATA_DIRS = {
    "Chrome": ("Google", "Chrome", "User Data"),
    "Microsoft Edge": ("Microsoft", "Edge", "User Data"),
    "Firefox": ("Mozilla", "Firefox"),
}


class _ShQueryRbInfo(ctypes.Structure):
    _fields_ = [
        ("cbSize", ctypes.c_ulong),
        ("i64Size", ctypes.c_longlong),
        ("i64NumItems", ctypes.c_longlong),
    ]


def parse_ps_datetime(value: object) -> datetime | None:
    """Parse the ``/Date(ms)/`` or ISO strings PowerShell emits for dates."""
    if isinstance(value, Mapping):
        value = value.get("value") or value.get("DateTime") or ""
    if not isinstance(value, str) or not value:
        return None
    match = _PS_DATE.search(value)
    if match:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def folder_size_mb(path: Path) -> int:
    """Return the total size of files below *path* in whole MB."""
    total = 0
    for root, _dirs, files in os.walk(path, onerror=lambda _exc: None):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total // BYTES_PER_MB


def directory_has_files(path: Path) -> bool:
    """Return ``True`` when any file exists below *path*."""
    for _root, _dirs, files in os.walk(path, onerror=lambda _exc: None):
        if files:
            return True
    return False


@dataclass(slots=True)
class SystemQueries:
    """Facade over psutil, PowerShell and the registry."""

    runner: ShellRunner
    registry: RegistryProvider
    services: WindowsServices
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    query_timeout: float = 30.0

    # ------------------------------------------------------------------
    # Well-known locations
    # ------------------------------------------------------------------
    def _env_path(self, name: str, fallback: str) -> Path:
        return Path(self.environ.get(name) or fallback)

    @property
    def windows_dir(self) -> Path:
        """Return ``%SystemRoot%``."""
        return self._env_path("SystemRoot", r"C:\Windows")

    @property
    def system_drive(self) -> Path:
        """Return the root of the system drive."""
        return Path(self.environ.get("SystemDrive", "C:") + "\\")

    @property
    def user_temp_dir(self) -> Path:
        """Return the scanned user's temp directory."""
        return self._env_path("TEMP", str(self.local_appdata / "Temp"))

    @property
    def windows_temp_dir(self) -> Path:
        """Return ``%SystemRoot%\\Temp``."""
        return self.windows_dir / "Temp"

    @property
    def local_appdata(self) -> Path:
        """Return ``%LOCALAPPDATA%``."""
        return self._env_path("LOCALAPPDATA", str(Path.home() / "AppData" / "Local"))

    @property
    def appdata(self) -> Path:
        """Return ``%APPDATA%``."""
        return self._env_path("APPDATA", str(Path.home() / "AppData" / "Roaming"))

    @property
    def user_profile_dir(self) -> Path:
        """Return ``%USERPROFILE%``."""
        return self._env_path("USERPROFILE", str(Path.home()))

    @property
    def program_data(self) -> Path:
        """Return ``%ProgramData%``."""
        return self._env_path("ProgramData", r"C:\ProgramData")

    @property
    def prefetch_dir(self) -> Path:
        """Return ``%SystemRoot%\\Prefetch``."""
        return self.windows_dir / "Prefetch"

    @property
    def update_download_dir(self) -> Path:
        """Return the Windows Update download cache."""
        return self.windows_dir / "SoftwareDistribution" / "Download"

    @property
    def windows_old_dir(self) -> Path:
        """Return the previous-installation folder on the system drive."""
        return self.system_drive / "Windows.old"

    def upgrade_log_dirs(self) -> tuple[Path, ...]:
        """Return the folders holding upgrade logs and setup staging data."""
        return (
            self.windows_dir / "Logs" / "WindowsUpdate",
            self.windows_dir / "Panther",
            self.system_drive / "$Windows.~BT",
            self.system_drive / "$Windows.~WS",
        )

    def crash_dump_dirs(self) -> tuple[Path, ...]:
        """Return folders holding kernel crash dumps."""
        return (self.windows_dir / "Minidump", self.windows_dir / "LiveKernelReports")

    @property
    def full_memory_dump(self) -> Path:
        """Return the path of the full kernel memory dump."""
        return self.windows_dir / "MEMORY.DMP"

    def wer_report_dirs(self) -> tuple[Path, ...]:
        """Return Windows Error Reporting archives and queues."""
        wer_user = self.local_appdata / "Microsoft" / "Windows" / "WER"
        wer_machine = self.program_data / "Microsoft" / "Windows" / "WER"
        return (
            wer_user / "ReportArchive",
            wer_user / "ReportQueue",
            self.local_appdata / "CrashDumps",
            wer_machine / "ReportArchive",
            wer_machine / "ReportQueue",
        )

    def username(self) -> str:
        """Return the account the scan runs as."""
        return self.environ.get("USERNAME") or os.environ.get("USER", "unknown")

    # ------------------------------------------------------------------
    # Filesystem
    # ------------------------------------------------------------------
    def folder_size_mb(self, path: Path) -> int:
        """Return the size of *path* in MB, 0 when it does not exist."""
        return folder_size_mb(path) if path.is_dir() else 0

    def directory_has_files(self, path: Path) -> bool:
        """Return ``True`` when *path* contains at least one file."""
        return path.is_dir() and directory_has_files(path)

    def path_exists(self, path: Path) -> bool:
        """Return ``True`` when *path* exists."""
        return path.exists()

    def list_files(self, directory: Path, pattern: str) -> list[tuple[Path, int]]:
        """Return ``(path, size_mb)`` for files matching *pattern* in *directory*."""
        if not directory.is_dir():
            return []
        found: list[tuple[Path, int]] = []
        for path in sorted(directory.glob(pattern)):
            try:
                found.append((path, path.stat().st_size // BYTES_PER_MB))
            except OSError:
                continue
        return found

    def count_entries(self, directory: Path) -> int:
        """Return the number of immediate entries in *directory*."""
        try:
            with os.scandir(directory) as entries:
                return sum(1 for _ in entries)
        except OSError:
            return 0

    def recycle_bin_mb(self) -> int:
        """Return the size of all recycle bins in MB."""
        shell32 = _shell32()
        info = _ShQueryRbInfo()
        info.cbSize = ctypes.sizeof(_ShQueryRbInfo)
        result = shell32.SHQueryRecycleBinW(None, ctypes.byref(info))
        if result < 0:
            raise OSError(f"SHQueryRecycleBin failed with HRESULT {result & 0xFFFFFFFF:#010x}")
        return int(info.i64Size) // BYTES_PER_MB

    def empty_recycle_bin(self) -> None:
        """Empty all recycle bins without prompting."""
        result = _shell32().SHEmptyRecycleBinW(None, None, SHERB_FLAGS)
        if result < 0:
            raise OSError(f"SHEmptyRecycleBin failed with HRESULT {result & 0xFFFFFFFF:#010x}")

    # ------------------------------------------------------------------
    # psutil
    # ------------------------------------------------------------------
    def boot_time(self) -> float:
        """Return the boot timestamp in seconds since the epoch."""
        return psutil.boot_time()

    def cpu_percent(self, samples: int) -> float:
        """Return average CPU load over *samples* one-second intervals."""
        readings = [psutil.cpu_percent(interval=1.0) for _ in range(max(1, samples))]
        return round(sum(readings) / len(readings), 1)

    def virtual_memory(self) -> tuple[int, int, int, float]:
        """Return ``(total_mb, used_mb, available_mb, percent)``."""
        memory = psutil.virtual_memory()
        total = memory.total // BYTES_PER_MB
        available = memory.available // BYTES_PER_MB
        return total, total - available, available, float(memory.percent)

    def top_processes(self, *, by: str, limit: int = 5) -> list[dict[str, Any]]:
        """Return the heaviest processes by ``cpu`` or ``memory``."""
        rows: list[dict[str, Any]] = []
        for proc in psutil.process_iter(["pid", "name", "memory_info", "cpu_percent"]):
            info = proc.info
            memory = info.get("memory_info")
            rows.append(
                {
                    "pid": int(info.get("pid") or 0),
                    "name": str(info.get("name") or ""),
                    "memory_mb": (memory.rss // BYTES_PER_MB) if memory else 0,
                    "cpu_percent": float(info.get("cpu_percent") or 0.0),
                }
            )
        key = "cpu_percent" if by == "cpu" else "memory_mb"
        rows.sort(key=lambda row: row[key], reverse=True)
        return rows[:limit]

    def process_count(self, executable: str) -> int:
        """Return how many processes run *executable* (case-insensitive)."""
        wanted = executable.lower()
        count = 0
        for proc in psutil.process_iter(["name"]):
            if str(proc.info.get("name") or "").lower() == wanted:
                count += 1
        return count

    def fixed_drives(self) -> list[dict[str, Any]]:
        """Return capacity data for each fixed local drive."""
        drives: list[dict[str, Any]] = []
        for part in psutil.disk_partitions(all=False):
            if "cdrom" in part.opts or "remote" in part.opts or not part.fstype:
                continue
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError):
                continue
            drives.append(
                {
                    "letter": part.device.rstrip("\\"),
                    "total_mb": usage.total // BYTES_PER_MB,
                    "used_mb": usage.used // BYTES_PER_MB,
                    "free_mb": usage.free // BYTES_PER_MB,
                    "percent_used": float(usage.percent),
                }
            )
        return drives

    def battery(self) -> dict[str, Any] | None:
        """Return battery charge state, or ``None`` without a battery."""
        battery = psutil.sensors_battery()
        if battery is None:
            return None
        return {"percent": battery.percent, "plugged": bool(battery.power_plugged)}

    def network_interfaces(self) -> list[dict[str, Any]]:
        """Return active interfaces with their speed in Mbps."""
        interfaces: list[dict[str, Any]] = []
        for name, stats in psutil.net_if_stats().items():
            if not stats.isup or name.lower().startswith("loopback"):
                continue
            interfaces.append({"name": name, "speed_mbps": stats.speed})
        return interfaces

    # ------------------------------------------------------------------
    # PowerShell / CIM
    # ------------------------------------------------------------------
    def cim(self, class_name: str, *, properties: str = "*", namespace: str | None = None) -> list[dict[str, Any]]:
        """Return instances of a CIM class."""
        script = f"Get-CimInstance -ClassName {class_name}"
        if namespace:
            script += f" -Namespace {namespace}"
        script += f" -ErrorAction SilentlyContinue | Select-Object {properties}"
        return self.runner.ps_json(script, timeout=self.query_timeout)

    def thermal_zone_celsius(self) -> float | None:
        """Return the hottest ACPI thermal zone in Celsius, if exposed."""
        zones = self.cim(
            "MSAcpi_ThermalZoneTemperature",
            properties="CurrentTemperature",
            namespace="root/wmi",
        )
        readings = [
            float(zone["CurrentTemperature"]) / 10.0 - 273.15
            for zone in zones
            if zone.get("CurrentTemperature")
        ]
        return round(max(readings), 1) if readings else None

    def physical_disk_health(self) -> list[str]:
        """Return the HealthStatus of each physical disk."""
        rows = self.runner.ps_json(
            "Get-PhysicalDisk -ErrorAction SilentlyContinue | Select-Object HealthStatus",
            timeout=self.query_timeout,
        )
        return [str(row.get("HealthStatus") or "Unknown") for row in rows]

    def battery_capacity(self) -> tuple[int, int]:
        """Return ``(design_mwh, full_charge_mwh)`` or zeros when unknown."""
        static = self.cim("BatteryStaticData", properties="DesignedCapacity", namespace="root/wmi")
        full = self.cim(
            "BatteryFullChargedCapacity", properties="FullChargedCapacity", namespace="root/wmi"
        )
        design = int(static[0].get("DesignedCapacity") or 0) if static else 0
        charged = int(full[0].get("FullChargedCapacity") or 0) if full else 0
        return design, charged

    def active_power_scheme(self) -> tuple[str, str]:
        """Return ``(guid, name)`` of the active power plan."""
        result = self.runner.run(["powercfg", "/getactivescheme"], timeout=15.0)
        output = result.stdout
        match = _GUID.search(output)
        guid = match.group(1).lower() if match else ""
        name = output[output.find("(") + 1 : output.rfind(")")] if "(" in output else "Unknown"
        return guid, name or "Unknown"

    def bitlocker_protection(self) -> str:
        """Return the system volume encryption state as reported by BitLocker."""
        drive = self.environ.get("SystemDrive", "C:")
        rows = self.runner.ps_json(
            f"Get-BitLockerVolume -MountPoint '{drive}' -ErrorAction SilentlyContinue"
            " | Select-Object VolumeStatus",
            timeout=self.query_timeout,
        )
        if not rows:
            return "Unknown"
        status = str(rows[0].get("VolumeStatus") or "")
        return {
            "0": "Not Encrypted",
            "FullyDecrypted": "Not Encrypted",
            "1": "Encrypted",
            "FullyEncrypted": "Encrypted",
        }.get(status, status or "Unknown")

    def pending_update_count(self) -> int:
        """Return the number of applicable, not-yet-installed updates."""
        output = self.runner.powershell(
            "(New-Object -ComObject Microsoft.Update.Session).CreateUpdateSearcher()"
            ".Search('IsInstalled=0 and IsHidden=0').Updates.Count",
            timeout=self.query_timeout,
        )
        try:
            return int(output.strip() or 0)
        except ValueError:
            return 0

    def ping_ms(self, host: str = "8.8.8.8") -> float | None:
        """Return the average ICMP round trip to *host*."""
        result = self.runner.run(["ping", "-n", "4", host], timeout=15.0)
        match = _PING_AVERAGE.search(result.stdout)
        return float(match.group(1)) if match else None

    def dns_lookup_ms(self, name: str = "www.microsoft.com") -> float | None:
        """Return the time taken to resolve *name*."""
        started = time.perf_counter()
        try:
            socket.getaddrinfo(name, 443)
        except OSError:
            return None
        return round((time.perf_counter() - started) * 1000, 1)

    def download_mbps(self, url: str, *, timeout: float) -> float:
        """Download *url* and return the observed throughput in Mbit/s."""
        started = time.perf_counter()
        received = 0
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=65536):
                received += len(chunk)
        elapsed = max(time.perf_counter() - started, 1e-6)
        return round(received * 8 / elapsed / 1_000_000, 1)

    def mapped_drives(self) -> list[dict[str, Any]]:
        """Return mapped network drives with their UNC path and capacity."""
        return self.cim(
            "Win32_MappedLogicalDisk",
            properties="DeviceID, ProviderName, Size, FreeSpace",
        )

    def probe_latency_ms(self, path: Path) -> int | None:
        """Return the time taken to list *path*, or ``None`` when inaccessible."""
        started = time.perf_counter()
        try:
            with os.scandir(path) as entries:
                next(entries, None)
        except OSError:
            return None
        return int((time.perf_counter() - started) * 1000)

    def startup_entries(self) -> list[dict[str, Any]]:
        """Return registered startup commands with their enabled state."""
        rows = self.cim("Win32_StartupCommand", properties="Name, Command, Location")
        disabled = self._disabled_startup_names()
        entries: list[dict[str, Any]] = []
        for row in rows:
            name = str(row.get("Name") or "")
            if not name:
                continue
            entries.append(
                {
                    "name": name,
                    "command": str(row.get("Command") or ""),
                    "enabled": name.lower() not in disabled,
                }
            )
        return entries

    def _disabled_startup_names(self) -> set[str]:
        # StartupApproved stores a binary blob whose first byte is odd when disabled.
        names: set[str] = set()
        subkey = r"Software\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run"
        for hive in ("HKEY_CURRENT_USER", "HKEY_LOCAL_MACHINE"):
            for name in self.registry.value_names(hive, subkey):
                value = self.registry.read(hive, subkey, name)
                if value is not None and isinstance(value.value, bytes | bytearray):
                    if value.value and value.value[0] % 2 == 1:
                        names.add(name.lower())
        return names

    def installed_apps(self) -> list[dict[str, str]]:
        """Return display name, version and publisher from the uninstall keys."""
        roots = (
            ("HKEY_LOCAL_MACHINE", r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"),
            ("HKEY_LOCAL_MACHINE", r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"),
            ("HKEY_CURRENT_USER", r"Software\Microsoft\Windows\CurrentVersion\Uninstall"),
        )
        seen: set[str] = set()
        apps: list[dict[str, str]] = []
        for hive, root in roots:
            for child in self.registry.subkeys(hive, root):
                subkey = f"{root}\\{child}"
                name = self.registry.read(hive, subkey, "DisplayName")
                if name is None or not str(name.value).strip():
                    continue
                display = str(name.value).strip()
                if display.lower() in seen:
                    continue
                seen.add(display.lower())
                version = self.registry.read(hive, subkey, "DisplayVersion")
                publisher = self.registry.read(hive, subkey, "Publisher")
                apps.append(
                    {
                        "name": display,
                        "version": str(version.value) if version else "",
                        "publisher": str(publisher.value) if publisher else "",
                    }
                )
        return apps

    def browser_cache_dirs(self, browser: str) -> list[Path]:
        """Return the cache directories for *browser* (Chrome, Microsoft Edge or Firefox)."""
        if browser == "Firefox":
            profiles = self.local_appdata / "Mozilla" / "Firefox" / "Profiles"
            if not profiles.is_dir():
                return []
            return [profile / "cache2" for profile in sorted(profiles.iterdir()) if profile.is_dir()]
        root = self.browser_profile_root(browser)
        if root is None:
            return []
        default = root / "Default"
        return [default / "Cache", default / "Code Cache", default / "GPUCache"]

    def browser_profile_root(self, browser: str) -> Path | None:
        """Return the user data directory for *browser*."""
        relative = BROWSER_DATA_DIRS.get(browser)
        if relative is None:
            return None
        base = self.appdata if browser == "Firefox" else self.local_appdata
        return base.joinpath(*relative)

    def events(
        self,
        log_name: str,
        ids: tuple[int, ...],
        *,
        since: datetime,
        providers: tuple[str, ...] = (),
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """Return events from *log_name* matching *ids* since *since*."""
        parts = [f"LogName='{log_name}'", f"Id=@({','.join(str(i) for i in ids)})"]
        if providers:
            parts.append("ProviderName=@(" + ",".join(f"'{p}'" for p in providers) + ")")
        parts.append(f"StartTime=(Get-Date '{since.astimezone(UTC).isoformat()}')")
        script = (
            "Get-WinEvent -FilterHashtable @{" + "; ".join(parts) + "} -ErrorAction SilentlyContinue"
            " | Select-Object @{n='TimeCreatedUtc';e={$_.TimeCreated.ToUniversalTime()}},"
            " Id, ProviderName, LevelDisplayName, Message"
        )
        return self.runner.ps_json(script, timeout=timeout or self.query_timeout)


def _shell32() -> Any:
    windll = getattr(ctypes, "windll", None)
    if windll is None:
        raise OSError("shell32 is only available on Windows")
    return windll.shell32


__all__ = [
    "BROWSER_DATA_DIRS",
    "BROWSER_EXECUTABLES",
    "BYTES_PER_MB",
    "SystemQueries",
    "directory_has_files",
    "folder_size_mb",
    "parse_ps_datetime",
]
