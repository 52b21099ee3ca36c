"""Tests for individual diagnostic probes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import PureWindowsPath

import pytest

from endpointctl.diagnostics import ProbeContext, Severity
from endpointctl.diagnostics import probes
from endpointctl.diagnostics.models import extract_faulting_app
from tests.conftest import HKLM, FakeRegistry, FakeSystem, write_files


def test_cpu_flags_high_load(scan_context: ProbeContext, system: FakeSystem) -> None:
    """Load above 50% is a warning; 80% and above is critical."""
    system.cpu_load = 60.0
    result = probes.probe_cpu(scan_context)
    assert result.load_flagged is True
    assert result.issues[0].severity is Severity.WARNING

    system.cpu_load = 85.0
    assert probes.probe_cpu(scan_context).issues[0].severity is Severity.CRITICAL

    system.cpu_load = 50.0
    assert probes.probe_cpu(scan_context).issues == ()


def test_ram_flags_usage_and_small_installs(scan_context: ProbeContext, system: FakeSystem) -> None:
    """High usage and less than 8 GB installed both raise issues."""
    system.memory = (4096, 3700, 396, 90.3)

    result = probes.probe_ram(scan_context)

    assert result.usage_flagged is True
    assert result.insufficient is True
    assert [issue.severity for issue in result.issues] == [Severity.CRITICAL, Severity.INFO]


def test_disk_reports_full_and_unhealthy_drives(scan_context: ProbeContext, system: FakeSystem) -> None:
    """A full drive and a degraded physical disk are flagged."""
    system.drives = [
        {"letter": "C:", "total_mb": 100000, "used_mb": 95000, "free_mb": 5000, "percent_used": 95.0}
    ]
    system.disk_health = ["Warning"]
    write_files(system.user_temp_dir, 2)

    result = probes.probe_disk(scan_context)

    assert result.drives[0].usage_flagged is True
    assert result.drives[0].health_status == "Warning"
    assert result.temp_has_files is True
    assert result.windows_old_exists is False
    assert len(result.issues) == 2


def test_battery_wear_is_flagged(scan_context: ProbeContext, system: FakeSystem) -> None:
    """Full-charge capacity below 60% of design is a warning."""
    assert probes.probe_battery(scan_context).has_battery is False

    system.battery_info = {"percent": 80, "plugged": False}
    system.capacity = (50000, 25000)

    result = probes.probe_battery(scan_context)

    assert result.has_battery is True
    assert result.health_percent == 50.0
    assert result.health_flagged is True
    assert result.power_source == "Battery"


def test_visual_flags_missing_preferences(scan_context: ProbeContext, registry: FakeRegistry) -> None:
    """Missing transparency or animation values count as enabled."""
    registry.values.clear()

    result = probes.probe_visual(scan_context)

    assert result.transparency_enabled is True
    assert result.animations_enabled is True
    assert len(result.issues) == 1


def test_antivirus_and_bitlocker(scan_context: ProbeContext, system: FakeSystem) -> None:
    """No registered product is critical; an unencrypted drive is a warning."""
    system.cim_rows["AntiVirusProduct"] = []
    system.bitlocker = "Not Encrypted"

    result = probes.probe_antivirus(scan_context)

    assert result.no_antivirus is True
    assert result.bitlocker_off is True
    assert [issue.severity for issue in result.issues] == [Severity.CRITICAL, Severity.WARNING]


def test_windows_update_pending_reboot_and_disabled_service(
    scan_context: ProbeContext,
    system: FakeSystem,
    registry: FakeRegistry,
) -> None:
    """A RebootPending key and a disabled wuauserv are both flagged."""
    registry.keys.add(
        (HKLM, r"SOFTWARE\Microsoft\Windows\CurrentVersion\Component Based Servicing\RebootPending")
    )
    system.services.set_start_type("wuauserv", "disabled")

    result = probes.probe_windows_update(scan_context)

    assert result.pending_updates == "Reboot required"
    assert result.reboot_pending is True
    assert result.service_disabled is True
    assert len(result.issues) == 2


def test_outlook_skipped_when_not_installed(scan_context: ProbeContext) -> None:
    """Without the App Paths registration the probe reports not installed."""
    result = probes.probe_outlook(scan_context)
    assert result.installed is False
    assert result.data_files == ()


def test_outlook_lists_data_files(
    scan_context: ProbeContext,
    system: FakeSystem,
    registry: FakeRegistry,
) -> None:
    """OST files under the local Outlook folder are listed with their size."""
    registry.keys.add((HKLM, probes.APP_PATHS + r"\OUTLOOK.EXE"))
    outlook_dir = system.local_appdata / "Microsoft" / "Outlook"
    outlook_dir.mkdir(parents=True)
    (outlook_dir / "alice@example.com.ost").write_bytes(b"x" * 2048)

    result = probes.probe_outlook(scan_context)

    assert result.installed is True
    assert [PureWindowsPath(item.path).name for item in result.data_files] == ["alice@example.com.ost"]
    assert result.issues == ()


def test_browser_counts_tabs_and_cache(scan_context: ProbeContext, system: FakeSystem) -> None:
    """Only browsers with a profile are reported; helpers are not counted as tabs."""
    chrome_root = system.local_appdata / "Google" / "Chrome" / "User Data"
    write_files(chrome_root / "Default" / "Cache", 1)
    (chrome_root / "Default" / "Extensions" / "abc").mkdir(parents=True)
    system.running["chrome.exe"] = 40

    result = probes.probe_browser(scan_context)

    (chrome,) = result.browsers
    assert chrome.name == "Chrome"
    assert chrome.open_tabs == 36
    assert chrome.extension_count == 1
    assert [issue.category for issue in result.issues] == ["Browser"]


def test_user_profile_detects_backup_profile_key(
    scan_context: ProbeContext,
    registry: FakeRegistry,
) -> None:
    """A ``.bak`` ProfileList entry marks the profile as corrupted."""
    registry.keys.add(
        (HKLM, r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList\S-1-5-21-1000.bak")
    )

    result = probes.probe_user_profile(scan_context)

    assert result.corruption_detected is True
    assert result.issues[-1].severity is Severity.CRITICAL


def test_office_repair_needed_when_word_missing(
    scan_context: ProbeContext,
    registry: FakeRegistry,
) -> None:
    """Click-to-Run Office without a WINWORD registration needs repair."""
    registry.set(
        HKLM,
        r"SOFTWARE\Microsoft\Office\ClickToRun\Configuration",
        "VersionToReport",
        "16.0.17029.20108",
        "REG_SZ",
    )

    result = probes.probe_office(scan_context)

    assert result.installed is True
    assert result.version == "16.0.17029.20108"
    assert result.repair_needed is True


def test_software_matches_eol_and_bloatware(
    scan_context: ProbeContext,
    system: FakeSystem,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Installed apps are matched case-insensitively against both lists."""
    apps = [
        {"name": "Adobe Flash Player 32 NPAPI", "version": "32.0"},
        {"name": "WildTangent Games", "version": "1.0"},
        {"name": "7-Zip 23.01", "version": "23.01"},
    ]
    monkeypatch.setattr(system, "installed_apps", lambda: apps)

    result = probes.probe_software(scan_context)

    assert result.total_count == 3
    assert [app.name for app in result.eol_apps] == ["Adobe Flash Player 32 NPAPI"]
    assert [app.name for app in result.bloatware_apps] == ["WildTangent Games"]


def test_gpu_driver_age(scan_context: ProbeContext, system: FakeSystem) -> None:
    """Drivers older than a year are flagged."""
    old = (datetime.now(UTC) - timedelta(days=400)).isoformat()
    system.cim_rows["Win32_VideoController"] = [
        {"Name": "Intel UHD Graphics", "DriverVersion": "31.0.101", "DriverDate": old}
    ]

    result = probes.probe_gpu(scan_context)

    assert result.name == "Intel UHD Graphics"
    assert result.driver_outdated is True


def test_event_log_groups_events(scan_context: ProbeContext, system: FakeSystem) -> None:
    """Events are grouped by kind; app crashes below five are not flagged."""
    system.add_event("System", 1001, "Microsoft-Windows-WER-SystemErrorReporting")
    system.add_event("System", 41, "Microsoft-Windows-Kernel-Power")
    system.add_event("System", 7, "disk")
    for _ in range(4):
        system.add_event(
            "Application",
            1000,
            "Application Error",
            "Faulting application name: OUTLOOK.EXE, version: 16.0",
        )

    result = probes.probe_event_log(scan_context)

    assert len(result.bsods) == 1
    assert len(result.unexpected_shutdowns) == 1
    assert len(result.disk_errors) == 1
    assert len(result.app_crashes) == 4
    assert result.top_crashing_apps() == [("OUTLOOK.EXE", 4)]
    assert [issue.message.split(" ")[1] for issue in result.issues] == ["blue", "disk", "unexpected"]


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Faulting application name: chrome.exe, version: 120.0", "chrome.exe"),
        ("The program Teams.exe version 1.6 stopped interacting with Windows", "Teams.exe"),
        ("Something unrelated happened", None),
    ],
)
def test_extract_faulting_app(message: str, expected: str | None) -> None:
    assert extract_faulting_app(message) == expected
