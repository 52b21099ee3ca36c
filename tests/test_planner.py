"""Remediation planner tests."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from endpointctl.diagnostics.models import (
    BatteryDiagnostics,
    BrowserDiagnostics,
    BrowserInfo,
    CpuDiagnostics,
    DiskDiagnostics,
    EventLogDiagnostics,
    EventLogEntry,
    ProcessInfo,
    RamDiagnostics,
    ScanResult,
)
from endpointctl.remediation import ActionRisk, ActionType, CooldownStore, build_plan
from endpointctl.remediation.planner import (
    POWER_CONFIG_WARNING,
    dedupe_actions,
    format_event_context,
)
from endpointctl.state import StateRegistry

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=UTC)


def _store(state: StateRegistry, now: datetime = NOW) -> CooldownStore:
    return CooldownStore(state, cooldown_days=7, clock=lambda: now)


def _bsods(count: int) -> tuple[EventLogEntry, ...]:
    return tuple(EventLogEntry(source="BugCheck", event_id=1001) for _ in range(count))


def _crashes(app: str, count: int) -> tuple[EventLogEntry, ...]:
    message = f"Faulting application name: {app}, version: 1.0"
    return tuple(
        EventLogEntry(source="Application Error", event_id=1000, message=message) for _ in range(count)
    )


def _keys(plan: list) -> list[str]:  # type: ignore[type-arg]
    return [action.key for action in plan]


def test_healthy_scan_has_empty_plan(state: StateRegistry) -> None:
    assert build_plan(ScanResult(), _store(state)) == []


def test_disk_candidates_are_ordered_by_reclaimable_space(state: StateRegistry) -> None:
    """Within the safe tier larger reclaims come first."""
    result = ScanResult(
        disk=DiskDiagnostics(
            windows_temp_mb=400,
            user_temp_mb=400,
            temp_has_files=True,
            recycle_bin_mb=2000,
            prefetch_mb=300,
            prefetch_has_files=True,
        )
    )

    plan = build_plan(result, _store(state))

    assert _keys(plan) == ["EmptyRecycleBin", "ClearTempFiles", "ClearPrefetch"]
    assert plan[1].estimated_free_mb == 800
    assert all(action.auto_selected for action in plan)


def test_temp_below_threshold_or_empty_is_not_offered(state: StateRegistry) -> None:
    big_but_empty = ScanResult(disk=DiskDiagnostics(windows_temp_mb=900, temp_has_files=False))
    small = ScanResult(disk=DiskDiagnostics(windows_temp_mb=100, temp_has_files=True))

    assert build_plan(big_but_empty, _store(state)) == []
    assert build_plan(small, _store(state)) == []


def test_risk_tier_dominates_ordering(state: StateRegistry) -> None:
    """Safe actions precede moderate ones, which precede reboot-requiring ones."""
    result = ScanResult(
        disk=DiskDiagnostics(
            software_distribution_mb=5000,
            software_distribution_has_files=True,
            windows_temp_mb=600,
            temp_has_files=True,
        ),
        event_log=EventLogDiagnostics(bsods=_bsods(1)),
    )

    plan = build_plan(result, _store(state))
    tiers = [action.risk for action in plan]

    assert tiers == sorted(
        tiers,
        key=[ActionRisk.SAFE, ActionRisk.MODERATE, ActionRisk.REQUIRES_REBOOT].index,
    )
    assert plan[0].key == "ClearTempFiles"
    assert plan[-1].key == "ScheduleMemoryDiagnostic"
    update_cache = next(action for action in plan if action.key == "ClearUpdateCache")
    assert update_cache.risk is ActionRisk.MODERATE
    assert update_cache.auto_selected is False


def test_protected_processes_are_never_offered(state: StateRegistry) -> None:
    """The heaviest non-critical process is the kill candidate."""
    result = ScanResult(
        ram=RamDiagnostics(
            percent_used=92.0,
            usage_flagged=True,
            top_processes=(
                ProcessInfo("explorer.exe", 10, 4000),
                ProcessInfo("svchost.exe", 11, 3000),
                ProcessInfo("Teams.exe", 42, 1500),
            ),
        )
    )

    plan = build_plan(result, _store(state))

    assert _keys(plan) == ["KillProcess:42:Teams.exe"]
    assert plan[0].auto_selected is False


def test_memory_pressure_without_candidate_escalates(state: StateRegistry) -> None:
    result = ScanResult(
        ram=RamDiagnostics(
            percent_used=95.0,
            usage_flagged=True,
            top_processes=(ProcessInfo("dwm.exe", 5, 2000),),
        )
    )

    (action,) = build_plan(result, _store(state))

    assert action.key == "Manual:RAM:1"
    assert action.action_type is ActionType.MANUAL_ONLY
    assert action.executable is False
    assert action.risk is ActionRisk.MODERATE


def test_first_occurrence_wins_on_duplicate_keys(state: StateRegistry) -> None:
    """The browser section's cache entry is kept over the crash-driven one."""
    result = ScanResult(
        browser=BrowserDiagnostics(browsers=(BrowserInfo("Chrome", cache_size_mb=900),)),
        event_log=EventLogDiagnostics(app_crashes=_crashes("chrome.exe", 6)),
    )

    plan = build_plan(result, _store(state))
    caches = [action for action in plan if action.key == "ClearBrowserCache:Chrome"]

    assert len(caches) == 1
    assert caches[0].category == "Browser"
    assert caches[0].remediation_category is None
    assert "ReRegisterComponents" in _keys(plan)
    assert "ClearWerReports" in _keys(plan)


def test_bsod_run_sfc_is_kept_over_app_crash_variant(state: StateRegistry) -> None:
    result = ScanResult(
        event_log=EventLogDiagnostics(bsods=_bsods(2), app_crashes=_crashes("notepad.exe", 5)),
    )

    plan = build_plan(result, _store(state))
    sfc = [action for action in plan if action.key == "RunSfc"]

    assert len(sfc) == 1
    assert sfc[0].remediation_category == "BSODs"
    assert len(set(_keys(plan))) == len(plan)


def test_dedupe_actions_preserves_order(state: StateRegistry) -> None:
    result = ScanResult(event_log=EventLogDiagnostics(bsods=_bsods(1)))
    plan = build_plan(result, _store(state))

    doubled = dedupe_actions(plan + plan)

    assert doubled == plan


@pytest.mark.parametrize(("days_ago", "cooling"), [(3, True), (8, False)])
def test_cooldown_replaces_governed_actions(state: StateRegistry, days_ago: int, cooling: bool) -> None:
    """Inside the window BSOD repairs become a manual entry; crash dumps stay offered."""
    store = _store(state)
    store.record(["BSODs"], when=NOW - timedelta(days=days_ago))
    result = ScanResult(event_log=EventLogDiagnostics(bsods=_bsods(3)))

    keys = _keys(build_plan(result, store))

    assert "ClearCrashDumps" in keys
    if cooling:
        assert "RunSfc" not in keys
        assert "Manual:Event Log:1" in keys
    else:
        assert {"RunSfc", "RunDism", "InstallDriverUpdates", "ScheduleMemoryDiagnostic"} <= set(keys)
        assert not [key for key in keys if key.startswith("Manual:")]


def test_cooling_down_shutdowns_escalate(state: StateRegistry) -> None:
    store = _store(state)
    store.record(["UnexpectedShutdowns"], when=NOW - timedelta(days=1))
    result = ScanResult(event_log=EventLogDiagnostics(unexpected_shutdowns=_bsods(2)))

    plan = build_plan(result, store)

    assert _keys(plan) == ["Manual:Event Log:1"]
    assert "since last fix" in plan[0].description


def test_shutdown_repairs_carry_power_warning(state: StateRegistry) -> None:
    result = ScanResult(event_log=EventLogDiagnostics(unexpected_shutdowns=_bsods(1)))

    plan = {action.key: action for action in build_plan(result, _store(state))}

    assert set(plan) == {"DisableFastStartup", "RepairPowerConfig"}
    assert plan["RepairPowerConfig"].warning == POWER_CONFIG_WARNING
    assert plan["DisableFastStartup"].remediation_category == "UnexpectedShutdowns"


def test_performance_section(state: StateRegistry) -> None:
    result = ScanResult(
        cpu=CpuDiagnostics(load_percent=70.0, load_flagged=True),
        battery=BatteryDiagnostics(power_plan="Power saver"),
    )

    plan = build_plan(result, _store(state))

    assert set(_keys(plan)) == {"OpenResourceMonitor", "SetPowerPlanBalanced"}
    assert next(a for a in plan if a.key == "OpenResourceMonitor").action_type is ActionType.SHORTCUT


def test_format_event_context() -> None:
    assert format_event_context(3, "BSOD", None) == "3 BSOD(s) detected"
    text = format_event_context(2, "disk error", NOW)
    assert text.startswith("2 new disk error(s) since last fix on ")
    assert " at " in text
