"""Scan history and comparison tests."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from endpointctl.diagnostics.models import (
    DiskDiagnostics,
    DriveInfo,
    EventLogDiagnostics,
    EventLogEntry,
    Issue,
    RamDiagnostics,
    ScanResult,
    Severity,
    StartupDiagnostics,
)
from endpointctl.history import (
    DEGRADED,
    IMPROVED,
    UNCHANGED,
    BeforeAfterSnapshot,
    ScanHistory,
    ScanSnapshot,
    compare,
)
from endpointctl.state import HISTORY_FILE, StateRegistry

START = datetime(2026, 10, 1, 9, 0, tzinfo=UTC)


def _snapshot(offset: int, score: int, **values: float) -> ScanSnapshot:
    return ScanSnapshot(timestamp=START + timedelta(hours=offset), health_score=score, **values)  # type: ignore[arg-type]


def test_from_scan_summarises_metrics() -> None:
    result = ScanResult(
        timestamp=START,
        ram=RamDiagnostics(
            percent_used=85.0,
            issues=(Issue("RAM", Severity.WARNING, "Memory usage is 85%"),),
        ),
        disk=DiskDiagnostics(
            drives=(DriveInfo("C:", 1000, 900, 100, 90.0),),
            issues=(Issue("Disk", Severity.CRITICAL, "Drive C: is 90% full"),),
        ),
        startup=StartupDiagnostics(enabled_count=12),
        event_log=EventLogDiagnostics(
            bsods=(EventLogEntry("BugCheck", 1001),),
            app_crashes=(EventLogEntry("Application Error", 1000),) * 2,
        ),
    )

    snapshot = ScanSnapshot.from_scan(result, 77)

    assert snapshot == ScanSnapshot(
        timestamp=START,
        health_score=77,
        disk_free_mb=100,
        ram_percent=85.0,
        critical_issues=1,
        issue_count=2,
        crash_count=3,
        startup_count=12,
    )


def test_history_is_bounded_and_ordered(state: StateRegistry) -> None:
    history = ScanHistory(state, limit=3)

    for index in range(5):
        history.record(_snapshot(index, 60 + index))

    stored = history.snapshots()
    assert [item.health_score for item in stored] == [62, 63, 64]
    assert history.previous() == stored[-1]


def test_malformed_entries_are_skipped(state: StateRegistry) -> None:
    state.write(
        HISTORY_FILE,
        {
            "snapshots": [
                {"timestamp": "not a date", "health_score": 10},
                {"timestamp": "2026-10-01T09:00:00", "health_score": "eighty"},
                {"timestamp": "2026-10-02T09:00:00", "health_score": 81},
            ]
        },
    )

    (snapshot,) = ScanHistory(state).snapshots()

    assert snapshot.health_score == 81
    assert snapshot.timestamp.tzinfo is not None


def test_empty_history(state: StateRegistry) -> None:
    history = ScanHistory(state)
    assert history.snapshots() == []
    assert history.previous() is None


def test_compare_directions() -> None:
    before = _snapshot(0, 70, disk_free_mb=1000, ram_percent=80.0, critical_issues=2, crash_count=4, startup_count=10)
    after = _snapshot(1, 85, disk_free_mb=900, ram_percent=80.0, critical_issues=1, crash_count=6, startup_count=10)

    deltas = {delta.metric: delta for delta in compare(before, after)}

    assert deltas["Health score"].direction == IMPROVED
    assert deltas["Health score"].delta == 15
    assert deltas["Disk free (MB)"].direction == DEGRADED
    assert deltas["RAM usage (%)"].direction == UNCHANGED
    assert deltas["Critical issues"].direction == IMPROVED
    assert deltas["Crashes"].direction == DEGRADED
    assert deltas["Startup items"].direction == UNCHANGED


def test_before_after_rows() -> None:
    before = _snapshot(0, 62, disk_free_mb=5000, ram_percent=90.0, issue_count=6)
    after = _snapshot(1, 80, disk_free_mb=7500, ram_percent=70.0, issue_count=3)

    rows = BeforeAfterSnapshot(before, after).rows()

    assert [row.metric for row in rows] == [
        "Health score",
        "Disk free (MB)",
        "RAM usage (%)",
        "Startup items",
        "Issues",
    ]
    assert [row.direction for row in rows] == [IMPROVED, IMPROVED, IMPROVED, UNCHANGED, IMPROVED]
