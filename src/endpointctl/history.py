"""Scan history snapshots and before/after comparisons."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .diagnostics.models import ScanResult, Severity
from .state.registry import HISTORY_FILE, StateRegistry

LOGGER = logging.getLogger(__name__)

HISTORY_SECTION = "snapshots"
DEFAULT_HISTORY_LIMIT = 50

IMPROVED = 1
UNCHANGED = 0
DEGRADED = -1


@dataclass(slots=True, frozen=True)
class ScanSnapshot:
    """Headline metrics of one scan."""

    timestamp: datetime
    health_score: int
    disk_free_mb: int = 0
    ram_percent: float = 0.0
    critical_issues: int = 0
    issue_count: int = 0
    crash_count: int = 0
    startup_count: int = 0

    @classmethod
    def from_scan(cls, result: ScanResult, health_score: int) -> ScanSnapshot:
        """Summarise *result* scored at *health_score*."""
        issues = result.issues
        event_log = result.event_log
        return cls(
            timestamp=result.timestamp,
            health_score=health_score,
            disk_free_mb=result.disk.system_free_mb,
            ram_percent=result.ram.percent_used,
            critical_issues=sum(1 for issue in issues if issue.severity is Severity.CRITICAL),
            issue_count=len(issues),
            crash_count=len(event_log.bsods) + len(event_log.app_crashes),
            startup_count=result.startup.enabled_count,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the mapping persisted in ``history.yml``."""
        return {
            "timestamp": self.timestamp.astimezone(UTC).isoformat(),
            "health_score": self.health_score,
            "disk_free_mb": self.disk_free_mb,
            "ram_percent": self.ram_percent,
            "critical_issues": self.critical_issues,
            "issue_count": self.issue_count,
            "crash_count": self.crash_count,
            "startup_count": self.startup_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanSnapshot | None:
        """Parse a persisted mapping, returning ``None`` when it is unusable."""
        raw_stamp = data.get("timestamp")
        if isinstance(raw_stamp, datetime):
            stamp = raw_stamp
        else:
            try:
                stamp = datetime.fromisoformat(str(raw_stamp))
            except ValueError:
                return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=UTC)
        try:
            return cls(
                timestamp=stamp,
                health_score=int(data.get("health_score", 0)),
                disk_free_mb=int(data.get("disk_free_mb", 0)),
                ram_percent=float(data.get("ram_percent", 0.0)),
                critical_issues=int(data.get("critical_issues", 0)),
                issue_count=int(data.get("issue_count", 0)),
                crash_count=int(data.get("crash_count", 0)),
                startup_count=int(data.get("startup_count", 0)),
            )
        except (TypeError, ValueError):
            return None


@dataclass(slots=True, frozen=True)
class MetricDelta:
    """Change of one metric between two snapshots."""

    metric: str
    previous: float
    current: float
    direction: int

    @property
    def delta(self) -> float:
        """Return ``current - previous``."""
        return self.current - self.previous


# metric -> True when a higher value is better
_METRICS: tuple[tuple[str, str, bool], ...] = (
    ("health_score", "Health score", True),
    ("disk_free_mb", "Disk free (MB)", True),
    ("ram_percent", "RAM usage (%)", False),
    ("critical_issues", "Critical issues", False),
    ("crash_count", "Crashes", False),
    ("startup_count", "Startup items", False),
)

_BEFORE_AFTER_METRICS: tuple[tuple[str, str, bool], ...] = (
    ("health_score", "Health score", True),
    ("disk_free_mb", "Disk free (MB)", True),
    ("ram_percent", "RAM usage (%)", False),
    ("startup_count", "Startup items", False),
    ("issue_count", "Issues", False),
)


def _direction(previous: float, current: float, higher_is_better: bool) -> int:
    if current == previous:
        return UNCHANGED
    improved = current > previous if higher_is_better else current < previous
    return IMPROVED if improved else DEGRADED


def _deltas(
    previous: ScanSnapshot,
    current: ScanSnapshot,
    metrics: tuple[tuple[str, str, bool], ...],
) -> list[MetricDelta]:
    deltas: list[MetricDelta] = []
    for attr, label, higher_is_better in metrics:
        before = getattr(previous, attr)
        after = getattr(current, attr)
        deltas.append(MetricDelta(label, before, after, _direction(before, after, higher_is_better)))
    return deltas


def compare(previous: ScanSnapshot, current: ScanSnapshot) -> list[MetricDelta]:
    """Return per-metric deltas with +1 improved, -1 degraded, 0 unchanged."""
    return _deltas(previous, current, _METRICS)


@dataclass(slots=True, frozen=True)
class BeforeAfterSnapshot:
    """Metrics captured before and after a remediation batch."""

    before: ScanSnapshot
    after: ScanSnapshot

    def rows(self) -> list[MetricDelta]:
        """Return the metrics shown after ``fix``."""
        return _deltas(self.before, self.after, _BEFORE_AFTER_METRICS)


class ScanHistory:
    """Bounded list of snapshots persisted in ``history.yml``."""

    def __init__(self, registry: StateRegistry, *, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        """Bind the history to *registry*, keeping at most *limit* snapshots."""
        self._registry = registry
        self.limit = max(1, limit)

    def snapshots(self) -> list[ScanSnapshot]:
        """Return stored snapshots, oldest first."""
        parsed: list[ScanSnapshot] = []
        for raw in self._registry.read_entries(HISTORY_FILE, HISTORY_SECTION):
            snapshot = ScanSnapshot.from_dict(raw)
            if snapshot is None:
                LOGGER.debug("ignoring malformed history entry: %r", raw)
                continue
            parsed.append(snapshot)
        return parsed

    def previous(self) -> ScanSnapshot | None:
        """Return the most recent stored snapshot."""
        snapshots = self.snapshots()
        return snapshots[-1] if snapshots else None

    def record(self, snapshot: ScanSnapshot) -> list[ScanSnapshot]:
        """Append *snapshot*, trimming the oldest entries beyond the limit."""
        snapshots = self.snapshots()
        snapshots.append(snapshot)
        snapshots = snapshots[-self.limit :]
        self._registry.write(
            HISTORY_FILE,
            {HISTORY_SECTION: [item.to_dict() for item in snapshots]},
        )
        return snapshots


__all__ = [
    "BeforeAfterSnapshot",
    "MetricDelta",
    "ScanHistory",
    "ScanSnapshot",
    "compare",
]
