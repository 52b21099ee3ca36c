"""Health scoring for diagnostic scan results.

The score starts at 100 and each rule in :data:`DEDUCTION_RULES` subtracts
points for one condition. Rules only read a :class:`ScanResult`, so the same
scan always produces the same score. Domains whose phase was inconclusive keep
their empty defaults and therefore trigger no rule.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .diagnostics.models import ScanResult

MAX_SCORE = 100
MIN_SCORE = 0


@dataclass(slots=True, frozen=True)
class DeductionRule:
    """A named condition and the points it costs."""

    id: str
    description: str
    deduct: Callable[[ScanResult], int]


@dataclass(slots=True, frozen=True)
class Deduction:
    """A rule that fired for a given scan."""

    rule_id: str
    description: str
    points: int


def _ram(result: ScanResult) -> int:
    percent = result.ram.percent_used
    if percent >= 90:
        return 10
    if percent >= 80:
        return 5
    return 0


def _bsod(result: ScanResult) -> int:
    return min(4 * len(result.event_log.bsods), 10)


def _shutdowns(result: ScanResult) -> int:
    count = len(result.event_log.unexpected_shutdowns)
    if count >= 3:
        return 5
    if count >= 1:
        return 2
    return 0


def _flat(points: int, condition: Callable[[ScanResult], bool]) -> Callable[[ScanResult], int]:
    def _deduct(result: ScanResult) -> int:
        return points if condition(result) else 0

    return _deduct


DEDUCTION_RULES: tuple[DeductionRule, ...] = (
    DeductionRule("cpu-load", "CPU load above 50%", _flat(8, lambda r: r.cpu.load_percent > 50)),
    DeductionRule("cpu-temperature", "CPU temperature high", _flat(3, lambda r: r.cpu.temperature_flagged)),
    DeductionRule("ram-usage", "Memory usage high", _ram),
    DeductionRule(
        "disk-space",
        "A fixed drive is at least 90% full",
        _flat(8, lambda r: any(d.percent_used >= 90 for d in r.disk.drives)),
    ),
    DeductionRule(
        "disk-health",
        "A drive reports degraded health",
        _flat(10, lambda r: any(d.health_status not in {"Healthy", "Unknown"} for d in r.disk.drives)),
    ),
    DeductionRule("uptime", "Not restarted in over 7 days", _flat(3, lambda r: r.system.uptime_flagged)),
    DeductionRule("battery", "Battery health below 60%", _flat(3, lambda r: r.battery.health_flagged)),
    DeductionRule("startup", "Too many startup programs", _flat(3, lambda r: r.startup.too_many_flagged)),
    DeductionRule("antivirus", "No antivirus registered", _flat(10, lambda r: r.antivirus.no_antivirus)),
    DeductionRule("bitlocker", "BitLocker is off", _flat(7, lambda r: r.antivirus.bitlocker_off)),
    DeductionRule("pending-reboot", "Restart pending for updates", _flat(5, lambda r: r.windows_update.reboot_pending)),
    DeductionRule(
        "update-service",
        "Windows Update service disabled",
        _flat(3, lambda r: r.windows_update.service_disabled),
    ),
    DeductionRule("bsod", "Blue screen crashes", _bsod),
    DeductionRule("unexpected-shutdowns", "Unexpected shutdowns", _shutdowns),
    DeductionRule("disk-errors", "Disk errors in the event log", _flat(5, lambda r: bool(r.event_log.disk_errors))),
    DeductionRule("app-crashes", "Frequent application crashes", _flat(3, lambda r: len(r.event_log.app_crashes) >= 5)),
    DeductionRule("gpu-driver", "GPU driver outdated", _flat(2, lambda r: r.gpu.driver_outdated)),
    DeductionRule(
        "office-repair",
        "Office needs repair",
        _flat(2, lambda r: r.office.installed and r.office.repair_needed),
    ),
    DeductionRule(
        "profile-corruption",
        "User profile corruption",
        _flat(5, lambda r: r.user_profile.corruption_detected),
    ),
)


def score_breakdown(result: ScanResult) -> list[Deduction]:
    """Return the rules that fired for *result* with their point values."""
    fired: list[Deduction] = []
    for rule in DEDUCTION_RULES:
        points = rule.deduct(result)
        if points:
            fired.append(Deduction(rule.id, rule.description, points))
    return fired


def score(result: ScanResult) -> int:
    """Return the health score of *result*, clamped to 0..100."""
    total = sum(deduction.points for deduction in score_breakdown(result))
    return max(MIN_SCORE, min(MAX_SCORE, MAX_SCORE - total))


__all__ = ["DEDUCTION_RULES", "Deduction", "DeductionRule", "score", "score_breakdown"]
