"""Tests for the phase scheduler."""

from __future__ import annotations

import threading

from endpointctl.cancellation import CancellationToken
from endpointctl.config import ScanConfig
from endpointctl.diagnostics import (
    PROBE_ORDER,
    PhaseOutcome,
    PhaseStatus,
    ProbeContext,
    ProbeDefinition,
    ScanOptions,
    collect_probes,
    resolve_timeout,
    run_scan,
)
from endpointctl.diagnostics.models import CpuDiagnostics, RamDiagnostics
from endpointctl.scoring import score

from tests.conftest import FakeSystem


def _probe(probe_id: str, run, *, timeout: float = 1.0, opt_in: bool = False) -> ProbeDefinition:  # type: ignore[no-untyped-def]
    return ProbeDefinition(id=probe_id, run=run, timeout=timeout, opt_in=opt_in)  # type: ignore[arg-type]


def test_failing_probe_is_isolated(scan_context: ProbeContext) -> None:
    """A probe that raises becomes an inconclusive phase; the rest still run."""

    def boom(context: ProbeContext) -> CpuDiagnostics:
        raise RuntimeError("WMI unavailable")

    result = run_scan(
        scan_context,
        probes=[
            _probe("cpu", boom),
            _probe("ram", lambda context: RamDiagnostics(total_mb=8192, percent_used=42.0)),
        ],
    )

    cpu_phase, ram_phase = result.phases
    assert cpu_phase.status is PhaseStatus.INCONCLUSIVE
    assert "WMI unavailable" in cpu_phase.message
    assert cpu_phase.fault is not None and "RuntimeError" in cpu_phase.fault["exception"]
    assert ram_phase.status is PhaseStatus.COMPLETED
    assert result.cpu == CpuDiagnostics()
    assert result.ram.percent_used == 42.0
    assert result.inconclusive_phases == (cpu_phase,)


def test_slow_probe_times_out_and_is_abandoned(scan_context: ProbeContext) -> None:
    """A probe exceeding its budget is marked inconclusive without blocking the scan."""
    release = threading.Event()

    def hang(context: ProbeContext) -> CpuDiagnostics:
        release.wait(5)
        return CpuDiagnostics(load_percent=99.0)

    try:
        result = run_scan(
            scan_context,
            probes=[
                _probe("cpu", hang, timeout=0.05),
                _probe("ram", lambda context: RamDiagnostics()),
            ],
        )
    finally:
        release.set()

    assert result.phases[0].status is PhaseStatus.INCONCLUSIVE
    assert "timed out after 0.05s" in result.phases[0].message
    assert result.phases[1].status is PhaseStatus.COMPLETED
    assert result.cpu.load_percent == 0.0


def test_cancellation_skips_remaining_phases(scan_context: ProbeContext) -> None:
    """Cancelling between phases marks the scan incomplete."""
    token = CancellationToken()
    seen: list[PhaseOutcome] = []

    def on_phase(outcome: PhaseOutcome) -> None:
        seen.append(outcome)
        token.cancel()

    result = run_scan(
        scan_context,
        token,
        probes=[
            _probe("cpu", lambda context: CpuDiagnostics(load_percent=12.0)),
            _probe("ram", lambda context: RamDiagnostics(percent_used=50.0)),
        ],
        on_phase=on_phase,
    )

    assert result.incomplete is True
    assert [phase.status for phase in result.phases] == [PhaseStatus.COMPLETED, PhaseStatus.SKIPPED]
    assert result.phases[1].message == "cancelled"
    assert result.cpu.load_percent == 12.0
    assert result.ram == RamDiagnostics()
    assert len(seen) == 2


def test_full_scan_runs_every_phase_in_order(scan_context: ProbeContext) -> None:
    """Every domain runs in the fixed order and a healthy host scores 100."""
    result = run_scan(scan_context)

    assert tuple(phase.probe_id for phase in result.phases) == PROBE_ORDER
    assert result.scanned_user == "alice"
    assert result.incomplete is False
    assert result.issues == ()
    assert score(result) == 100


def test_throughput_requires_opt_in(system: FakeSystem) -> None:
    """The throughput probe is skipped unless requested."""
    default = run_scan(ProbeContext(system=system, config=ScanConfig(cpu_samples=1)))
    throughput = next(phase for phase in default.phases if phase.probe_id == "throughput")
    assert throughput.status is PhaseStatus.SKIPPED
    assert throughput.message == "opt-in required"
    assert default.throughput.measured is False

    opted = run_scan(
        ProbeContext(
            system=system,
            config=ScanConfig(cpu_samples=1),
            options=ScanOptions(include_throughput=True),
        )
    )
    assert opted.throughput.measured is True
    assert opted.throughput.download_mbps == 250.0


def test_resolve_timeout_precedence(scan_context: ProbeContext) -> None:
    """Per-probe overrides beat explicit budgets, which beat the fast/slow split."""
    assert resolve_timeout(scan_context, "cpu") == 10.0
    assert resolve_timeout(scan_context, "disk") == 30.0
    assert resolve_timeout(scan_context, "event_log") == 60.0

    tuned = ProbeContext(
        system=scan_context.system,
        config=ScanConfig(probe_timeouts={"event_log": 120.0}),
    )
    assert resolve_timeout(tuned, "event_log") == 120.0
    probes = {probe.id: probe for probe in collect_probes(tuned)}
    assert probes["event_log"].timeout == 120.0
    assert probes["throughput"].opt_in is True
