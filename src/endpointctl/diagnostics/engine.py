"""Phase scheduler for diagnostic scans."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
import traceback
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from ..cancellation import CancellationToken
from .models import (
    DomainResult,
    PhaseOutcome,
    PhaseStatus,
    ProbeContext,
    ProbeDefinition,
    ScanResult,
)
from .probes import collect_probes

LOGGER = logging.getLogger(__name__)

PhaseCallback = Callable[[PhaseOutcome], None]


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _fault(exc: BaseException) -> dict[str, str]:
    return {
        "exception": repr(exc),
        "traceback": "".join(traceback.format_exception(exc)),
    }


def _inconclusive(probe: ProbeDefinition, exc: BaseException, duration_ms: int) -> PhaseOutcome:
    if isinstance(exc, TimeoutError):
        message = f"Probe '{probe.id}' timed out after {probe.timeout:g}s"
    else:
        message = f"Probe '{probe.id}' raised an unexpected error: {exc}"
    return PhaseOutcome(
        probe_id=probe.id,
        status=PhaseStatus.INCONCLUSIVE,
        duration_ms=duration_ms,
        message=message,
        fault=_fault(exc),
    )


def _run_with_timeout(probe: ProbeDefinition, context: ProbeContext) -> DomainResult:
    """Run *probe* on a daemon worker and wait at most ``probe.timeout`` seconds.

    A worker that outlives its budget is abandoned, not killed.
    """
    future: concurrent.futures.Future[DomainResult] = concurrent.futures.Future()

    def _worker() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(probe.run(context))
        except Exception as exc:
            future.set_exception(exc)

    thread = threading.Thread(target=_worker, name=f"probe-{probe.id}", daemon=True)
    thread.start()
    return future.result(timeout=probe.timeout)


def _run_phase(
    probe: ProbeDefinition,
    context: ProbeContext,
) -> tuple[PhaseOutcome, DomainResult | None]:
    start = time.perf_counter()
    try:
        result = _run_with_timeout(probe, context)
    except Exception as exc:
        LOGGER.debug("phase %s inconclusive: %r", probe.id, exc)
        return _inconclusive(probe, exc, _duration_ms(start)), None
    outcome = PhaseOutcome(
        probe_id=probe.id,
        status=PhaseStatus.COMPLETED,
        duration_ms=_duration_ms(start),
        message=f"{len(result.issues)} issue(s)",
    )
    return outcome, result


def _opted_in(context: ProbeContext) -> bool:
    return context.options.include_throughput or context.config.include_throughput


class PhaseScheduler:
    """Coordinator that runs probes one phase at a time."""

    def __init__(self, context: ProbeContext, *, on_phase: PhaseCallback | None = None) -> None:
        """Store the probe execution context and optional progress callback."""
        self._context = context
        self._on_phase = on_phase

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        cancel: CancellationToken | None = None,
    ) -> ScanResult:
        """Run *probes* in order and assemble the immutable scan result."""
        started_at = datetime.now(UTC)
        start = time.perf_counter()
        phases: list[PhaseOutcome] = []
        domains: dict[str, Any] = {}
        incomplete = False

        for probe in probes:
            if cancel is not None and cancel.cancelled:
                incomplete = True
                outcome = PhaseOutcome(probe.id, PhaseStatus.SKIPPED, message="cancelled")
            elif probe.opt_in and not _opted_in(self._context):
                outcome = PhaseOutcome(probe.id, PhaseStatus.SKIPPED, message="opt-in required")
            else:
                outcome, result = _run_phase(probe, self._context)
                if result is not None:
                    domains[probe.id] = result
            phases.append(outcome)
            if self._on_phase is not None:
                self._on_phase(outcome)

        return ScanResult(
            timestamp=started_at,
            scanned_user=self._context.system.username(),
            duration_seconds=round(time.perf_counter() - start, 2),
            incomplete=incomplete,
            phases=tuple(phases),
            **domains,
        )


def run_scan(
    context: ProbeContext,
    cancel: CancellationToken | None = None,
    *,
    probes: Sequence[ProbeDefinition] | None = None,
    on_phase: PhaseCallback | None = None,
) -> ScanResult:
    """Run a full diagnostic scan and return its :class:`ScanResult`."""
    selected = probes if probes is not None else collect_probes(context)
    return PhaseScheduler(context, on_phase=on_phase).run(selected, cancel=cancel)


__all__ = ["PhaseScheduler", "run_scan"]
