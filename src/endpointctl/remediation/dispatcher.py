"""Sequential execution of selected remediation actions."""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from ..cancellation import CancellationToken
from ..providers.shell import UnsafeArgumentError
from ..state.registry import StateRegistryError
from .actions import (
    ALL_KINDS,
    ActionKind,
    ActionResult,
    ActionStatus,
    ManualEscalation,
    OptimizationAction,
)
from .cooldown import CooldownStore
from .procedures import PROCEDURES, Procedure, RemediationHost

LOGGER = logging.getLogger(__name__)

ResultCallback = Callable[[OptimizationAction, ActionResult], None]

_PROCEDURES: dict[type[ActionKind], Procedure] = dict(PROCEDURES)

# Kinds that are reported but never executed.
_NOT_DISPATCHED: frozenset[type[ActionKind]] = frozenset({ManualEscalation})


def _check_procedure_table() -> None:
    missing = [
        kind.__name__
        for kind in ALL_KINDS
        if kind not in _PROCEDURES and kind not in _NOT_DISPATCHED
    ]
    if missing:
        raise RuntimeError(f"No remediation procedure registered for: {', '.join(missing)}")


_check_procedure_table()


def _failed(action: OptimizationAction, error: str) -> ActionResult:
    return ActionResult(key=action.key, status=ActionStatus.FAILED, error=error)


def run_action(action: OptimizationAction, host: RemediationHost) -> ActionResult:
    """Execute one action, converting every fault into a ``Failed`` result."""
    if not action.executable or type(action.kind) in _NOT_DISPATCHED:
        return ActionResult(
            key=action.key,
            status=ActionStatus.SKIPPED,
            detail="manual action; no automation available",
        )
    procedure = _PROCEDURES[type(action.kind)]
    LOGGER.debug("dispatching %s", action.key)
    try:
        result = procedure(action, host)
    except UnsafeArgumentError as exc:
        LOGGER.debug("%s rejected: %s", action.key, exc)
        message = str(exc)
        if not message.startswith("unsafe argument"):
            message = f"unsafe argument: {message}"
        return _failed(action, message)
    except Exception as exc:
        LOGGER.debug("%s failed", action.key, exc_info=True)
        return _failed(action, str(exc) or exc.__class__.__name__)
    LOGGER.debug("%s finished: %s", action.key, result.status.value)
    return result


def dispatch(
    actions: Sequence[OptimizationAction],
    host: RemediationHost,
    cancel: CancellationToken | None = None,
    cooldown: CooldownStore | None = None,
    *,
    on_result: ResultCallback | None = None,
) -> list[ActionResult]:
    """Run *actions* one at a time in the given order.

    Cancellation is polled between actions; anything not yet started is
    reported ``Skipped``. Once the batch ends, the cooldown categories of
    actions that succeeded are stamped with the current time; a cooldown write
    failure is logged and never discards the results.
    """
    results: list[ActionResult] = []
    for action in actions:
        if cancel is not None and cancel.cancelled:
            result = ActionResult(key=action.key, status=ActionStatus.SKIPPED, detail="cancelled")
        else:
            result = run_action(action, host)
        results.append(result)
        if on_result is not None:
            on_result(action, result)

    if cooldown is not None:
        categories = {
            action.remediation_category
            for action, result in zip(actions, results, strict=True)
            if action.remediation_category and result.succeeded
        }
        try:
            recorded = cooldown.record(categories)
        except StateRegistryError as exc:
            LOGGER.warning("could not record cooldown for %s: %s", ", ".join(sorted(categories)), exc)
        else:
            if recorded:
                LOGGER.debug("cooldown recorded for %s", ", ".join(recorded))
    return results


__all__ = ["dispatch", "run_action"]
