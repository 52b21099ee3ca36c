"""Remediation planning, dispatch and verification."""
from __future__ import annotations

from .actions import (
    ActionResult,
    ActionRisk,
    ActionStatus,
    ActionType,
    ImpactLevel,
    OptimizationAction,
    VerificationOutcome,
    VerificationStatus,
)
from .cooldown import COOLDOWN_CATEGORIES, CooldownStore
from .dispatcher import dispatch
from .planner import build_plan
from .procedures import RemediationHost
from .verification import verify

__all__ = [
    "COOLDOWN_CATEGORIES",
    "ActionResult",
    "ActionRisk",
    "ActionStatus",
    "ActionType",
    "CooldownStore",
    "ImpactLevel",
    "OptimizationAction",
    "RemediationHost",
    "VerificationOutcome",
    "VerificationStatus",
    "build_plan",
    "dispatch",
    "verify",
]
