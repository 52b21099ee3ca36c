"""Remediation action model.

Each kind of remediation is a small frozen dataclass. Parameterised kinds
(browser cache, process kill, GPU driver page, manual escalation) carry their
parameters as fields, and every kind derives a stable ``key`` used for
deduplication, ``--select`` on the command line and the dispatch table.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActionRisk(str, Enum):
    """Risk tier, also the primary plan ordering key."""

    SAFE = "Safe"
    MODERATE = "Moderate"
    REQUIRES_REBOOT = "RequiresReboot"


class ActionType(str, Enum):
    """How an action is carried out."""

    AUTO_FIX = "AutoFix"
    SHORTCUT = "Shortcut"
    MANUAL_ONLY = "ManualOnly"


class ImpactLevel(str, Enum):
    """How likely an action is to produce a visible improvement."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ActionStatus(str, Enum):
    """Outcome of dispatching one action."""

    SUCCESS = "Success"
    PARTIAL_SUCCESS = "PartialSuccess"
    NO_CHANGE = "NoChange"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class VerificationStatus(str, Enum):
    """Outcome of re-checking an action's effect."""

    VERIFIED = "Verified"
    PARTIALLY_VERIFIED = "PartiallyVerified"
    UNVERIFIED = "Unverified"
    TRUSTED = "Trusted"
    REQUIRES_REBOOT = "RequiresReboot"


# Processes that must never be terminated, compared without the ".exe" suffix.
PROTECTED_PROCESSES = frozenset(
    {
        "system",
        "svchost",
        "csrss",
        "dwm",
        "explorer",
        "wininit",
        "smss",
        "lsass",
        "services",
        "winlogon",
    }
)


def is_protected_process(name: str) -> bool:
    """Return ``True`` when *name* is on the critical-process denylist."""
    lowered = name.strip().lower()
    if lowered.endswith(".exe"):
        lowered = lowered[:-4]
    return lowered in PROTECTED_PROCESSES


# ----------------------------------------------------------------------
# Action kinds
# ----------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class ActionKind:
    """Base class for remediation kinds."""

    @property
    def key(self) -> str:
        """Return the stable action key."""
        return type(self).__name__


@dataclass(slots=True, frozen=True)
class ClearTempFiles(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ClearPrefetch(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class EmptyRecycleBin(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ClearUpdateCache(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class LaunchDiskCleanup(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class CleanUpgradeLogs(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ClearBrowserCache(ActionKind):
    browser: str

    @property
    def key(self) -> str:
        """Return ``ClearBrowserCache:<browser>``."""
        return f"ClearBrowserCache:{self.browser}"


@dataclass(slots=True, frozen=True)
class ClearCrashDumps(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ClearWerReports(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class OpenResourceMonitor(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class SetPowerPlanBalanced(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class SwitchToPerformanceVisuals(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class KillProcess(ActionKind):
    pid: int
    name: str

    @property
    def key(self) -> str:
        """Return ``KillProcess:<pid>:<name>``."""
        return f"KillProcess:{self.pid}:{self.name}"


@dataclass(slots=True, frozen=True)
class OpenTaskManagerStartup(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class StartWuauserv(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ScheduleRestart(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class OpenGpuDriverPage(ActionKind):
    gpu_name: str

    @property
    def key(self) -> str:
        """Return ``OpenGpuDriverPage:<gpu>``."""
        return f"OpenGpuDriverPage:{self.gpu_name}"


@dataclass(slots=True, frozen=True)
class OpenAppsSettings(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class OpenBitLocker(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class RunSfc(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class RunDism(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class InstallDriverUpdates(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ScheduleMemoryDiagnostic(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ScheduleChkdsk(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ReRegisterComponents(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class DisableFastStartup(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class RepairPowerConfig(ActionKind):
    pass


@dataclass(slots=True, frozen=True)
class ManualEscalation(ActionKind):
    """An entry with no automation, shown for the operator to act on."""

    category: str
    index: int

    @property
    def key(self) -> str:
        """Return ``Manual:<category>:<n>``."""
        return f"Manual:{self.category}:{self.index}"


ALL_KINDS: tuple[type[ActionKind], ...] = (
    ClearTempFiles,
    ClearPrefetch,
    EmptyRecycleBin,
    ClearUpdateCache,
    LaunchDiskCleanup,
    CleanUpgradeLogs,
    ClearBrowserCache,
    ClearCrashDumps,
    ClearWerReports,
    OpenResourceMonitor,
    SetPowerPlanBalanced,
    SwitchToPerformanceVisuals,
    KillProcess,
    OpenTaskManagerStartup,
    StartWuauserv,
    ScheduleRestart,
    OpenGpuDriverPage,
    OpenAppsSettings,
    OpenBitLocker,
    RunSfc,
    RunDism,
    InstallDriverUpdates,
    ScheduleMemoryDiagnostic,
    ScheduleChkdsk,
    ReRegisterComponents,
    DisableFastStartup,
    RepairPowerConfig,
    ManualEscalation,
)

SHORTCUT_KINDS: frozenset[type[ActionKind]] = frozenset(
    {
        OpenResourceMonitor,
        OpenTaskManagerStartup,
        OpenAppsSettings,
        OpenBitLocker,
        ScheduleRestart,
        OpenGpuDriverPage,
    }
)

_DURATIONS: dict[type[ActionKind], str] = {
    KillProcess: "< 5 sec",
    ClearBrowserCache: "< 10 sec",
    OpenGpuDriverPage: "instant",
    RunSfc: "~5–15 min",
    RunDism: "~10–30 min",
    ReRegisterComponents: "~2–4 min",
    LaunchDiskCleanup: "~2–5 min",
    InstallDriverUpdates: "~30 sec",
    ClearUpdateCache: "~15 sec",
    RepairPowerConfig: "~15 sec",
    StartWuauserv: "~15 sec",
    ScheduleChkdsk: "< 5 sec",
    ScheduleMemoryDiagnostic: "< 10 sec",
    DisableFastStartup: "< 5 sec",
    SetPowerPlanBalanced: "< 5 sec",
    SwitchToPerformanceVisuals: "< 10 sec",
    ClearTempFiles: "~10–30 sec",
    ClearPrefetch: "< 10 sec",
    EmptyRecycleBin: "~5–15 sec",
    CleanUpgradeLogs: "~10–30 sec",
    ClearCrashDumps: "< 10 sec",
    ClearWerReports: "< 10 sec",
    ManualEscalation: "",
}

_IMPACT: dict[type[ActionKind], ImpactLevel] = {
    KillProcess: ImpactLevel.HIGH,
    SetPowerPlanBalanced: ImpactLevel.HIGH,
    StartWuauserv: ImpactLevel.HIGH,
    ScheduleRestart: ImpactLevel.HIGH,
    DisableFastStartup: ImpactLevel.HIGH,
    ScheduleChkdsk: ImpactLevel.HIGH,
    InstallDriverUpdates: ImpactLevel.HIGH,
    ClearPrefetch: ImpactLevel.LOW,
    ClearCrashDumps: ImpactLevel.LOW,
    ClearWerReports: ImpactLevel.LOW,
    OpenResourceMonitor: ImpactLevel.LOW,
    OpenTaskManagerStartup: ImpactLevel.LOW,
    OpenBitLocker: ImpactLevel.LOW,
    ManualEscalation: ImpactLevel.LOW,
}


def action_type_for(kind: ActionKind) -> ActionType:
    """Classify *kind* as an automatic fix, a shortcut or manual-only."""
    if isinstance(kind, ManualEscalation):
        return ActionType.MANUAL_ONLY
    if type(kind) in SHORTCUT_KINDS:
        return ActionType.SHORTCUT
    return ActionType.AUTO_FIX


def estimate_duration(kind: ActionKind) -> str:
    """Return the displayed duration estimate for *kind*."""
    if type(kind) in SHORTCUT_KINDS:
        return "instant"
    return _DURATIONS.get(type(kind), "< 10 sec")


def impact_for(kind: ActionKind) -> ImpactLevel:
    """Return the fixed impact level for *kind*."""
    return _IMPACT.get(type(kind), ImpactLevel.MEDIUM)


# ----------------------------------------------------------------------
# Plan entries and results
# ----------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class OptimizationAction:
    """One candidate remediation in a plan."""

    kind: ActionKind
    title: str
    category: str
    description: str
    risk: ActionRisk
    auto_selected: bool
    trigger: str = ""
    action_type: ActionType = ActionType.AUTO_FIX
    impact: ImpactLevel = ImpactLevel.MEDIUM
    estimated_duration: str = ""
    estimated_free_mb: int = 0
    remediation_category: str | None = None
    warning: str = ""

    @property
    def key(self) -> str:
        """Return the stable key of the underlying kind."""
        return self.kind.key

    @property
    def executable(self) -> bool:
        """Return ``True`` for actions the dispatcher can run."""
        return self.action_type is not ActionType.MANUAL_ONLY


@dataclass(slots=True, frozen=True)
class ActionResult:
    """Outcome of dispatching one action."""

    key: str
    status: ActionStatus
    freed_mb: int = 0
    deleted_count: int = 0
    skipped_count: int = 0
    detail: str = ""
    error: str = ""
    exit_code: int | None = None

    @property
    def succeeded(self) -> bool:
        """Return ``True`` for Success and PartialSuccess."""
        return self.status in {ActionStatus.SUCCESS, ActionStatus.PARTIAL_SUCCESS}


@dataclass(slots=True, frozen=True)
class VerificationOutcome:
    """Result of re-checking one dispatched action."""

    key: str
    status: VerificationStatus
    message: str = ""


__all__ = [
    "ALL_KINDS",
    "PROTECTED_PROCESSES",
    "SHORTCUT_KINDS",
    "ActionKind",
    "ActionResult",
    "ActionRisk",
    "ActionStatus",
    "ActionType",
    "ClearBrowserCache",
    "ClearCrashDumps",
    "ClearPrefetch",
    "ClearTempFiles",
    "ClearUpdateCache",
    "ClearWerReports",
    "CleanUpgradeLogs",
    "DisableFastStartup",
    "EmptyRecycleBin",
    "ImpactLevel",
    "InstallDriverUpdates",
    "KillProcess",
    "LaunchDiskCleanup",
    "ManualEscalation",
    "OpenAppsSettings",
    "OpenBitLocker",
    "OpenGpuDriverPage",
    "OpenResourceMonitor",
    "OpenTaskManagerStartup",
    "OptimizationAction",
    "ReRegisterComponents",
    "RepairPowerConfig",
    "RunDism",
    "RunSfc",
    "ScheduleChkdsk",
    "ScheduleMemoryDiagnostic",
    "ScheduleRestart",
    "SetPowerPlanBalanced",
    "StartWuauserv",
    "SwitchToPerformanceVisuals",
    "VerificationOutcome",
    "VerificationStatus",
    "action_type_for",
    "estimate_duration",
    "impact_for",
    "is_protected_process",
]
