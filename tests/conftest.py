"""Shared fakes and fixtures for the endpointctl test suite.

The fakes subclass the real providers and only replace the calls that would
reach Windows (psutil service APIs, PowerShell, ``winreg``). Filesystem paths
resolve under ``tmp_path`` so cleanup procedures run against real files.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from endpointctl.config import ScanConfig
from endpointctl.diagnostics import ProbeContext, ScanOptions
from endpointctl.providers import (
    CommandResult,
    RegistryError,
    RegistryValue,
    ServiceError,
    ServiceState,
    ShellRunner,
    SystemQueries,
    WindowsServices,
)
from endpointctl.remediation import ActionRisk, OptimizationAction, RemediationHost
from endpointctl.remediation.actions import ActionKind, action_type_for, impact_for
from endpointctl.remediation.procedures import BALANCED_SCHEME_GUID
from endpointctl.rollback import RollbackJournal
from endpointctl.state import StateRegistry

HKLM = "HKEY_LOCAL_MACHINE"
HKCU = "HKEY_CURRENT_USER"


class FakeRunner(ShellRunner):
    """Record command lines instead of starting processes."""

    def __init__(self) -> None:
        super().__init__(cmd_bin="cmd.exe", powershell_bin="powershell")
        self.calls: list[tuple[str, ...]] = []
        # substring of the command line -> exit code
        self.exit_codes: dict[str, int] = {}

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float = 600.0,
        check: bool = False,
        capture_output: bool = True,
    ) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        self.calls.append(argv)
        line = " ".join(argv)
        code = next((value for needle, value in self.exit_codes.items() if needle in line), 0)
        return CommandResult(argv, code, timed_out=code == -1)

    def powershell(self, script: str, *, timeout: float = 30.0) -> str:
        self.calls.append(("powershell", script))
        return ""

    def command_lines(self) -> list[str]:
        """Return the ``cmd /C`` payloads seen so far."""
        return [argv[2] for argv in self.calls if len(argv) == 3 and argv[1] == "/C"]


class FakeRegistry:
    """Dictionary-backed stand-in for :class:`RegistryProvider`."""

    def __init__(self) -> None:
        self.values: dict[tuple[str, str, str], RegistryValue] = {}
        self.keys: set[tuple[str, str]] = set()
        self.fail_writes = False

    def set(self, hive: str, subkey: str, name: str, value: Any, kind: str = "REG_DWORD") -> None:
        self.values[(hive, subkey, name)] = RegistryValue(value, kind)
        self.keys.add((hive, subkey))

    def read(self, hive: str, subkey: str, name: str) -> RegistryValue | None:
        return self.values.get((hive, subkey, name))

    def write(self, hive: str, subkey: str, name: str, value: Any, kind: str) -> None:
        if self.fail_writes:
            raise RegistryError(f"access denied: {hive}\\{subkey}")
        self.set(hive, subkey, name, value, kind)

    def delete(self, hive: str, subkey: str, name: str) -> bool:
        if self.fail_writes:
            raise RegistryError(f"access denied: {hive}\\{subkey}")
        return self.values.pop((hive, subkey, name), None) is not None

    def key_exists(self, hive: str, subkey: str) -> bool:
        return (hive, subkey) in self.keys

    def value_names(self, hive: str, subkey: str) -> list[str]:
        return [name for (h, key, name) in self.values if (h, key) == (hive, subkey)]

    def subkeys(self, hive: str, subkey: str) -> list[str]:
        prefix = subkey + "\\"
        return sorted(
            {key[len(prefix):].split("\\")[0] for h, key in self.keys if h == hive and key.startswith(prefix)}
        )


class FakeServices(WindowsServices):
    """In-memory service table that records every control call."""

    def __init__(self, runner: ShellRunner) -> None:
        super().__init__(runner, sleep=lambda _seconds: None)
        self.states: dict[str, ServiceState] = {
            "wuauserv": ServiceState("wuauserv", "running", "Manual"),
            "FontCache": ServiceState("FontCache", "running", "Automatic"),
        }
        self.events: list[tuple[str, str]] = []

    def query(self, name: str) -> ServiceState:
        try:
            return self.states[name]
        except KeyError as exc:
            raise ServiceError(f"Service not found: {name}") from exc

    def _set(self, name: str, *, status: str | None = None, start_type: str | None = None) -> None:
        current = self.query(name)
        self.states[name] = ServiceState(
            name,
            status or current.status,
            start_type or current.start_type,
        )

    def start(self, name: str) -> None:
        self.events.append(("start", name))
        self._set(name, status="running")

    def stop(self, name: str) -> None:
        self.events.append(("stop", name))
        self._set(name, status="stopped")

    def set_start_type(self, name: str, start_type: str) -> None:
        self.events.append(("config", f"{name}={start_type}"))
        labels = {"demand": "Manual", "auto": "Automatic", "disabled": "Disabled"}
        self._set(name, start_type=labels.get(start_type, start_type))


class FakeProcess:
    """Minimal psutil.Process stand-in."""

    def __init__(self, pid: int, name: str, children: Iterable[FakeProcess] = ()) -> None:
        self.pid = pid
        self._name = name
        self._children = list(children)
        self.killed = False

    def name(self) -> str:
        return self._name

    def children(self, recursive: bool = False) -> list[FakeProcess]:
        return list(self._children)

    def kill(self) -> None:
        self.killed = True


class FakeSystem(SystemQueries):
    """SystemQueries over a temporary directory tree with canned readings."""

    def __init__(self, root: Path, runner: FakeRunner, registry: FakeRegistry, services: FakeServices) -> None:
        environ = {
            "SystemRoot": str(root / "Windows"),
            "TEMP": str(root / "Users" / "alice" / "AppData" / "Local" / "Temp"),
            "LOCALAPPDATA": str(root / "Users" / "alice" / "AppData" / "Local"),
            "APPDATA": str(root / "Users" / "alice" / "AppData" / "Roaming"),
            "USERPROFILE": str(root / "Users" / "alice"),
            "ProgramData": str(root / "ProgramData"),
            "USERNAME": "alice",
        }
        super().__init__(runner, registry, services, environ=environ, query_timeout=5.0)  # type: ignore[arg-type]
        self.root = root
        self.cpu_load = 10.0
        self.memory = (16384, 4096, 12288, 25.0)
        self.heavy_processes: list[dict[str, Any]] = []
        self.drives: list[dict[str, Any]] = [
            {"letter": "C:", "total_mb": 512000, "used_mb": 256000, "free_mb": 256000, "percent_used": 50.0}
        ]
        self.disk_health = ["Healthy"]
        self.battery_info: dict[str, Any] | None = None
        self.capacity = (0, 0)
        self.power_scheme = (BALANCED_SCHEME_GUID, "Balanced")
        self.bitlocker = "Encrypted"
        self.pending_updates = 0
        self.recycle_mb = 0
        self.cim_rows: dict[str, list[dict[str, Any]]] = {
            "AntiVirusProduct": [{"displayName": "Microsoft Defender Antivirus"}],
        }
        self.event_rows: dict[str, list[dict[str, Any]]] = {"System": [], "Application": []}
        self.boot = time.time() - 3600
        self.running: dict[str, int] = {}
        self.download = 250.0

    @property
    def system_drive(self) -> Path:
        return self.root / "C"

    # psutil ---------------------------------------------------------------
    def boot_time(self) -> float:
        return self.boot

    def cpu_percent(self, samples: int) -> float:
        return self.cpu_load

    def virtual_memory(self) -> tuple[int, int, int, float]:
        return self.memory

    def top_processes(self, *, by: str, limit: int = 5) -> list[dict[str, Any]]:
        return self.heavy_processes[:limit]

    def process_count(self, executable: str) -> int:
        return self.running.get(executable.lower(), 0)

    def fixed_drives(self) -> list[dict[str, Any]]:
        return list(self.drives)

    def battery(self) -> dict[str, Any] | None:
        return self.battery_info

    def network_interfaces(self) -> list[dict[str, Any]]:
        return [{"name": "Ethernet", "speed_mbps": 1000}]

    # recycle bin ----------------------------------------------------------
    def recycle_bin_mb(self) -> int:
        return self.recycle_mb

    def empty_recycle_bin(self) -> None:
        self.recycle_mb = 0

    # PowerShell / CIM -----------------------------------------------------
    def cim(self, class_name: str, *, properties: str = "*", namespace: str | None = None) -> list[dict[str, Any]]:
        return list(self.cim_rows.get(class_name, []))

    def thermal_zone_celsius(self) -> float | None:
        return None

    def physical_disk_health(self) -> list[str]:
        return list(self.disk_health)

    def battery_capacity(self) -> tuple[int, int]:
        return self.capacity

    def active_power_scheme(self) -> tuple[str, str]:
        return self.power_scheme

    def bitlocker_protection(self) -> str:
        return self.bitlocker

    def pending_update_count(self) -> int:
        return self.pending_updates

    def ping_ms(self, host: str = "8.8.8.8") -> float | None:
        return 18.0

    def dns_lookup_ms(self, name: str = "www.microsoft.com") -> float | None:
        return 9.0

    def download_mbps(self, url: str, *, timeout: float) -> float:
        return self.download

    def mapped_drives(self) -> list[dict[str, Any]]:
        return []

    def startup_entries(self) -> list[dict[str, Any]]:
        return []

    def installed_apps(self) -> list[dict[str, str]]:
        return []

    def events(
        self,
        log_name: str,
        ids: tuple[int, ...],
        *,
        since: datetime,
        providers: tuple[str, ...] = (),
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        return [row for row in self.event_rows.get(log_name, []) if int(row["Id"]) in ids]

    # helpers for tests -------------------------------------------------------
    def add_event(self, log_name: str, event_id: int, provider: str, message: str = "") -> None:
        self.event_rows.setdefault(log_name, []).append(
            {
                "Id": event_id,
                "ProviderName": provider,
                "LevelDisplayName": "Error",
                "TimeCreatedUtc": datetime.now(UTC).isoformat(),
                "Message": message,
            }
        )


def make_action(
    kind: ActionKind,
    *,
    risk: ActionRisk = ActionRisk.SAFE,
    remediation_category: str | None = None,
) -> OptimizationAction:
    """Build a plan entry for *kind* without going through the planner."""
    return OptimizationAction(
        kind=kind,
        title=kind.key,
        category="Test",
        description="",
        risk=risk,
        auto_selected=True,
        action_type=action_type_for(kind),
        impact=impact_for(kind),
        remediation_category=remediation_category,
    )


def write_files(directory: Path, count: int, size: int = 1024) -> list[Path]:
    """Create *count* files of *size* bytes below *directory*."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for index in range(count):
        path = directory / f"file{index}.tmp"
        path.write_bytes(b"x" * size)
        paths.append(path)
    return paths


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def registry() -> FakeRegistry:
    fake = FakeRegistry()
    fake.set(HKCU, r"Software\Microsoft\Windows\CurrentVersion\Themes\Personalize", "EnableTransparency", 0)
    fake.set(HKCU, r"Control Panel\Desktop\WindowMetrics", "MinAnimate", "0", "REG_SZ")
    return fake


@pytest.fixture()
def services(runner: FakeRunner) -> FakeServices:
    return FakeServices(runner)


@pytest.fixture()
def system(tmp_path: Path, runner: FakeRunner, registry: FakeRegistry, services: FakeServices) -> FakeSystem:
    return FakeSystem(tmp_path / "host", runner, registry, services)


@pytest.fixture()
def scan_context(system: FakeSystem) -> ProbeContext:
    return ProbeContext(system=system, config=ScanConfig(cpu_samples=1), options=ScanOptions())


@pytest.fixture()
def state(tmp_path: Path) -> StateRegistry:
    return StateRegistry(tmp_path / "state")


@pytest.fixture()
def launched() -> list[tuple[str, str]]:
    return []


@pytest.fixture()
def host(
    system: FakeSystem,
    runner: FakeRunner,
    services: FakeServices,
    registry: FakeRegistry,
    state: StateRegistry,
    launched: list[tuple[str, str]],
) -> RemediationHost:
    return RemediationHost(
        system=system,
        runner=runner,
        services=services,
        registry=registry,  # type: ignore[arg-type]
        journal=RollbackJournal(registry, state),  # type: ignore[arg-type]
        delete_workers=2,
        launcher=lambda target, arguments: launched.append((target, arguments)),
        process_factory=lambda pid: FakeProcess(pid, "gone.exe"),  # type: ignore[arg-type,return-value]
    )
