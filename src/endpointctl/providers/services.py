"""Windows service control through psutil and ``sc.exe``."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import psutil

from .shell import ShellRunner

LOGGER = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    """Raised when a service cannot be queried or controlled."""


@dataclass(slots=True, frozen=True)
class ServiceState:
    """Status and start type of one service."""

    name: str
    status: str
    start_type: str

    @property
    def running(self) -> bool:
        """Return ``True`` when the service reports ``running``."""
        return self.status.lower() == "running"


@dataclass(slots=True)
class WindowsServices:
    """Query and control services; mutations go through ``sc.exe``."""

    runner: ShellRunner
    sleep: Callable[[float], None] = field(default=time.sleep)

    def query(self, name: str) -> ServiceState:
        """Return the current state of service *name*."""
        getter = getattr(psutil, "win_service_get", None)
        if getter is None:
            raise ServiceError("Windows services are not available on this platform")
        try:
            info = getter(name).as_dict()
        except psutil.NoSuchProcess as exc:
            raise ServiceError(f"Service not found: {name}") from exc
        except (psutil.Error, OSError) as exc:
            raise ServiceError(f"Failed to query service {name}: {exc}") from exc
        start_type = str(info.get("start_type") or "unknown")
        return ServiceState(
            name=name,
            status=str(info.get("status") or "unknown"),
            start_type=_START_TYPE_LABELS.get(start_type, start_type.title()),
        )

    def start(self, name: str) -> None:
        """Start service *name*; starting a running service is a no-op."""
        self._sc("start", name, tolerate=(1056,))

    def stop(self, name: str) -> None:
        """Stop service *name*; stopping a stopped service is a no-op."""
        self._sc("stop", name, tolerate=(1062,))

    def set_start_type(self, name: str, start_type: str) -> None:
        """Change the start type (``auto``, ``demand``, ``disabled``)."""
        self._sc("config", name, "start=", start_type)

    def wait_for(self, name: str, status: str, *, timeout: float) -> bool:
        """Poll until the service reports *status* or *timeout* elapses."""
        deadline = time.monotonic() + timeout
        while True:
            try:
                if self.query(name).status.lower() == status:
                    return True
            except ServiceError as exc:
                LOGGER.debug("service poll failed: %s", exc)
            if time.monotonic() >= deadline:
                return False
            self.sleep(0.5)

    @contextmanager
    def stopped(self, name: str, *, timeout: float = 30.0) -> Iterator[None]:
        """Stop *name* for the duration of the block and always restart it."""
        try:
            self.stop(name)
            if not self.wait_for(name, "stopped", timeout=timeout):
                LOGGER.debug("service %s did not stop within %ss", name, timeout)
            yield
        finally:
            self.start(name)

    # ------------------------------------------------------------------
    def _sc(self, *args: str, tolerate: tuple[int, ...] = ()) -> None:
        result = self.runner.run(["sc.exe", *args], timeout=30.0)
        if result.ok or result.returncode in tolerate:
            return
        detail = result.stdout or result.stderr or f"exit code {result.returncode}"
        raise ServiceError(f"sc.exe {' '.join(args)} failed: {detail}")


_START_TYPE_LABELS = {
    "automatic": "Automatic",
    "manual": "Manual",
    "disabled": "Disabled",
}


__all__ = ["ServiceError", "ServiceState", "WindowsServices"]
