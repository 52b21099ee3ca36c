"""Provider interfaces for endpointctl."""
from __future__ import annotations

from .registry import RegistryError, RegistryProvider, RegistryValue
from .services import ServiceError, ServiceState, WindowsServices
from .shell import (
    CommandError,
    CommandResult,
    ShellRunner,
    UnsafeArgumentError,
    validate_shell_argument,
)
from .system import SystemQueries

__all__ = [
    "CommandError",
    "CommandResult",
    "RegistryError",
    "RegistryProvider",
    "RegistryValue",
    "ServiceError",
    "ServiceState",
    "ShellRunner",
    "SystemQueries",
    "UnsafeArgumentError",
    "WindowsServices",
    "validate_shell_argument",
]
