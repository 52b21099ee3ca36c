"""Windows registry access using the standard library ``winreg`` module."""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from types import ModuleType
from typing import Any

HIVES = ("HKEY_CURRENT_USER", "HKEY_LOCAL_MACHINE")

# Value kinds we read and write, mapped to winreg constant names.
VALUE_KINDS = {
    "REG_SZ": "REG_SZ",
    "REG_DWORD": "REG_DWORD",
    "REG_BINARY": "REG_BINARY",
    "REG_EXPAND_SZ": "REG_EXPAND_SZ",
    "REG_MULTI_SZ": "REG_MULTI_SZ",
}


class RegistryError(RuntimeError):
    """Raised when a registry operation fails."""


@dataclass(slots=True, frozen=True)
class RegistryValue:
    """A registry value together with its kind name."""

    value: Any
    kind: str


class RegistryProvider:
    """Thin wrapper around ``winreg`` addressing values by hive name."""

    def __init__(self) -> None:
        """Defer importing ``winreg`` until the first call."""
        self._module: ModuleType | None = None

    def _winreg(self) -> ModuleType:
        if self._module is None:
            try:
                self._module = importlib.import_module("winreg")
            except ImportError as exc:
                raise RegistryError("The Windows registry is not available on this platform") from exc
        return self._module

    def _hive(self, hive: str) -> Any:
        if hive not in HIVES:
            raise RegistryError(f"Unsupported registry hive: {hive}")
        return getattr(self._winreg(), hive)

    def read(self, hive: str, subkey: str, name: str) -> RegistryValue | None:
        """Return the value, or ``None`` when the key or value is absent."""
        winreg = self._winreg()
        try:
            with winreg.OpenKey(self._hive(hive), subkey) as key:
                value, kind = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise RegistryError(f"Failed to read {hive}\\{subkey}\\{name}: {exc}") from exc
        return RegistryValue(value=value, kind=_kind_name(winreg, kind))

    def write(self, hive: str, subkey: str, name: str, value: Any, kind: str) -> None:
        """Create or overwrite a value, creating the key when needed."""
        winreg = self._winreg()
        if kind not in VALUE_KINDS:
            raise RegistryError(f"Unsupported value kind: {kind}")
        try:
            with winreg.CreateKeyEx(self._hive(hive), subkey, 0, winreg.KEY_SET_VALUE) as key:
                winreg.SetValueEx(key, name, 0, getattr(winreg, VALUE_KINDS[kind]), value)
        except OSError as exc:
            raise RegistryError(f"Failed to write {hive}\\{subkey}\\{name}: {exc}") from exc

    def delete(self, hive: str, subkey: str, name: str) -> bool:
        """Delete a value; return ``False`` when it did not exist."""
        winreg = self._winreg()
        try:
            with winreg.OpenKey(self._hive(hive), subkey, 0, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise RegistryError(f"Failed to delete {hive}\\{subkey}\\{name}: {exc}") from exc
        return True

    def key_exists(self, hive: str, subkey: str) -> bool:
        """Return ``True`` when *subkey* exists under *hive*."""
        winreg = self._winreg()
        try:
            with winreg.OpenKey(self._hive(hive), subkey):
                return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise RegistryError(f"Failed to open {hive}\\{subkey}: {exc}") from exc

    def value_names(self, hive: str, subkey: str) -> list[str]:
        """Return the names of the values stored directly under *subkey*."""
        winreg = self._winreg()
        names: list[str] = []
        try:
            with winreg.OpenKey(self._hive(hive), subkey) as key:
                index = 0
                while True:
                    try:
                        names.append(winreg.EnumValue(key, index)[0])
                    except OSError:
                        break
                    index += 1
        except FileNotFoundError:
            return []
        return names

    def subkeys(self, hive: str, subkey: str) -> list[str]:
        """Return the names of the immediate subkeys of *subkey*."""
        winreg = self._winreg()
        names: list[str] = []
        try:
            with winreg.OpenKey(self._hive(hive), subkey) as key:
                index = 0
                while True:
                    try:
                        names.append(winreg.EnumKey(key, index))
                    except OSError:
                        break
                    index += 1
        except FileNotFoundError:
            return []
        return names


def _kind_name(winreg: ModuleType, kind: int) -> str:
    for name in VALUE_KINDS:
        if getattr(winreg, name) == kind:
            return name
    return "REG_SZ"


__all__ = ["HIVES", "RegistryError", "RegistryProvider", "RegistryValue"]
