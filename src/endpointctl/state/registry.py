"""Helpers for interacting with the endpointctl state registry.

The registry directory (``~/.endpointctl/state`` by default) stores YAML
artifacts such as ``cooldown.yml``, ``history.yml`` and ``rollback.yml``. This
module reads and writes those files using atomic replacement so that an
interrupted write never leaves a truncated document behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage endpointctl state. Install with `pip install endpointctl`."
    ) from exc


COOLDOWN_FILE = "cooldown.yml"
HISTORY_FILE = "history.yml"
ROLLBACK_FILE = "rollback.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        path = self.path_for(name)
        try:
            self.ensure_root()
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def remove(self, name: str) -> bool:
        """Delete a registry file, returning ``True`` when something was removed."""
        try:
            self.path_for(name).unlink()
        except FileNotFoundError:
            return False
        return True

    # Convenience wrappers -------------------------------------------------
    def read_section(self, name: str, section: str) -> dict[str, Any]:
        """Return the mapping stored under *section* in *name* (empty when missing)."""
        data = self.read(name, default={section: {}})
        if not isinstance(data, Mapping):
            raise StateRegistryError(f"Registry file {name} must contain a mapping.")
        value = data.get(section) or {}
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"Registry file {name} section '{section}' must be a mapping.")
        return dict(value)

    def read_entries(self, name: str, section: str) -> list[dict[str, Any]]:
        """Return the list of mapping entries stored under *section* in *name*."""
        data = self.read(name, default={section: []})
        if not isinstance(data, Mapping):
            raise StateRegistryError(f"Registry file {name} must contain a mapping.")
        raw_entries = data.get(section) or []
        if not isinstance(raw_entries, list):
            raise StateRegistryError(f"Registry file {name} section '{section}' must be a list.")
        return [dict(entry) for entry in raw_entries if isinstance(entry, Mapping)]


__all__ = [
    "COOLDOWN_FILE",
    "HISTORY_FILE",
    "ROLLBACK_FILE",
    "StateRegistry",
    "StateRegistryError",
]
