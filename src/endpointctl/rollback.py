"""Rollback journal for registry values changed by remediations.

Before a remediation writes a registry value, the journal records the value
as it was (or the fact that it did not exist) in ``rollback.yml``. Restoring
rewrites the captured values and deletes values the remediation created.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .providers.registry import RegistryError, RegistryProvider
from .state.registry import ROLLBACK_FILE, StateRegistry

LOGGER = logging.getLogger(__name__)

ROLLBACK_SECTION = "entries"


@dataclass(slots=True, frozen=True)
class RollbackEntry:
    """Original state of one registry value and the action that changed it."""

    hive: str
    subkey: str
    name: str
    existed: bool
    value: Any = None
    kind: str = ""
    captured_at: str = ""
    action_key: str = ""

    @property
    def location(self) -> str:
        """Return ``HIVE\\subkey\\name`` for display."""
        return f"{self.hive}\\{self.subkey}\\{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Return the mapping persisted in ``rollback.yml``."""
        return {
            "hive": self.hive,
            "subkey": self.subkey,
            "name": self.name,
            "existed": self.existed,
            "value": self.value,
            "kind": self.kind,
            "captured_at": self.captured_at,
            "action_key": self.action_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackEntry:
        """Build an entry from a persisted mapping."""
        return cls(
            hive=str(data.get("hive", "")),
            subkey=str(data.get("subkey", "")),
            name=str(data.get("name", "")),
            existed=bool(data.get("existed", False)),
            value=data.get("value"),
            kind=str(data.get("kind") or ""),
            captured_at=str(data.get("captured_at") or ""),
            action_key=str(data.get("action_key") or ""),
        )


@dataclass(slots=True, frozen=True)
class RestoreOutcome:
    """Result of restoring one journal entry."""

    entry: RollbackEntry
    ok: bool
    message: str = ""


class RollbackJournal:
    """Capture registry values before writes and restore them on request."""

    def __init__(
        self,
        registry: RegistryProvider,
        state: StateRegistry,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Bind the journal to a registry provider and the state directory."""
        self._registry = registry
        self._state = state
        self._clock = clock

    def entries(self) -> list[RollbackEntry]:
        """Return the persisted entries in capture order."""
        raw = self._state.read_entries(ROLLBACK_FILE, ROLLBACK_SECTION)
        return [RollbackEntry.from_dict(item) for item in raw]

    def capture(self, hive: str, subkey: str, name: str, *, action_key: str = "") -> RollbackEntry:
        """Record the current state of a value unless it is already journaled.

        The earliest capture wins, so repeated remediations never overwrite the
        value the machine had before the first change.
        """
        entries = self.entries()
        for entry in entries:
            if (entry.hive, entry.subkey, entry.name) == (hive, subkey, name):
                return entry
        current = self._registry.read(hive, subkey, name)
        entry = RollbackEntry(
            hive=hive,
            subkey=subkey,
            name=name,
            existed=current is not None,
            value=current.value if current is not None else None,
            kind=current.kind if current is not None else "",
            captured_at=self._clock().isoformat(),
            action_key=action_key,
        )
        entries.append(entry)
        self._persist(entries)
        LOGGER.debug("captured %s (existed=%s)", entry.location, entry.existed)
        return entry

    def write(
        self,
        hive: str,
        subkey: str,
        name: str,
        value: Any,
        kind: str,
        *,
        action_key: str = "",
    ) -> None:
        """Capture the current value, then write the new one."""
        self.capture(hive, subkey, name, action_key=action_key)
        self._registry.write(hive, subkey, name, value, kind)

    def delete(self, hive: str, subkey: str, name: str, *, action_key: str = "") -> bool:
        """Capture the current value, then delete it."""
        self.capture(hive, subkey, name, action_key=action_key)
        return self._registry.delete(hive, subkey, name)

    def restore_all(self) -> list[RestoreOutcome]:
        """Restore every entry, newest first, and report per-entry results.

        Entries that fail to restore stay in the journal so a later run can
        retry them.
        """
        return self._restore(lambda entry: True)

    def restore_action(self, action_key: str) -> list[RestoreOutcome]:
        """Restore only the entries captured for *action_key*."""
        return self._restore(lambda entry: entry.action_key == action_key)

    def _restore(self, wanted: Callable[[RollbackEntry], bool]) -> list[RestoreOutcome]:
        outcomes: list[RestoreOutcome] = []
        remaining: list[RollbackEntry] = []
        for entry in reversed(self.entries()):
            if not wanted(entry):
                remaining.append(entry)
                continue
            try:
                if entry.existed:
                    self._registry.write(entry.hive, entry.subkey, entry.name, entry.value, entry.kind)
                    message = "restored original value"
                else:
                    self._registry.delete(entry.hive, entry.subkey, entry.name)
                    message = "removed value that did not exist before"
            except (RegistryError, OSError) as exc:
                LOGGER.debug("restore of %s failed: %s", entry.location, exc)
                outcomes.append(RestoreOutcome(entry, False, str(exc)))
                remaining.append(entry)
                continue
            outcomes.append(RestoreOutcome(entry, True, message))
        remaining.reverse()
        if remaining:
            self._persist(remaining)
        else:
            self._state.remove(ROLLBACK_FILE)
        return outcomes

    def _persist(self, entries: list[RollbackEntry]) -> None:
        self._state.write(ROLLBACK_FILE, {ROLLBACK_SECTION: [entry.to_dict() for entry in entries]})


__all__ = ["RestoreOutcome", "RollbackEntry", "RollbackJournal"]
