"""Persistent cooldown records for event-log driven remediations."""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from ..state.registry import COOLDOWN_FILE, StateRegistry

LOGGER = logging.getLogger(__name__)

COOLDOWN_SECTION = "remediations"
COOLDOWN_CATEGORIES = ("BSODs", "DiskErrors", "AppCrashes", "UnexpectedShutdowns")
DEFAULT_COOLDOWN_DAYS = 7

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse(value: object) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class CooldownStore:
    """Remediation category -> last successful remediation timestamp."""

    def __init__(
        self,
        registry: StateRegistry,
        *,
        cooldown_days: int = DEFAULT_COOLDOWN_DAYS,
        clock: Clock = _utcnow,
    ) -> None:
        """Bind the store to *registry*; *clock* returns the current UTC time."""
        self._registry = registry
        self.cooldown_days = cooldown_days
        self._clock = clock

    def now(self) -> datetime:
        """Return the store's notion of the current time."""
        return self._clock()

    def records(self) -> dict[str, datetime]:
        """Return every parsable record; malformed timestamps are ignored."""
        raw = self._registry.read_section(COOLDOWN_FILE, COOLDOWN_SECTION)
        parsed: dict[str, datetime] = {}
        for category, value in raw.items():
            stamp = _parse(value)
            if stamp is None:
                LOGGER.debug("ignoring unparsable cooldown timestamp for %s: %r", category, value)
                continue
            parsed[str(category)] = stamp
        return parsed

    def last_remediated(self, category: str) -> datetime | None:
        """Return when *category* was last remediated, if ever."""
        return self.records().get(category)

    def is_cooling_down(self, category: str) -> bool:
        """Return ``True`` when *category* was remediated within the cooldown window."""
        last = self.last_remediated(category)
        if last is None:
            return False
        return self.now() - last < timedelta(days=self.cooldown_days)

    def record(self, categories: Iterable[str], *, when: datetime | None = None) -> list[str]:
        """Stamp *categories* with *when* (default: now) and persist them."""
        wanted = sorted({category for category in categories if category})
        if not wanted:
            return []
        stamp = (when or self.now()).astimezone(UTC).isoformat()
        raw = self._registry.read_section(COOLDOWN_FILE, COOLDOWN_SECTION)
        for category in wanted:
            raw[category] = stamp
        self._registry.write(COOLDOWN_FILE, {COOLDOWN_SECTION: raw})
        return wanted

    def clear(self, category: str | None = None) -> list[str]:
        """Remove one record, or all records when *category* is ``None``."""
        raw = self._registry.read_section(COOLDOWN_FILE, COOLDOWN_SECTION)
        if category is None:
            removed = sorted(raw)
            raw = {}
        elif category in raw:
            removed = [category]
            del raw[category]
        else:
            return []
        self._registry.write(COOLDOWN_FILE, {COOLDOWN_SECTION: raw})
        return removed


__all__ = ["COOLDOWN_CATEGORIES", "CooldownStore"]
