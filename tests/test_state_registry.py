"""State registry helpers tests."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from endpointctl.state import COOLDOWN_FILE, HISTORY_FILE, StateRegistry, StateRegistryError


def test_read_missing_files_returns_default(tmp_path: Path) -> None:
    """Missing files return the provided default structure."""
    registry = StateRegistry(tmp_path)

    result = registry.read(HISTORY_FILE, default={"snapshots": []})

    assert result == {"snapshots": []}


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a registry file and reading it back succeeds."""
    registry = StateRegistry(tmp_path / "state")
    payload = {"remediations": {"BSODs": "2026-10-01T10:00:00+00:00"}}

    registry.write(COOLDOWN_FILE, payload)

    assert (tmp_path / "state" / COOLDOWN_FILE).exists()
    assert registry.read(COOLDOWN_FILE) == payload
    assert not [p for p in (tmp_path / "state").iterdir() if p.name.startswith(".")]


def test_read_helpers(tmp_path: Path) -> None:
    """Section helpers normalise missing and partial documents."""
    registry = StateRegistry(tmp_path)

    assert registry.read_section(COOLDOWN_FILE, "remediations") == {}
    assert registry.read_entries(HISTORY_FILE, "snapshots") == []

    registry.write(HISTORY_FILE, {"snapshots": [{"health_score": 80}, "junk"]})

    assert registry.read_entries(HISTORY_FILE, "snapshots") == [{"health_score": 80}]


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a StateRegistryError."""
    registry = StateRegistry(tmp_path)
    (tmp_path / HISTORY_FILE).write_text("::: not yaml :::\n")

    with pytest.raises(StateRegistryError):
        registry.read(HISTORY_FILE)


def test_wrong_section_shape_raises(tmp_path: Path) -> None:
    """A section holding the wrong container type is reported."""
    registry = StateRegistry(tmp_path)
    registry.write(COOLDOWN_FILE, {"remediations": ["not", "a", "mapping"]})
    registry.write(HISTORY_FILE, {"snapshots": {"not": "a list"}})

    with pytest.raises(StateRegistryError, match="must be a mapping"):
        registry.read_section(COOLDOWN_FILE, "remediations")
    with pytest.raises(StateRegistryError, match="must be a list"):
        registry.read_entries(HISTORY_FILE, "snapshots")


def test_remove_reports_whether_file_existed(tmp_path: Path) -> None:
    """``remove`` is idempotent."""
    registry = StateRegistry(tmp_path)
    registry.write(COOLDOWN_FILE, {"remediations": {}})

    assert registry.remove(COOLDOWN_FILE) is True
    assert registry.remove(COOLDOWN_FILE) is False


def test_write_failure_raises_registry_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """An OS error during the atomic replace is reported and leaves no temp file."""
    registry = StateRegistry(tmp_path)

    def fail_replace(src: object, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", fail_replace)

    with pytest.raises(StateRegistryError, match="disk full"):
        registry.write(COOLDOWN_FILE, {"remediations": {}})
    assert list(tmp_path.iterdir()) == []
