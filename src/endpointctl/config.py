"""Configuration loader for endpointctl.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``~/.endpointctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``ENDPOINTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export ENDPOINTCTL_SCAN__INCLUDE_THROUGHPUT=true
    export ENDPOINTCTL_REMEDIATION__COOLDOWN_DAYS=14

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``; it is loaded once per invocation and never mutated.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load endpointctl configuration. Install with "
        "`pip install endpointctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "ENDPOINTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ScanConfig:
    """Tunables for the diagnostic phase scheduler."""

    fast_timeout: float = 10.0
    slow_timeout: float = 30.0
    probe_timeouts: Mapping[str, float] = field(default_factory=dict)
    include_throughput: bool = False
    event_lookback_days: int = 30
    cpu_samples: int = 3
    speedtest_url: str = "https://speed.cloudflare.com/__down?bytes=10000000"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "fast_timeout": self.fast_timeout,
            "slow_timeout": self.slow_timeout,
            "probe_timeouts": dict(self.probe_timeouts),
            "include_throughput": self.include_throughput,
            "event_lookback_days": self.event_lookback_days,
            "cpu_samples": self.cpu_samples,
            "speedtest_url": self.speedtest_url,
        }


@dataclass(frozen=True)
class RemediationConfig:
    """Remediation cooldown and persistence defaults."""

    cooldown_days: int = 7
    history_limit: int = 50
    delete_workers: int = 8

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "cooldown_days": self.cooldown_days,
            "history_limit": self.history_limit,
            "delete_workers": self.delete_workers,
        }


@dataclass(frozen=True)
class ToolsConfig:
    """Executables used to reach Windows management interfaces."""

    powershell_bin: str = "powershell"
    cmd_bin: str = "cmd.exe"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"powershell_bin": self.powershell_bin, "cmd_bin": self.cmd_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for endpointctl."""

    config_file: Path
    state_dir: Path
    logs_dir: Path
    scan: ScanConfig
    remediation: RemediationConfig
    tools: ToolsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "logs_dir": str(self.logs_dir),
            "scan": self.scan.to_dict(),
            "remediation": self.remediation.to_dict(),
            "tools": self.tools.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.endpointctl/config.yml",
    "state_dir": "~/.endpointctl/state",
    "logs_dir": None,  # derived from state_dir when absent
    "scan": {
        "fast_timeout": 10.0,
        "slow_timeout": 30.0,
        "probe_timeouts": {},
        "include_throughput": False,
        "event_lookback_days": 30,
        "cpu_samples": 3,
        "speedtest_url": "https://speed.cloudflare.com/__down?bytes=10000000",
    },
    "remediation": {
        "cooldown_days": 7,
        "history_limit": 50,
        "delete_workers": 8,
    },
    "tools": {
        "powershell_bin": "powershell",
        "cmd_bin": "cmd.exe",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], DEFAULTS[section]).keys())
    for section in ("scan", "remediation", "tools")
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    scan_map = _as_dict(raw.get("scan"), "scan")
    for key in ("fast_timeout", "slow_timeout"):
        if scan_map.get(key) is not None:
            _expect_positive_float(scan_map[key], f"scan.{key}", default=1.0)
    timeouts = _as_dict(scan_map.get("probe_timeouts"), "scan.probe_timeouts")
    for probe_id, value in timeouts.items():
        _expect_positive_float(value, f"scan.probe_timeouts.{probe_id}", default=1.0)
    for key in ("event_lookback_days", "cpu_samples"):
        if scan_map.get(key) is not None:
            value = _expect_int(scan_map[key], f"scan.{key}", default=1)
            if value < 1:
                raise ConfigError(f"scan.{key} must be at least 1. Got {value}.")

    remediation_map = _as_dict(raw.get("remediation"), "remediation")
    for key in ("cooldown_days", "history_limit", "delete_workers"):
        if remediation_map.get(key) is not None:
            value = _expect_int(remediation_map[key], f"remediation.{key}", default=1)
            if value < 1:
                raise ConfigError(f"remediation.{key} must be at least 1. Got {value}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else state_dir.parent / "logs"

    scan_map = _as_dict(raw.get("scan"), "scan")
    timeouts = {
        str(probe_id): _expect_positive_float(
            value, f"scan.probe_timeouts.{probe_id}", default=1.0
        )
        for probe_id, value in _as_dict(
            scan_map.get("probe_timeouts"), "scan.probe_timeouts"
        ).items()
    }
    scan = ScanConfig(
        fast_timeout=_expect_positive_float(
            scan_map.get("fast_timeout"), "scan.fast_timeout", default=10.0
        ),
        slow_timeout=_expect_positive_float(
            scan_map.get("slow_timeout"), "scan.slow_timeout", default=30.0
        ),
        probe_timeouts=timeouts,
        include_throughput=_expect_bool(
            scan_map.get("include_throughput"), "scan.include_throughput", default=False
        ),
        event_lookback_days=_expect_int(
            scan_map.get("event_lookback_days"), "scan.event_lookback_days", default=30
        ),
        cpu_samples=_expect_int(scan_map.get("cpu_samples"), "scan.cpu_samples", default=3),
        speedtest_url=str(scan_map.get("speedtest_url") or ScanConfig.speedtest_url),
    )

    remediation_map = _as_dict(raw.get("remediation"), "remediation")
    remediation = RemediationConfig(
        cooldown_days=_expect_int(
            remediation_map.get("cooldown_days"), "remediation.cooldown_days", default=7
        ),
        history_limit=_expect_int(
            remediation_map.get("history_limit"), "remediation.history_limit", default=50
        ),
        delete_workers=_expect_int(
            remediation_map.get("delete_workers"), "remediation.delete_workers", default=8
        ),
    )

    tools_map = _as_dict(raw.get("tools"), "tools")
    tools = ToolsConfig(
        powershell_bin=str(tools_map.get("powershell_bin", "powershell")),
        cmd_bin=str(tools_map.get("cmd_bin", "cmd.exe")),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        logs_dir=logs_dir,
        scan=scan,
        remediation=remediation,
        tools=tools,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "yes", "1", "on"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "no", "0", "off"}:
        return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "RemediationConfig",
    "ScanConfig",
    "ToolsConfig",
    "load_config",
]
