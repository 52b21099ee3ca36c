"""Utility helpers for serialising and formatting scan results."""
from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import cast

from .models import ScanResult


def to_payload(value: object) -> object:
    """Convert dataclasses, enums and datetimes into JSON-safe primitives."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field.name: to_payload(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, Mapping):
        return {str(key): to_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [to_payload(item) for item in value]
    return str(value)


def serialize_scan(result: ScanResult) -> dict[str, object]:
    """Convert a scan result into a JSON-serialisable mapping."""
    payload = cast(dict[str, object], to_payload(result))
    payload["issues"] = [to_payload(issue) for issue in result.issues]
    payload["top_crashing_apps"] = [
        {"name": name, "count": count} for name, count in result.event_log.top_crashing_apps()
    ]
    return payload


def format_mb(mb: float) -> str:
    """Render a size in MB, switching to GB from 1024 MB upwards."""
    if mb >= 1024:
        return f"{mb / 1024:.1f} GB"
    return f"{int(mb):,} MB"


__all__ = ["format_mb", "serialize_scan", "to_payload"]
