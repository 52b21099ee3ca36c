"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    ``VALIDATION`` covers bad options and unknown action keys, ``ENVIRONMENT``
    covers unsupported platforms and unreadable state, and ``PROVIDER`` is
    returned when one or more remediation actions failed.
    """

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
