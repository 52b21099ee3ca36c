"""Cooperative cancellation shared by the scheduler and the dispatcher."""
from __future__ import annotations

import threading


class CancellationToken:
    """Coarse-grained cancellation flag.

    The token is only polled at natural boundaries (between scan phases and
    between remediation actions). Work already in flight, such as a running
    external process, is never interrupted.
    """

    def __init__(self) -> None:
        """Create a token in the non-cancelled state."""
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        return self._event.is_set()


__all__ = ["CancellationToken"]
