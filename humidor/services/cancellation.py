"""
Cooperative cancellation for identification sessions.
"""

import logging

from .errors import IdentificationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag threaded through one identification; checked between awaits."""

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info(f"Cancellation requested{f' for {self.label}' if self.label else ''}")
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        """Raise IdentificationCancelled once cancel() has been called."""
        if self._cancelled:
            raise IdentificationCancelled(f"Identification cancelled{f' ({self.label})' if self.label else ''}")
