"""Cooperative cancellation shared by the engine and the rate limiter."""

from __future__ import annotations

import logging

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Flag set by termination signals and polled at safe boundaries."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            LOGGER.info("Termination requested, stopping at the next safe point")
        self._cancelled = True
