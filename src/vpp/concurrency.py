"""Process-wide concurrency limits.

Hardware encoders expose a fixed number of sessions, and CPU-heavy ffmpeg
work competes for the same cores no matter which job started it. These
semaphores are shared by every job in the process; per-stage thread pools
only bound fan-out within a job.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class ResourceLimits:
    """Named bounded semaphores shared across jobs."""

    def __init__(self, encoder_slots: int = 1, external_slots: int = 4) -> None:
        if encoder_slots < 1 or external_slots < 1:
            raise ValueError("Concurrency limits must be at least 1")
        self.encoder_slots = encoder_slots
        self.external_slots = external_slots
        self._encoder = threading.BoundedSemaphore(encoder_slots)
        self._external = threading.BoundedSemaphore(external_slots)

    @contextmanager
    def encoder(self) -> Iterator[None]:
        """Hold one hardware encode session."""
        with self._encoder:
            yield

    @contextmanager
    def external(self) -> Iterator[None]:
        """Hold one slot for a CPU-bound external process."""
        with self._external:
            yield


_limits: ResourceLimits | None = None
_limits_lock = threading.Lock()


def configure_limits(encoder_slots: int, external_slots: int) -> ResourceLimits:
    """Install the process-wide limits. Call once at startup."""
    global _limits
    with _limits_lock:
        _limits = ResourceLimits(encoder_slots, external_slots)
        logger.debug(
            "Concurrency limits: %d encoder, %d external",
            encoder_slots,
            external_slots,
        )
        return _limits


def get_limits() -> ResourceLimits:
    """Return the process-wide limits, creating defaults on first use."""
    global _limits
    with _limits_lock:
        if _limits is None:
            _limits = ResourceLimits()
        return _limits
