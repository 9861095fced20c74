"""Bounded exponential backoff for transient backend errors."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .config import Settings
from .errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry `TransientError` with exponential backoff.

    Attributes:
        attempts: Total attempts, the first one included.
        initial_delay: Delay before the second attempt, in seconds.
        max_delay: Upper bound of any single delay, in seconds.
    """

    attempts: int = 5
    initial_delay: float = 0.1
    max_delay: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(settings.retry_attempts, settings.retry_initial_delay, settings.retry_max_delay)

    def call(self, fn: Callable[..., T], *args: object, sleep: Callable[[float], None] = time.sleep) -> T:
        """Call `fn(*args)`, retrying on `TransientError`.

        Raises:
            TransientError: The last error, once every attempt failed.
        """
        delay = self.initial_delay
        attempt = 1
        while True:
            try:
                return fn(*args)
            except TransientError as exc:
                if attempt >= self.attempts:
                    logger.error("giving up after %d attempts: %s", attempt, exc)
                    raise
                logger.warning(
                    "attempt %d/%d failed, retrying in %.2fs: %s", attempt, self.attempts, delay, exc
                )
            sleep(delay)
            delay = min(delay * 2, self.max_delay)
            attempt += 1
