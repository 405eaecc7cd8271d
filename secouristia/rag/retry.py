"""Retry policy shared by every call to an external service."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry a callable a bounded number of times with a growing pause.

    Attributes:
        max_attempts: Total number of attempts, at least 1.
        delay_sec: Pause before the second attempt.
        backoff: Multiplier applied to the pause after each failure.
        sleep: Function used to pause; replaced in tests.
    """

    max_attempts: int = 2
    delay_sec: float = 1.0
    backoff: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delays(self) -> list[float]:
        """Pauses taken between attempts."""
        return [self.delay_sec * self.backoff**i for i in range(max(self.max_attempts, 1) - 1)]

    def call(self, func: Callable[..., T], *args, description: str = "", **kwargs) -> T:
        """Call ``func`` until it succeeds or attempts run out.

        Raises:
            Exception: The last error raised by ``func``.
        """
        name = description or getattr(func, "__name__", "call")
        pauses: list[float | None] = [*self.delays(), None]
        for attempt, pause in enumerate(pauses, start=1):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if pause is None:
                    raise
                logger.warning(
                    f"{name} failed on attempt {attempt}/{len(pauses)}: {e}; retrying in {pause:.1f}s"
                )
                self.sleep(pause)
