"""Exponential backoff shared by every port call."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from .config import Config
from .errors import Exhausted, ServiceUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ServiceUnavailable)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry a callable on transient failures with exponential backoff.

    Delays run initial_delay, initial_delay * multiplier, ... capped at
    max_delay. max_attempts counts the first call, so max_attempts=4 means
    one call plus three retries. Errors rejected by ``retryable`` are
    re-raised untouched on the first occurrence.
    """

    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    max_attempts: int = 4
    retryable: Callable[[BaseException], bool] = _is_transient
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    @classmethod
    def from_config(cls, config: Config, **overrides) -> "RetryPolicy":
        params = {
            "initial_delay": config.retry_initial_delay,
            "max_delay": config.retry_max_delay,
            "multiplier": config.retry_multiplier,
            "max_attempts": config.retry_max_attempts,
        }
        params.update(overrides)
        return cls(**params)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def call(self, fn: Callable[..., T], *args, description: str = "call", **kwargs) -> T:
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if not self.retryable(e):
                    raise
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, attempt, self.max_attempts, e, delay,
                )
                self.sleep(delay)

        raise Exhausted(description, self.max_attempts, last_error) from last_error
