from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from .errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff shared by every client call site.

    ``max_attempts`` counts the first call, so the default of 3 means two retries.
    Only exceptions accepted by ``retryable`` are retried; everything else is
    re-raised unchanged on the first occurrence.
    """

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    jitter_s: float = 0.25
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception(self.retryable),
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential_jitter(
                initial=self.base_delay_s, exp_base=2, max=self.max_delay_s, jitter=self.jitter_s
            ),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        return self.retrying()(fn, *args, **kwargs)


NO_RETRY = RetryPolicy(max_attempts=1)
