from __future__ import annotations
import asyncio
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from relaypake.protocol.constants import TIMEOUT_S
from relaypake.protocol.errors import Timeout

logger = structlog.get_logger()

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    interval_ms: int
    max_tries: int

    @classmethod
    def from_delay_seconds(cls, delay: float) -> "RetryPolicy":
        if delay <= 0:
            raise ValueError("delay must be positive")
        return cls(interval_ms=int(delay * 1000), max_tries=math.ceil(TIMEOUT_S / delay))

    @property
    def interval_s(self) -> float:
        return self.interval_ms / 1000


async def poll(
    fetch: Callable[[], Optional[T]],
    policy: RetryPolicy,
    waiting_for: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Sleep then call ``fetch`` until it returns a value.

    ``fetch`` returns None for "not ready yet" and raises for anything
    fatal; Timeout is raised after exactly ``policy.max_tries`` calls.
    """
    for attempt in range(1, policy.max_tries + 1):
        await sleep(policy.interval_s)
        value = fetch()
        if value is not None:
            logger.info("poll_ready", waiting_for=waiting_for, attempt=attempt)
            return value
    logger.warning("poll_timeout", waiting_for=waiting_for, tries=policy.max_tries)
    raise Timeout(f"Timeout waiting for {waiting_for}")
