"""Fixed-delay batch throttling for calls against rate-limited providers.

Splits work into fixed-size batches and pauses between consecutive batches
(never after the last one). Items inside a batch are handed out in order;
the caller processes them sequentially to bound the burst rate.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ThrottleConfig:
    """Configuration for batch throttling."""

    batch_size: int  # Items per batch
    delay_seconds: float  # Pause between batches


class BatchThrottle:
    """Yields batches of items with a fixed pause between them."""

    def __init__(
        self,
        config: ThrottleConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if config.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if config.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.config = config
        self._sleep = sleep

    def chunk(self, items: Sequence[T]) -> list[list[T]]:
        """Split items into consecutive batches of at most batch_size."""
        size = self.config.batch_size
        return [list(items[i : i + size]) for i in range(0, len(items), size)]

    async def batches(self, items: Sequence[T]) -> AsyncIterator[tuple[int, list[T]]]:
        """Iterate (batch_index, batch), sleeping between batches."""
        chunks = self.chunk(items)
        for index, batch in enumerate(chunks):
            yield index, batch
            if index < len(chunks) - 1 and self.config.delay_seconds > 0:
                logger.debug(
                    f"Batch {index + 1}/{len(chunks)} done, "
                    f"pausing {self.config.delay_seconds}s"
                )
                await self._sleep(self.config.delay_seconds)
