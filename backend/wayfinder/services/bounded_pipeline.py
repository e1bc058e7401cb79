"""Bounded fan-out over rate-limited partners, plus a per-run resolution cache."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = 3,
    *,
    return_exceptions: bool = False,
) -> list[R | BaseException]:
    """Process items in sequential batches of ``concurrency``.

    Each batch is awaited fully before the next starts, so at most
    ``concurrency`` workers are in flight. Results keep input order.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    results: list[Any] = []
    for start in range(0, len(items), concurrency):
        batch = items[start:start + concurrency]
        batch_results = await asyncio.gather(
            *(worker(item) for item in batch),
            return_exceptions=return_exceptions,
        )
        results.extend(batch_results)
    return results


class EnrichmentCache:
    """Resolved booking URLs for one build run, keyed by (name, city, kind).

    Stores the in-flight future, so two identical lookups in the same batch
    share one outbound call.
    """

    def __init__(self):
        self._entries: dict[tuple[str, str, str], asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(name: str, city: str, kind: str) -> tuple[str, str, str]:
        return (name.strip().lower(), city.strip().lower(), kind)

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_resolve(
        self,
        name: str,
        city: str,
        kind: str,
        resolver: Callable[[], Awaitable[str | None]],
    ) -> str | None:
        key = self.key(name, city, kind)
        future = self._entries.get(key)
        if future is None:
            self.misses += 1
            future = asyncio.ensure_future(resolver())
            self._entries[key] = future
        else:
            self.hits += 1
        return await future
