"""Per-item results for stages that process issues one at a time or in batches."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from counsel_engine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ItemResult(Generic[T]):
    """Outcome of processing one item: either a value or the error that stopped it."""

    item_id: str
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of ``items`` of at most ``size`` elements."""
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


async def capture(item_id: str, work: Awaitable[R], *, label: str = "item") -> ItemResult[R]:
    """Await ``work`` and fold any exception into a failed ItemResult."""
    try:
        return ItemResult(item_id=item_id, value=await work)
    except Exception as e:
        logger.warning(f"{label} failed for {item_id}: {e}", extra={"item_id": item_id})
        return ItemResult(item_id=item_id, error=str(e) or type(e).__name__)


async def gather_items(
    items: Sequence[T],
    key: Callable[[T], str],
    worker: Callable[[T], Awaitable[R]],
    *,
    label: str = "item",
) -> list[ItemResult[R]]:
    """Run ``worker`` over every item concurrently; results keep input order."""
    return await asyncio.gather(
        *[capture(key(item), worker(item), label=label) for item in items]
    )
