from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .errors import BatchTooLargeError

MAX_BATCH_WRITE_ITEMS = 25


def chunk[T](items: Sequence[T], max_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``max_size``, keeping order."""
    if max_size <= 0:
        raise ValueError("max_size must be > 0")
    return [list(items[i : i + max_size]) for i in range(0, len(items), max_size)]


def ensure_batch_size(
    requests: Sequence[object],
    *,
    operation: str,
    table_name: str | None = None,
    limit: int = MAX_BATCH_WRITE_ITEMS,
) -> None:
    if len(requests) > limit:
        raise BatchTooLargeError(size=len(requests), limit=limit, operation=operation, table_name=table_name)


@dataclass(frozen=True)
class BatchWriteResult:
    chunks_written: int
    items_written: int
