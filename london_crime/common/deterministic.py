"""Order-preserving de-duplication."""

from __future__ import annotations

from typing import Callable, Hashable, Iterable, TypeVar

T = TypeVar("T")


def dedupe_first(items: Iterable[T], key: Callable[[T], Hashable]) -> tuple[list[T], int]:
    """Keep the first item per key, preserving order. Items with a ``None`` key are kept."""
    seen: set = set()
    kept: list[T] = []
    dropped = 0
    for item in items:
        item_key = key(item)
        if item_key is None:
            kept.append(item)
            continue
        if item_key in seen:
            dropped += 1
            continue
        seen.add(item_key)
        kept.append(item)
    return kept, dropped
