"""Bounded, keyed fan-out for per-item provider work."""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable, Mapping
from typing import TypeVar

LOG = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")
R = TypeVar("R")


def run_keyed(
    fn: Callable[[K, V], R],
    items: Mapping[K, V],
    *,
    max_workers: int = 3,
) -> dict[K, R]:
    """Apply `fn(key, value)` to every item, at most `max_workers` at a time.

    Items are processed in fixed-size chunks of `max_workers`; each chunk is
    awaited before the next one starts. Results are keyed by the input key,
    never by completion order, and the returned dict follows input order.
    An exception raised by `fn` propagates after its chunk has settled.
    """
    if max_workers < 1:
        raise ValueError("max_workers must be >= 1")
    keys = list(items)
    results: dict[K, R] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        for start in range(0, len(keys), max_workers):
            chunk = keys[start : start + max_workers]
            future_to_key = {executor.submit(fn, k, items[k]): k for k in chunk}
            done, _ = concurrent.futures.wait(future_to_key)
            for future in done:
                results[future_to_key[future]] = future.result()
            LOG.debug("Chunk %s/%s done", start // max_workers + 1, -(-len(keys) // max_workers))
    return {k: results[k] for k in keys}
