"""Sliding-window concurrency for per-business work."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Executor, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def for_each(
    items: Iterable[T],
    limit: int,
    handler: Callable[[T], R],
    *,
    executor: Optional[Executor] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[Tuple[T, R]]:
    """Run `handler` over `items` with at most `limit` calls in flight.

    A new call starts as soon as any running one finishes. Pairs of
    (item, result) are yielded in completion order. Once `cancel_event` is set no
    further calls start; those already running are still awaited and yielded.
    A handler exception is re-raised to the consumer.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    owned = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=limit, thread_name_prefix="resolver")
    in_flight: Dict[Future, T] = {}
    pending = iter(items)
    exhausted = False
    try:
        while True:
            while not exhausted and len(in_flight) < limit:
                if cancel_event is not None and cancel_event.is_set():
                    exhausted = True
                    break
                try:
                    item = next(pending)
                except StopIteration:
                    exhausted = True
                    break
                in_flight[pool.submit(handler, item)] = item
            if not in_flight:
                return
            done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for future in done:
                item = in_flight.pop(future)
                yield item, future.result()
    finally:
        if in_flight:
            logger.debug("Leaving %d handler(s) to finish on their own", len(in_flight))
        if owned:
            pool.shutdown(wait=False)
