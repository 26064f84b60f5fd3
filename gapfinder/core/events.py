"""Typed stream events, their wire encoding and heartbeat interleaving."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

METADATA = "metadata"
TILE = "tile"
BUSINESS = "business"
PROGRESS = "progress"
HEARTBEAT = "heartbeat"
DONE = "done"
ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    name: str
    data: Dict[str, Any]

    def encode(self) -> str:
        payload = json.dumps(self.data, ensure_ascii=False, separators=(",", ":"))
        return f"event: {self.name}\ndata: {payload}\n\n"


def heartbeat() -> StreamEvent:
    return StreamEvent(HEARTBEAT, {"timestamp": datetime.now(timezone.utc).isoformat()})


def error(message: str) -> StreamEvent:
    return StreamEvent(ERROR, {"message": message})


_END = object()


def with_heartbeats(
    events: Iterable[StreamEvent],
    interval: float,
    *,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[StreamEvent]:
    """Drain `events` on a background thread, adding a heartbeat every `interval` seconds.

    Heartbeats follow the clock, not the source, so they keep coming while a slow
    tile is being processed. Closing this generator sets `cancel_event`.
    """
    if interval <= 0:
        yield from events
        return

    buffer: "queue.Queue[Any]" = queue.Queue()

    def pump() -> None:
        try:
            for event in events:
                buffer.put(event)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Event source failed: %s", exc)
            buffer.put(error(str(exc) or exc.__class__.__name__))
        finally:
            buffer.put(_END)

    threading.Thread(target=pump, name="stream-pump", daemon=True).start()
    next_beat = time.monotonic() + interval
    try:
        while True:
            try:
                item = buffer.get(timeout=max(next_beat - time.monotonic(), 0.0))
            except queue.Empty:
                yield heartbeat()
                next_beat = time.monotonic() + interval
                continue
            if item is _END:
                return
            yield item
            if time.monotonic() >= next_beat:
                yield heartbeat()
                next_beat = time.monotonic() + interval
    finally:
        if cancel_event is not None:
            cancel_event.set()
