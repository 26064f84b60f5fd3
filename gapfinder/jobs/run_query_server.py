"""HTTP entrypoint that streams businesses without a website (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Iterator

from flask import Flask, Response, jsonify, request, stream_with_context

from gapfinder.core.config import Settings, get_settings
from gapfinder.core.events import StreamEvent, with_heartbeats
from gapfinder.core.extraction import resolve_request
from gapfinder.core.stream import InvalidRequestError, StreamOrchestrator

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "revision": os.getenv("K_REVISION", "unknown"),
                "region": os.getenv("X_GOOGLE_RUNTIMEREGION", "unknown"),
            }
        ),
        200,
    )


@app.post("/api/run")
def run_stream() -> Any:
    """
    Stream businesses without a website as server-sent events.
    Required JSON fields: prompt
    Optional: radiusKm (number), resumeCursor (int tile index)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    settings = get_settings()

    try:
        stream_request = resolve_request(
            payload.get("prompt"),
            settings,
            radius_km=payload.get("radiusKm"),
            cursor=payload.get("resumeCursor", payload.get("startTileIndex")),
        )
        orchestrator = _build_orchestrator(settings)
        plan = orchestrator.plan(stream_request)
    except InvalidRequestError as exc:
        return jsonify({"error": str(exc)}), 400

    logger.info(
        "Streaming %s near %s: tiles %d-%d of %d",
        list(stream_request.business_types),
        stream_request.location,
        plan.start_index,
        plan.end_index - 1,
        len(plan.tiles),
    )
    cancel_event = threading.Event()
    events = with_heartbeats(
        orchestrator.stream(plan, cancel_event),
        settings.heartbeat_seconds,
        cancel_event=cancel_event,
    )
    return Response(
        stream_with_context(_encode(events)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------- Internals ----------


def _build_orchestrator(settings: Settings) -> StreamOrchestrator:
    return StreamOrchestrator.from_settings(settings)


def _encode(events: Iterator[StreamEvent]) -> Iterator[str]:
    # Closing on disconnect sets the cancel event through with_heartbeats.
    try:
        for event in events:
            yield event.encode()
    finally:
        events.close()


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT, then 8080."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port or 8080)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
