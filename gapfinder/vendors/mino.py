"""Client for the Mino browser-automation API used to interrogate map pages."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

MINO_ENDPOINT = "https://mino.ai/v1/automation/run-sse"
WEBSITE_GOAL = (
    "Check if this business has a website. Look for a website link on the Google Maps page. "
    "Return true if a website link is found, false if not found. "
    "Return your answer as a JSON object with a 'has_website' boolean field."
)


class MinoError(RuntimeError):
    """Raised when an automation run fails or returns an unreadable body."""


def parse_automation_body(text: str) -> Dict[str, Any]:
    """Decode a plain JSON body, or the last `data:` frame of an SSE body."""
    body = (text or "").strip()
    if not body:
        raise MinoError("empty automation response")
    try:
        payload = json.loads(body)
    except ValueError:
        data_lines = [line.strip() for line in body.splitlines() if line.strip().startswith("data:")]
        if not data_lines:
            raise MinoError("automation response is neither JSON nor SSE")
        frame = data_lines[-1][len("data:"):].strip()
        try:
            payload = json.loads(frame)
        except ValueError as exc:
            raise MinoError(f"unreadable SSE frame: {frame[:200]}") from exc
    if not isinstance(payload, dict):
        raise MinoError("automation payload is not an object")
    return payload


def extract_has_website(payload: Optional[Dict[str, Any]]) -> Optional[bool]:
    """Return `resultJson.has_website` only when it is present and boolean-typed."""
    if not isinstance(payload, dict):
        return None
    result = payload.get("resultJson")
    if isinstance(result, str):
        try:
            result = json.loads(result)
        except ValueError:
            return None
    if not isinstance(result, dict):
        return None
    value = result.get("has_website")
    return value if isinstance(value, bool) else None


def run_automation(
    url: str,
    goal: str,
    *,
    api_key: str,
    timeout: float,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """Run one automation and return its decoded payload.

    The body is streamed so the overall `timeout` and the cancellation signal are
    checked between frames, not only when the connection goes idle.
    """
    deadline = time.monotonic() + timeout
    headers = {"X-API-Key": api_key, "Content-Type": "application/json"}
    lines = []
    with _SESSION.post(
        MINO_ENDPOINT,
        json={"url": url, "goal": goal},
        headers=headers,
        timeout=timeout,
        stream=True,
    ) as response:
        if response.status_code >= 400:
            raise MinoError(f"Mino API error: {response.status_code} {response.text[:200]}")
        if response.encoding is None:
            response.encoding = "utf-8"
        for line in response.iter_lines(decode_unicode=True):
            if cancel_event is not None and cancel_event.is_set():
                raise MinoError("automation cancelled")
            if time.monotonic() > deadline:
                raise requests.Timeout(f"automation exceeded {timeout}s")
            if line is not None:
                lines.append(line)
    return parse_automation_body("\n".join(lines))
