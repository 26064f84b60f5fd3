"""Minimal client for the Gemini generateContent REST endpoint."""

import logging

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiError(RuntimeError):
    """Raised when Gemini does not return any candidate text."""


def generate_text(prompt: str, api_key: str, *, model: str = DEFAULT_MODEL, timeout: float = 10) -> str:
    response = _SESSION.post(
        f"{_BASE_URL}/{model}:generateContent",
        params={"key": api_key},
        json={"contents": [{"parts": [{"text": prompt}]}]},
        timeout=timeout,
    )
    response.raise_for_status()
    payload = response.json()
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        logger.error("Gemini response without candidates: %s", str(payload)[:200])
        raise GeminiError("Gemini returned no candidates") from exc
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
    if not text:
        raise GeminiError("Gemini returned empty text")
    return text
