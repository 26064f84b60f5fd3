"""Google Maps page helpers: URL builders and a local Playwright interrogator."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError, sync_playwright

logger = logging.getLogger(__name__)

USER_AGENT = "WebsiteGapFinder/1.0"
WEBSITE_LINK_SELECTORS = (
    "a[data-item-id='authority']",
    "a[aria-label^='Website']",
    "a[data-tooltip='Open website']",
)
PLACE_PANEL_SELECTORS = (
    "button[data-item-id='address']",
    "[data-item-id^='phone']",
    "button[data-item-id='oloc']",
)


def build_place_url(place_id: str) -> str:
    return f"https://www.google.com/maps/place/?q=place_id:{place_id}"


def build_search_url(name: str, address: str) -> str:
    query = quote(f"{name} {address}".strip(), safe="")
    return f"https://www.google.com/maps/search/?api=1&query={query}"


def detect_website_link(html: str) -> Optional[bool]:
    """True if a website link is shown, False for a place panel without one, else None."""
    soup = BeautifulSoup(html or "", "html.parser")
    for selector in WEBSITE_LINK_SELECTORS:
        for anchor in soup.select(selector):
            href = (anchor.get("href") or "").strip()
            if href.startswith("http"):
                return True
    for selector in PLACE_PANEL_SELECTORS:
        if soup.select_one(selector) is not None:
            return False
    # A results list or consent wall: nothing authoritative to report.
    return None


class PlaywrightRenderer:
    """Thin wrapper around Playwright to render JavaScript-heavy pages.

    Playwright's sync API is bound to the thread that started it, so each
    renderer must be used and closed on one thread.
    """

    def __init__(
        self,
        timeout_ms: int = 8000,
        headless: bool = True,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._playwright = None
        self._browser = None
        self._timeout_ms = timeout_ms
        self._headless = headless
        self._clock = clock

    def _ensure_browser(self) -> None:
        if self._playwright is None:
            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(headless=self._headless)

    def _remaining_ms(self, deadline: Optional[float]) -> int:
        if deadline is None:
            return self._timeout_ms
        return min(int((deadline - self._clock()) * 1000), self._timeout_ms)

    def render(self, url: str, deadline: Optional[float] = None) -> str:
        """Render `url`; every Playwright wait is capped by what is left until `deadline`."""
        self._ensure_browser()
        # Playwright reads a zero timeout as "wait forever".
        remaining = self._remaining_ms(deadline)
        if remaining <= 0:
            raise TimeoutError(f"no time left to load {url}")
        page = self._browser.new_page(user_agent=USER_AGENT)
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=remaining)
            remaining = self._remaining_ms(deadline)
            if remaining > 0:
                try:
                    page.wait_for_selector("[data-item-id]", timeout=remaining)
                except PlaywrightTimeoutError:
                    logger.debug("No place panel rendered for %s", url)
            else:
                logger.debug("Time budget spent after loading %s", url)
            return page.content()
        finally:
            page.close()

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> "PlaywrightRenderer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def interrogate(
    url: str,
    goal: str,
    *,
    timeout: float,
    headless: bool = True,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    """Render `url` locally and answer the website goal in the automation payload shape.

    Browser launch, navigation and the panel wait share one `timeout` budget. The
    goal text is accepted for interface parity; the local check only knows how to
    look for a website link.
    """
    deadline = clock() + timeout
    logger.debug("Interrogating %s locally (goal=%s)", url, goal[:60])
    with PlaywrightRenderer(timeout_ms=int(timeout * 1000), headless=headless, clock=clock) as renderer:
        html = renderer.render(url, deadline=deadline)
    found = detect_website_link(html)
    if found is None:
        return {"status": "INCONCLUSIVE", "resultJson": {}}
    return {"status": "COMPLETED", "resultJson": {"has_website": found}}
