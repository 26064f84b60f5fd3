import threading
from datetime import datetime, timedelta, timezone

import pytest

from gapfinder.core import resolver
from gapfinder.core.cache import CacheError, InMemoryBusinessCache
from gapfinder.core.config import Settings
from gapfinder.models import BusinessRecord, HasWebsite, ResolutionSource

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
NO_RETRY_WAIT = resolver.RetryPolicy(max_retries=2, backoff_base_ms=0)


def _business(**overrides):
    fields = dict(identity="osm:node:1", name="Joe's Cafe", address="1 Main St", provenance="nominatim")
    fields.update(overrides)
    return BusinessRecord(**fields)


class ScriptedAutomation:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, url, goal, *, timeout, cancel_event=None):
        self.calls.append(url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _no_website():
    return {"status": "COMPLETED", "resultJson": {"has_website": False}}


def _resolver(cache=None, **kwargs):
    kwargs.setdefault("retry_policy", NO_RETRY_WAIT)
    return resolver.WebsiteResolver(cache or InMemoryBusinessCache(), clock=lambda: NOW, **kwargs)


def test_fresh_cache_entry_skips_verification():
    cache = InMemoryBusinessCache()
    cache.put("osm:node:1", HasWebsite.NO, "Joe's Cafe", NOW - timedelta(hours=23, minutes=59))
    automation = ScriptedAutomation(_no_website())

    result = _resolver(cache, automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert result.source is ResolutionSource.CACHE
    assert automation.calls == []


def test_stale_cache_entry_is_reverified():
    cache = InMemoryBusinessCache()
    cache.put("osm:node:1", HasWebsite.YES, "Joe's Cafe", NOW - timedelta(hours=24, seconds=1))
    automation = ScriptedAutomation(_no_website())

    result = _resolver(cache, automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert result.source is ResolutionSource.VERIFIED
    assert len(automation.calls) == 1
    assert cache.get("osm:node:1").last_verified_at == NOW


def test_declared_website_short_circuits():
    cache = InMemoryBusinessCache()
    automation = ScriptedAutomation(_no_website())

    result = _resolver(cache, automation=automation).resolve(_business(declared_website="https://joes.example"))

    assert result.has_website is HasWebsite.YES
    assert result.source is ResolutionSource.DECLARED
    assert automation.calls == []
    assert cache.get("osm:node:1").has_website is HasWebsite.YES


def test_clean_false_is_final_without_retry():
    automation = ScriptedAutomation(_no_website())

    result = _resolver(automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert len(automation.calls) == 1


def test_inconclusive_attempts_are_retried():
    automation = ScriptedAutomation({"status": "FAILED"}, RuntimeError("timeout"), _no_website())

    result = _resolver(automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert len(automation.calls) == 3


def test_exhausted_retries_leave_unknown():
    cache = InMemoryBusinessCache()
    automation = ScriptedAutomation(RuntimeError("boom"))

    result = _resolver(cache, automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.UNKNOWN
    assert result.source is ResolutionSource.UNRESOLVED
    assert len(automation.calls) == NO_RETRY_WAIT.max_attempts
    assert cache.get("osm:node:1").has_website is HasWebsite.UNKNOWN


def test_backoff_is_linear():
    policy = resolver.RetryPolicy(max_retries=2, backoff_base_ms=400)

    assert policy.max_attempts == 3
    assert policy.backoff_seconds(1) == pytest.approx(0.4)
    assert policy.backoff_seconds(2) == pytest.approx(0.8)


def test_backoff_uses_sleep_between_attempts():
    sleeps = []
    automation = ScriptedAutomation({}, _no_website())
    resolve = resolver.WebsiteResolver(
        InMemoryBusinessCache(),
        automation=automation,
        retry_policy=resolver.RetryPolicy(max_retries=1, backoff_base_ms=250),
        clock=lambda: NOW,
        sleep=sleeps.append,
    )

    resolve.resolve(_business())

    assert sleeps == [pytest.approx(0.25)]


def test_no_automation_writes_placeholder():
    cache = InMemoryBusinessCache()

    result = _resolver(cache).resolve(_business())

    assert result.has_website is HasWebsite.UNKNOWN
    assert result.source is ResolutionSource.UNRESOLVED
    entry = cache.get("osm:node:1")
    assert entry.has_website is HasWebsite.UNKNOWN
    assert entry.name == "Joe's Cafe"


def test_cancelled_resolution_skips_automation():
    automation = ScriptedAutomation(_no_website())
    cancel = threading.Event()
    cancel.set()

    result = _resolver(automation=automation).resolve(_business(), cancel)

    assert result.has_website is HasWebsite.UNKNOWN
    assert automation.calls == []


class BrokenCache(InMemoryBusinessCache):
    def put(self, *args, **kwargs):
        raise CacheError("disk full")


def test_cache_write_failure_does_not_fail_resolution(caplog):
    automation = ScriptedAutomation(_no_website())

    with caplog.at_level("ERROR"):
        result = _resolver(BrokenCache(), automation=automation).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert "Cache write failed" in caplog.text


class FakeDirectory:
    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def lookup(self, business):
        self.calls += 1
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


def test_directory_empty_website_means_no():
    automation = ScriptedAutomation({"resultJson": {"has_website": True}})

    result = _resolver(automation=automation, directory=FakeDirectory(("pid", ""))).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert result.source is ResolutionSource.VERIFIED
    assert automation.calls == []


def test_directory_without_field_falls_through_to_place_page():
    automation = ScriptedAutomation(_no_website())

    result = _resolver(automation=automation, directory=FakeDirectory(("pid-9", None))).resolve(_business())

    assert result.has_website is HasWebsite.NO
    assert automation.calls == ["https://www.google.com/maps/place/?q=place_id:pid-9"]


def test_directory_failure_uses_search_url():
    automation = ScriptedAutomation(_no_website())

    _resolver(automation=automation, directory=FakeDirectory(RuntimeError("quota"))).resolve(_business())

    assert automation.calls[0].startswith("https://www.google.com/maps/search/?api=1&query=Joe%27s%20Cafe")


def test_concurrent_resolves_share_one_verification():
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow_automation(url, goal, *, timeout, cancel_event=None):
        calls.append(url)
        entered.set()
        release.wait(5)
        return _no_website()

    shared = _resolver(automation=slow_automation)
    results = []
    first = threading.Thread(target=lambda: results.append(shared.resolve(_business())))
    second = threading.Thread(target=lambda: results.append(shared.resolve(_business())))
    first.start()
    assert entered.wait(5)
    second.start()
    release.set()
    first.join(5)
    second.join(5)

    assert len(calls) == 1
    assert [r.has_website for r in results] == [HasWebsite.NO, HasWebsite.NO]


def test_build_automation_by_backend():
    assert resolver.build_automation(Settings()) is None
    assert resolver.build_automation(Settings(mino_api_key="key")).keywords == {"api_key": "key"}
    browser = resolver.build_automation(Settings(verification_backend="browser", browser_headless=False))
    assert browser.keywords == {"headless": False}


def test_build_resolver_wires_directory_only_with_key():
    assert resolver.build_resolver(Settings(), InMemoryBusinessCache()).directory is None
    assert resolver.build_resolver(Settings(google_api_key="key"), InMemoryBusinessCache()).directory is not None
