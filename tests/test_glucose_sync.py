"""Tests for glucose polling and retry policy."""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta

import pytest

from bolus_tracker.adapters.glucose_feed_client import GlucoseFeedClient
from bolus_tracker.domain.errors import GlucoseFeedError
from bolus_tracker.domain.glucose import (
    GlucoseEntry,
    GlucoseFailure,
    GlucoseIdle,
    GlucoseLoading,
    GlucoseSuccess,
    GlucoseSyncStatus,
    trend_arrow,
)
from bolus_tracker.domain.models import Profile
from bolus_tracker.services.glucose_sync import (
    GlucoseSyncService,
    is_stalled,
    next_delay_minutes,
)
from tests.conftest import FakeGlucoseFeedClient, FixedClock, make_profile


@pytest.mark.parametrize(
    ("attempts", "minutes"),
    [(-1, 10), (0, 10), (1, 20), (2, 40), (3, 80), (4, 160), (5, 320), (6, 360)],
)
def test_next_delay_doubles_up_to_cap(attempts: int, minutes: int) -> None:
    assert next_delay_minutes(attempts) == minutes
    assert next_delay_minutes(50) == 360


def test_is_stalled_after_six_attempts() -> None:
    assert not is_stalled(5)
    assert is_stalled(6)


def test_trend_arrows() -> None:
    assert trend_arrow("DoubleUp") == "↑↑"
    assert trend_arrow("TripleDown") == "⇊"
    assert trend_arrow("NOT COMPUTABLE") == ""
    assert trend_arrow(None) == ""


def test_refresh_without_feed_is_idle() -> None:
    feed = FakeGlucoseFeedClient()
    service = GlucoseSyncService(client=feed)

    asyncio.run(service.refresh(make_profile(nightscout_url="   ")))

    assert service.state == GlucoseIdle()
    assert feed.calls == []


def test_refresh_tracks_success_and_failure_status() -> None:
    clock = FixedClock()
    feed = FakeGlucoseFeedClient()
    service = GlucoseSyncService(client=feed, clock=clock)
    profile = make_profile(
        nightscout_url="https://ns.example.com", nightscout_token="t"
    )

    asyncio.run(service.refresh(profile))

    assert isinstance(service.state, GlucoseSuccess)
    assert service.state.entry.sgv == 120
    assert service.status.last_success_at == clock.now
    assert feed.calls == [("https://ns.example.com", "t")]

    feed.error = "Glucose feed returned HTTP 500"
    clock.advance(timedelta(minutes=1))
    asyncio.run(service.refresh(profile))
    asyncio.run(service.refresh(profile))

    assert service.state == GlucoseFailure("Glucose feed returned HTTP 500")
    assert service.status.consecutive_failures == 2
    assert service.status.last_error_at == clock.now
    assert service.status.last_success_at == clock.now - timedelta(minutes=1)

    feed.error = None
    asyncio.run(service.refresh(profile))

    assert service.status.consecutive_failures == 0
    assert service.status.last_error_message == "Glucose feed returned HTTP 500"


def test_empty_feed_counts_as_failure() -> None:
    service = GlucoseSyncService(client=FakeGlucoseFeedClient(entry=None))

    with pytest.raises(GlucoseFeedError):
        asyncio.run(service.fetch_latest("https://ns.example.com", None))

    asyncio.run(service.refresh(make_profile(nightscout_url="https://ns.example.com")))

    assert isinstance(service.state, GlucoseFailure)


def test_polling_runs_until_stopped() -> None:
    feed = FakeGlucoseFeedClient()
    service = GlucoseSyncService(client=feed, poll_interval_seconds=0.01)
    profile = make_profile(nightscout_url="https://ns.example.com")

    async def run() -> None:
        service.restart_polling(lambda: profile)
        assert service.is_polling
        await asyncio.sleep(0.05)
        await service.stop_polling()

    asyncio.run(run())

    assert not service.is_polling
    assert len(feed.calls) >= 2
    assert isinstance(service.state, GlucoseSuccess)


def test_restart_polling_without_feed_or_loop() -> None:
    service = GlucoseSyncService(client=FakeGlucoseFeedClient())

    service.restart_polling(lambda: None)
    assert service.state == GlucoseIdle()

    profile = make_profile(nightscout_url="https://ns.example.com")
    service.restart_polling(lambda: profile)
    assert not service.is_polling


@dataclass
class _BrokenFeedClient(GlucoseFeedClient):
    """Feed client failing with an error outside the feed error mapping."""

    calls: int = 0

    async def latest_entry(
        self, base_url: str, token: str | None
    ) -> GlucoseEntry | None:
        self.calls += 1
        raise UnicodeError("label empty or too long")


@dataclass
class _BlockingFeedClient(GlucoseFeedClient):
    """Feed client that waits until released."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    async def latest_entry(
        self, base_url: str, token: str | None
    ) -> GlucoseEntry | None:
        self.started.set()
        await self.release.wait()
        return GlucoseEntry(sgv=99, date=1710064800000.0)


def test_unexpected_client_error_becomes_feed_error() -> None:
    service = GlucoseSyncService(client=_BrokenFeedClient())

    with pytest.raises(GlucoseFeedError, match="UnicodeError"):
        asyncio.run(service.fetch_latest("https://xn--a.com", None))


def test_polling_survives_unexpected_errors() -> None:
    feed = _BrokenFeedClient()
    service = GlucoseSyncService(client=feed, poll_interval_seconds=0.01)
    profile = make_profile(nightscout_url="https://xn--a.com")

    async def run() -> None:
        service.restart_polling(lambda: profile)
        await asyncio.sleep(0.05)
        assert service.is_polling
        await service.stop_polling()

    asyncio.run(run())

    assert feed.calls >= 2
    assert service.state == GlucoseFailure(
        "Could not read the glucose feed: UnicodeError"
    )
    assert service.status.consecutive_failures == feed.calls


def test_polling_recovers_after_failing_iteration() -> None:
    profile = make_profile(nightscout_url="https://ns.example.com")
    lookups = 0

    def provider() -> Profile | None:
        nonlocal lookups
        lookups += 1
        if lookups == 2:
            raise RuntimeError("profile unavailable")
        return profile

    service = GlucoseSyncService(
        client=FakeGlucoseFeedClient(), poll_interval_seconds=0.01
    )

    async def run() -> None:
        service.restart_polling(provider)
        await asyncio.sleep(0.05)
        assert service.is_polling
        await service.stop_polling()

    asyncio.run(run())

    assert isinstance(service.state, GlucoseSuccess)
    assert service.status.consecutive_failures == 0
    assert service.status.last_error_message == (
        "Could not read the glucose feed: RuntimeError"
    )


def test_stop_polling_during_fetch_leaves_state_consistent() -> None:
    profile = make_profile(nightscout_url="https://ns.example.com")

    async def run() -> GlucoseSyncService:
        feed = _BlockingFeedClient()
        service = GlucoseSyncService(client=feed, poll_interval_seconds=0.01)
        service.restart_polling(lambda: profile)
        await feed.started.wait()
        assert service.state == GlucoseLoading()
        await service.stop_polling()
        return service

    service = asyncio.run(run())

    assert not service.is_polling
    assert service.state == GlucoseIdle()
    assert service.status == GlucoseSyncStatus()
