"""Glucose feed polling and pending-capture retry policy."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from bolus_tracker.adapters.glucose_feed_client import GlucoseFeedClient
from bolus_tracker.clock import utc_now
from bolus_tracker.domain.errors import GlucoseFeedError
from bolus_tracker.domain.glucose import (
    GlucoseEntry,
    GlucoseFailure,
    GlucoseIdle,
    GlucoseLoading,
    GlucoseState,
    GlucoseSuccess,
    GlucoseSyncStatus,
)
from bolus_tracker.domain.models import Profile

MAX_ATTEMPTS = 6
BASE_DELAY_MINUTES = 10
MAX_DELAY_MINUTES = 360
_MAX_EXPONENT = 10

_logger = logging.getLogger(__name__)

ProfileProvider = Callable[[], Profile | None]


def next_delay_minutes(attempts: int) -> int:
    """Return the wait before the next capture attempt."""
    exponent = min(max(attempts, 0), _MAX_EXPONENT)
    return min(BASE_DELAY_MINUTES * 2**exponent, MAX_DELAY_MINUTES)


def is_stalled(attempts: int) -> bool:
    """Return True once a capture should stop being retried."""
    return attempts >= MAX_ATTEMPTS


@dataclass
class GlucoseSyncService:
    """Polls the glucose feed and tracks its connection health."""

    client: GlucoseFeedClient
    poll_interval_seconds: float = 60.0
    clock: Callable[[], datetime] = utc_now
    state: GlucoseState = field(default_factory=GlucoseIdle)
    status: GlucoseSyncStatus = field(default_factory=GlucoseSyncStatus)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _profile_provider: ProfileProvider | None = field(
        default=None, init=False, repr=False
    )

    @property
    def is_polling(self) -> bool:
        """Return True while the background loop is running."""
        return self._task is not None and not self._task.done()

    async def fetch_latest(self, base_url: str, token: str | None) -> GlucoseEntry:
        """Fetch the latest reading, raising GlucoseFeedError on any failure."""
        try:
            entry = await self.client.latest_entry(base_url, token)
        except GlucoseFeedError:
            raise
        except Exception as exc:
            _logger.exception("Unexpected glucose feed error")
            raise GlucoseFeedError(
                f"Could not read the glucose feed: {exc.__class__.__name__}"
            ) from exc
        if entry is None:
            raise GlucoseFeedError("The glucose feed has no readings")
        return entry

    async def refresh(self, profile: Profile | None) -> None:
        """Fetch once and move the state machine accordingly."""
        url = profile.feed_url if profile is not None else None
        if profile is None or url is None:
            self.state = GlucoseIdle()
            return

        self.state = GlucoseLoading()
        try:
            entry = await self.fetch_latest(url, profile.nightscout_token)
        except GlucoseFeedError as exc:
            if not self._feed_configured():
                self.state = GlucoseIdle()
                return
            message = str(exc)
            _logger.warning("Glucose feed refresh failed: %s", message)
            self._record_failure(message)
            return

        if not self._feed_configured():
            self.state = GlucoseIdle()
            return
        self.state = GlucoseSuccess(entry)
        self.status = replace(
            self.status,
            last_success_at=self.clock(),
            consecutive_failures=0,
        )

    def restart_polling(self, profile_provider: ProfileProvider) -> None:
        """Cancel any running loop and start a new one if a feed is configured."""
        self._cancel_task()
        self._profile_provider = profile_provider
        profile = profile_provider()
        if profile is None or profile.feed_url is None:
            self.state = GlucoseIdle()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.info("No running event loop; glucose polling not started")
            return
        self._task = loop.create_task(self._poll(profile_provider))
        _logger.info("Glucose polling started")

    async def stop_polling(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        task = self._task
        self._cancel_task()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
            _logger.info("Glucose polling stopped")
        if isinstance(self.state, GlucoseLoading):
            self.state = GlucoseIdle()

    async def _poll(self, profile_provider: ProfileProvider) -> None:
        while True:
            try:
                await self.refresh(profile_provider())
            except Exception as exc:
                _logger.exception("Glucose polling iteration failed")
                self._record_failure(
                    f"Could not read the glucose feed: {exc.__class__.__name__}"
                )
            await asyncio.sleep(self.poll_interval_seconds)

    def _feed_configured(self) -> bool:
        # The profile can change while a fetch is in flight.
        if self._profile_provider is None:
            return True
        profile = self._profile_provider()
        return profile is not None and profile.feed_url is not None

    def _record_failure(self, message: str) -> None:
        self.state = GlucoseFailure(message)
        current = self.status
        self.status = replace(
            current,
            last_error_at=self.clock(),
            last_error_message=message,
            consecutive_failures=current.consecutive_failures + 1,
        )

    def _cancel_task(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
