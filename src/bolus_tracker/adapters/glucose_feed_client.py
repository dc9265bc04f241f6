"""Nightscout-compatible glucose feed client."""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from bolus_tracker.domain.errors import GlucoseFeedError
from bolus_tracker.domain.glucose import GlucoseEntry

DEFAULT_TIMEOUT_SECONDS = 15.0


class GlucoseEntryPayload(BaseModel):
    """Sensor glucose entry as returned by the feed."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, alias="_id")
    sgv: int
    date: float
    date_string: str | None = Field(default=None, alias="dateString")
    direction: str | None = None
    type: str | None = None


_ENTRIES = TypeAdapter(list[GlucoseEntryPayload])


class GlucoseFeedClient(Protocol):
    """Interface for reading the latest glucose value."""

    async def latest_entry(
        self, base_url: str, token: str | None
    ) -> GlucoseEntry | None:
        """Return the most recent entry, or None when the feed is empty."""


@dataclass
class HttpxGlucoseFeedClient(GlucoseFeedClient):
    """HTTPX-backed glucose feed client."""

    http_client: httpx.AsyncClient
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def create(
        cls, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    ) -> "HttpxGlucoseFeedClient":
        """Create a feed client with a managed httpx session."""
        return cls(http_client=httpx.AsyncClient(), timeout_seconds=timeout_seconds)

    async def latest_entry(
        self, base_url: str, token: str | None
    ) -> GlucoseEntry | None:
        """Fetch ``api/v1/entries/sgv.json?count=1`` and return its first entry."""
        url = f"{normalize_base_url(base_url)}api/v1/entries/sgv.json"
        params = {"count": "1"}
        if token is not None and token.strip():
            params["token"] = token
        try:
            async with asyncio.timeout(self.timeout_seconds):
                response = await self.http_client.get(
                    url, params=params, timeout=self.timeout_seconds
                )
            response.raise_for_status()
            entries = _ENTRIES.validate_json(response.content)
        except httpx.HTTPStatusError as exc:
            raise GlucoseFeedError(
                f"Glucose feed returned HTTP {exc.response.status_code}"
            ) from exc
        except ValidationError as exc:
            raise GlucoseFeedError("Glucose feed returned malformed data") from exc
        except TimeoutError as exc:
            raise GlucoseFeedError(
                f"Glucose feed timed out after {self.timeout_seconds:g} s"
            ) from exc
        # Hosts that fail IDNA encoding raise UnicodeError while the request
        # is being built.
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError, ValueError) as exc:
            raise GlucoseFeedError(
                f"Could not reach the glucose feed: {exc.__class__.__name__}"
            ) from exc
        if not entries:
            return None
        first = entries[0]
        return GlucoseEntry(
            id=first.id,
            sgv=first.sgv,
            date=first.date,
            date_string=first.date_string,
            direction=first.direction,
            type=first.type,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def normalize_base_url(raw: str) -> str:
    """Trim the URL and make sure it ends with exactly one slash."""
    trimmed = raw.strip()
    if not trimmed:
        return ""
    return trimmed.rstrip("/") + "/"
