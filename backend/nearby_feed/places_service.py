"""
places_service.py
~~~~~~~~~~~~~~~~~
Remote business lookup via the Google Places *Nearby Search* endpoint.

Public helper
-------------
    GooglePlacesProvider(api_key).query(coordinate, radius_m) ->
        list[BusinessRecord]   # origin=REMOTE

Behaviour
---------
* No API key configured ⇒ ``[]`` without touching the network.
* ``REQUEST_DENIED`` or any status other than ``OK`` / ``ZERO_RESULTS``
  ⇒ ``[]`` (logged).
* Network errors, HTTP ≥ 500 and undecodable JSON raise
  :class:`~nearby_feed.exceptions.ProviderFailure`; the pipeline turns that
  into an empty Remote slice.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional

import httpx
from dateutil import tz

from . import config
from .api_logging import logged_request_async
from .constants import USER_AGENT
from .exceptions import ProviderFailure
from .models import BusinessRecord, Coordinate, Origin

UTC = tz.UTC
LOG = logging.getLogger("places_service")

BASE_URL = "https://maps.googleapis.com/maps/api/place"
NEARBY_URL = f"{BASE_URL}/nearbysearch/json"
PHOTO_URL = f"{BASE_URL}/photo"
OK_STATUSES = {"OK", "ZERO_RESULTS"}


def _photo_urls(place: dict[str, Any], api_key: str) -> tuple[str, ...]:
    urls = []
    for photo in place.get("photos") or []:
        ref = photo.get("photo_reference")
        if ref:
            urls.append(f"{PHOTO_URL}?maxwidth=400&photoreference={ref}&key={api_key}")
    return tuple(urls)


def parse_place(place: dict[str, Any], api_key: str = "") -> Optional[BusinessRecord]:
    """
    Convert one Nearby Search result into a :class:`BusinessRecord`.

    Returns ``None`` for results without an id or usable geometry.
    """
    place_id = place.get("place_id")
    if not place_id:
        return None
    try:
        loc = place["geometry"]["location"]
        coordinate = Coordinate(float(loc["lat"]), float(loc["lng"]))
        rating = min(5.0, max(0.0, float(place.get("rating") or 0.0)))
        review_count = max(0, int(place.get("user_ratings_total") or 0))
    except (KeyError, TypeError, ValueError) as exc:
        LOG.debug("[places] skipping %s: %s", place_id, exc)
        return None

    types = place.get("types") or []
    return BusinessRecord(
        id=str(place_id),
        name=place.get("name", ""),
        coordinate=coordinate,
        category=types[0] if types else "Uncategorized",
        rating=rating,
        review_count=review_count,
        origin=Origin.REMOTE,
        last_updated=dt.datetime.now(UTC),
        address=place.get("vicinity", ""),
        photos=_photo_urls(place, api_key),
    )


class GooglePlacesProvider:
    def __init__(
        self,
        api_key: str = config.GOOGLE_PLACES_API_KEY,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self._client = client
        self._timeout = timeout

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await logged_request_async(self._client, "get", NEARBY_URL, params=params)
        async with httpx.AsyncClient(
            timeout=self._timeout, headers={"User-Agent": USER_AGENT}
        ) as client:
            return await logged_request_async(client, "get", NEARBY_URL, params=params)

    async def query(self, coordinate: Coordinate, radius_m: int) -> list[BusinessRecord]:
        if not self.api_key.strip():
            LOG.info("[places] API key is not configured")
            return []

        params = {
            "location": f"{coordinate.latitude},{coordinate.longitude}",
            "radius": radius_m,
            "key": self.api_key,
        }
        try:
            resp = await self._get(params)
            data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderFailure(f"places request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderFailure(f"places response not JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise ProviderFailure("places response is not an object")

        status = data.get("status", "")
        if status == "REQUEST_DENIED":
            LOG.warning("[places] request denied – check API key")
            return []
        if status not in OK_STATUSES:
            LOG.warning("[places] API returned status %s", status or "<missing>")
            return []

        results = data.get("results") or []
        records = [r for r in (parse_place(p, self.api_key) for p in results) if r is not None]
        LOG.info("[places] %d places near %.5f, %.5f", len(records), coordinate.latitude, coordinate.longitude)
        return records


__all__ = ["GooglePlacesProvider", "parse_place"]
