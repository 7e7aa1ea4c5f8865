from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import date
import json
import logging
from typing import Any, Protocol

import httpx  # type: ignore[import]

from ..config import DIYANET_API, LocationSettings, ProviderSettings
from ..errors import ProviderError, StorageError
from ..models import PROVIDER_FIELDS, PrayerTimeSet
from ..storage import KeyValueStore
from ..timeutils import is_wellformed

logger = logging.getLogger(__name__)

SELECTED_LOCATION_KEY = "@selected_location"
CACHED_PRAYER_DATA_KEY = "@cached_prayer_data"
MIN_SEARCH_LENGTH = 3


@dataclass(slots=True)
class Location:
    id: str
    name: str
    city: str = ""
    region: str = ""
    country: str = ""

    @classmethod
    def from_search_row(cls, row: Mapping[str, Any]) -> "Location":
        city = str(row.get("city") or "")
        region = str(row.get("region") or "")
        name = city if not region or region == city else f"{city} / {region}"
        return cls(
            id=str(row["id"]),
            name=name or region,
            city=city,
            region=region,
            country=str(row.get("country") or ""),
        )

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Location":
        return cls(
            id=str(values["id"]),
            name=str(values.get("name") or ""),
            city=str(values.get("city") or ""),
            region=str(values.get("region") or ""),
            country=str(values.get("country") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class PrayerProvider(Protocol):
    name: str

    def search(self, query: str) -> list[Location]:
        ...

    def fetch_month(self, location_id: str) -> list[dict[str, Any]]:
        ...


class DiyanetProvider:
    name = "diyanet"

    def __init__(
        self,
        base_url: str = DIYANET_API,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "DiyanetProvider":
        return cls(base_url=settings.base_url, timeout=settings.timeout)

    def _get_json(self, path: str, params: dict[str, str]) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            if self._client is not None:
                response = self._client.get(url, params=params, timeout=self.timeout)
            else:
                response = httpx.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"Unexpected response from {url}") from exc

    def search(self, query: str) -> list[Location]:
        cleaned = query.strip()
        if len(cleaned) < MIN_SEARCH_LENGTH:
            raise ValueError(f"Search needs at least {MIN_SEARCH_LENGTH} characters")
        payload = self._get_json("search", {"q": cleaned})
        if not isinstance(payload, list):
            raise ProviderError("Unexpected search response")
        results: list[Location] = []
        for row in payload:
            if isinstance(row, dict) and row.get("id") is not None:
                results.append(Location.from_search_row(row))
        return results

    def fetch_month(self, location_id: str) -> list[dict[str, Any]]:
        payload = self._get_json("prayertimes", {"location_id": location_id})
        if not isinstance(payload, list):
            raise ProviderError("Unexpected prayer times response")
        return [row for row in payload if isinstance(row, dict)]


class MonthlyCache:
    """Last fetched month of rows for one location, kept in the key-value store."""

    def __init__(self, store: KeyValueStore, key: str = CACHED_PRAYER_DATA_KEY) -> None:
        self.store = store
        self.key = key

    def _read(self) -> dict[str, Any] | None:
        try:
            raw = self.store.get(self.key)
        except StorageError as exc:
            logger.warning("Could not read cached prayer data: %s", exc)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("monthlyTimes"), list):
            return None
        return data

    def get(self, location_id: str, fetch_day: date | None = None) -> list[dict[str, Any]] | None:
        data = self._read()
        if not data or data.get("locationId") != location_id:
            return None
        if fetch_day is not None and data.get("fetchDate") != fetch_day.isoformat():
            return None
        return data["monthlyTimes"]

    def put(self, location_id: str, fetch_day: date, rows: list[dict[str, Any]]) -> None:
        record = {
            "locationId": location_id,
            "fetchDate": fetch_day.isoformat(),
            "monthlyTimes": rows,
        }
        try:
            self.store.set(self.key, json.dumps(record))
        except StorageError as exc:
            logger.warning("Could not cache prayer data: %s", exc)


class PrayerService:
    def __init__(
        self,
        provider: PrayerProvider,
        store: KeyValueStore,
        default_location: LocationSettings | None = None,
        cache: MonthlyCache | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.provider = provider
        self.store = store
        self.default_location = default_location
        self.cache = cache or MonthlyCache(store)
        self._today = today

    def selected_location(self) -> Location | None:
        raw = None
        try:
            raw = self.store.get(SELECTED_LOCATION_KEY)
        except StorageError as exc:
            logger.warning("Could not read selected location: %s", exc)
        if raw:
            try:
                return Location.from_dict(json.loads(raw))
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.warning("Ignoring corrupt selected location")
        fallback = self.default_location
        if fallback and fallback.id:
            return Location(id=fallback.id, name=fallback.name or fallback.id)
        return None

    def select_location(self, location: Location) -> None:
        self.store.set(SELECTED_LOCATION_KEY, json.dumps(location.to_dict(), ensure_ascii=False))

    def search(self, query: str) -> list[Location]:
        return self.provider.search(query)

    def get_times(self, day: date | None = None) -> PrayerTimeSet | None:
        """Times for ``day`` (default today) at the selected location."""
        location = self.selected_location()
        if location is None:
            return None
        today = self._today()
        target = day or today
        rows = self.cache.get(location.id, today)
        if rows is None:
            try:
                rows = self.provider.fetch_month(location.id)
            except ProviderError:
                stale = self.cache.get(location.id)
                row = _row_for_day(stale or [], target, exact=True)
                if row is None:
                    raise
                logger.warning("Using cached prayer times for %s after a failed fetch", target.isoformat())
                return _times_from_row(row)
            self.cache.put(location.id, today, rows)
        row = _row_for_day(rows, target)
        if row is None:
            return None
        return _times_from_row(row)


def _row_for_day(rows: list[dict[str, Any]], day: date, exact: bool = False) -> dict[str, Any] | None:
    prefix = day.isoformat()
    for row in rows:
        if str(row.get("date", "")).startswith(prefix):
            return row
    if exact or not rows:
        return None
    return rows[0]


def _times_from_row(row: Mapping[str, Any]) -> PrayerTimeSet:
    cleaned = {
        key: _sanitize_time(value) if isinstance(value, str) else value
        for key, value in row.items()
        if key in PROVIDER_FIELDS.values()
    }
    malformed = sorted(key for key, value in cleaned.items() if isinstance(value, str) and not is_wellformed(value))
    if malformed:
        logger.warning("Provider row for %s has malformed times: %s", row.get("date", "?"), ", ".join(malformed))
    return PrayerTimeSet.from_provider_row(cleaned)


def _sanitize_time(value: str) -> str:
    value = value.strip()
    if " " in value:
        value = value.split(" ", 1)[0]
    if "+" in value:
        value = value.split("+", 1)[0]
    if "-" in value and value.count(":") == 1 and value.split("-", 1)[1].isdigit():
        value = value.split("-", 1)[0]
    return value
