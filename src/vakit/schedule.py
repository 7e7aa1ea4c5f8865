from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime

from .errors import StorageError
from .models import PrayerName, PrayerTimeSet, ScheduleItem, ScheduleMeta
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SCHEDULED_META_KEY = "@prayer_scheduled_meta_v3"

DEDUP_DATE_AND_FINGERPRINT = "date_and_fingerprint"
DEDUP_FINGERPRINT = "fingerprint"
DEDUP_KEYS = (DEDUP_DATE_AND_FINGERPRINT, DEDUP_FINGERPRINT)

PAIR_SEPARATOR = "|"
FIELD_SEPARATOR = "="


def canonical_encoding(items: Iterable[ScheduleItem]) -> str:
    """Encode enabled (name, time) pairs sorted by name as ``name=time|...``."""
    pairs = sorted((item.name.value, item.time) for item in items if item.enabled)
    return PAIR_SEPARATOR.join(f"{name}{FIELD_SEPARATOR}{value}" for name, value in pairs)


def fingerprint(items: Iterable[ScheduleItem]) -> str:
    return hashlib.sha256(canonical_encoding(items).encode("utf-8")).hexdigest()


def build(times: PrayerTimeSet, settings: Mapping[PrayerName, bool]) -> tuple[list[ScheduleItem], str]:
    """Return the enabled items in day order and the fingerprint over them."""
    base = [
        ScheduleItem(name=name, time=times[name], enabled=bool(settings.get(name, False)))
        for name in PrayerName.ordered()
    ]
    items = [item for item in base if item.enabled]
    return items, fingerprint(items)


def should_reschedule(
    new_date: str,
    new_fingerprint: str,
    last_meta: ScheduleMeta | None,
    key: str = DEDUP_DATE_AND_FINGERPRINT,
    now: datetime | None = None,
) -> bool:
    """Whether the committed alerts no longer match what should be registered.

    Alerts are one-shot. Keyed on the fingerprint alone, the date never
    changes the answer, so a batch whose first alert has already fired at
    ``now`` counts as stale and is registered again.
    """
    if last_meta is None:
        return True
    if last_meta.fingerprint != new_fingerprint:
        return True
    if key == DEDUP_FINGERPRINT:
        first_alert = last_meta.first_alert
        if now is None or first_alert is None:
            return False
        try:
            return now >= first_alert
        except TypeError:
            # naive vs aware: cannot tell, register again
            return True
    return last_meta.date != new_date


def load_meta(store: KeyValueStore, key: str = SCHEDULED_META_KEY) -> ScheduleMeta | None:
    try:
        raw = store.get(key)
    except StorageError as exc:
        logger.warning("Could not read schedule metadata: %s", exc)
        return None
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding corrupt schedule metadata")
        return None
    if not isinstance(payload, dict):
        return None
    fingerprint_value = payload.get("hash")
    date_value = payload.get("date")
    if not isinstance(fingerprint_value, str) or not isinstance(date_value, str):
        logger.warning("Discarding incomplete schedule metadata")
        return None
    if not fingerprint_value or not date_value:
        return None
    first_alert = None
    raw_first = payload.get("firstAlert")
    if isinstance(raw_first, str):
        try:
            first_alert = datetime.fromisoformat(raw_first)
        except ValueError:
            logger.warning("Ignoring malformed first alert time in schedule metadata")
    return ScheduleMeta(fingerprint=fingerprint_value, date=date_value, first_alert=first_alert)


def store_meta(store: KeyValueStore, meta: ScheduleMeta, key: str = SCHEDULED_META_KEY) -> None:
    store.set(key, json.dumps(meta.to_dict()))
