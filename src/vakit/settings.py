from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from .errors import StorageError
from .models import PrayerName, Settings
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "@prayer_settings"

DEFAULT_SETTINGS: Settings = {
    PrayerName.IMSAK: True,
    PrayerName.GUNES: False,
    PrayerName.OGLE: True,
    PrayerName.IKINDI: True,
    PrayerName.AKSAM: True,
    PrayerName.YATSI: True,
}


def default_settings() -> Settings:
    return dict(DEFAULT_SETTINGS)


def _stored_flag(entry: object) -> bool | None:
    if isinstance(entry, bool):
        return entry
    if isinstance(entry, Mapping):
        flag = entry.get("adhan")
        if isinstance(flag, bool):
            return flag
    return None


def resolve(stored: object) -> Settings:
    """Merge stored per-prayer flags over the defaults.

    Accepts ``{"imsak": {"adhan": true}}`` or ``{"imsak": true}`` entries.
    Anything missing or malformed keeps its default.
    """
    settings = default_settings()
    if not isinstance(stored, Mapping):
        return settings
    for name in PrayerName.ordered():
        entry = stored.get(name.value, stored.get(name))
        flag = _stored_flag(entry)
        if flag is None:
            if entry is not None:
                logger.warning("Ignoring malformed setting for %s: %r", name.value, entry)
            continue
        settings[name] = flag
    return settings


def load_settings(store: KeyValueStore, key: str = SETTINGS_KEY) -> Settings:
    try:
        raw = store.get(key)
    except StorageError as exc:
        logger.warning("Could not read settings: %s", exc)
        return default_settings()
    if not raw:
        return default_settings()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored settings are not valid JSON; using defaults")
        return default_settings()
    return resolve(payload)


def dump_settings(settings: Mapping[PrayerName, bool]) -> str:
    resolved = resolve({name.value: value for name, value in settings.items()})
    return json.dumps({name.value: {"adhan": resolved[name]} for name in PrayerName.ordered()})


def save_settings(store: KeyValueStore, settings: Mapping[PrayerName, bool], key: str = SETTINGS_KEY) -> None:
    store.set(key, dump_settings(settings))
