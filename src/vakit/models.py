from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from .timeutils import MIDNIGHT, format_duration

logger = logging.getLogger(__name__)


class PrayerName(str, Enum):
    IMSAK = "imsak"
    GUNES = "gunes"
    OGLE = "ogle"
    IKINDI = "ikindi"
    AKSAM = "aksam"
    YATSI = "yatsi"

    @classmethod
    def ordered(cls) -> list["PrayerName"]:
        return list(cls)

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self]

    @property
    def position(self) -> int:
        return PrayerName.ordered().index(self)

    def previous(self) -> "PrayerName":
        order = PrayerName.ordered()
        return order[(self.position - 1) % len(order)]


DISPLAY_NAMES = {
    PrayerName.IMSAK: "İmsak",
    PrayerName.GUNES: "Güneş",
    PrayerName.OGLE: "Öğle",
    PrayerName.IKINDI: "İkindi",
    PrayerName.AKSAM: "Akşam",
    PrayerName.YATSI: "Yatsı",
}

# Field names used by the Diyanet monthly rows.
PROVIDER_FIELDS = {
    PrayerName.IMSAK: "fajr",
    PrayerName.GUNES: "sun",
    PrayerName.OGLE: "dhuhr",
    PrayerName.IKINDI: "asr",
    PrayerName.AKSAM: "maghrib",
    PrayerName.YATSI: "isha",
}


@dataclass(frozen=True, slots=True)
class PrayerTimeSet(Mapping):
    """The six prayer time strings of one calendar day."""

    times: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.times) != len(PrayerName.ordered()):
            raise ValueError("PrayerTimeSet needs exactly six values")

    @classmethod
    def from_dict(cls, values: Mapping[str, object]) -> "PrayerTimeSet":
        resolved: list[str] = []
        for name in PrayerName.ordered():
            value = values.get(name.value, values.get(name))  # type: ignore[call-overload]
            if not isinstance(value, str):
                logger.warning("Missing time for %s; using %s", name.value, MIDNIGHT)
                value = MIDNIGHT
            resolved.append(value.strip())
        return cls(times=tuple(resolved))

    @classmethod
    def from_provider_row(cls, row: Mapping[str, object]) -> "PrayerTimeSet":
        return cls.from_dict({name.value: row.get(key) for name, key in PROVIDER_FIELDS.items()})

    def __getitem__(self, key: PrayerName | str) -> str:
        try:
            name = PrayerName(key)
        except ValueError:
            raise KeyError(key) from None
        return self.times[name.position]

    def __iter__(self) -> Iterator[PrayerName]:
        return iter(PrayerName.ordered())

    def __len__(self) -> int:
        return len(self.times)

    def to_dict(self) -> dict[str, str]:
        return {name.value: self[name] for name in self}


Settings = dict[PrayerName, bool]


@dataclass(frozen=True, slots=True)
class ScheduleItem:
    name: PrayerName
    time: str
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ScheduleMeta:
    fingerprint: str
    date: str
    # Earliest registered alert; once it has fired the batch is no longer complete.
    first_alert: datetime | None = None

    def to_dict(self) -> dict[str, str]:
        values = {"hash": self.fingerprint, "date": self.date}
        if self.first_alert is not None:
            values["firstAlert"] = self.first_alert.isoformat()
        return values


@dataclass(frozen=True, slots=True)
class CountdownState:
    current: PrayerName
    next: PrayerName
    remaining: timedelta
    next_instant: datetime
    current_is_yesterday: bool = False

    @property
    def remaining_text(self) -> str:
        return format_duration(self.remaining)


class ScheduleOutcome(str, Enum):
    SCHEDULED = "scheduled"
    PARTIAL = "partial"
    UNCHANGED = "unchanged"
    BUSY = "busy"
    PERMISSION_DENIED = "permission_denied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(slots=True)
class ScheduleReport:
    outcome: ScheduleOutcome
    fingerprint: str = ""
    date: str = ""
    registered: list[PrayerName] = field(default_factory=list)
    failed: list[PrayerName] = field(default_factory=list)
    committed: bool = False
