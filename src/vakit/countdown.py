from __future__ import annotations

from datetime import datetime

from .models import CountdownState, PrayerName, PrayerTimeSet
from .timeutils import ONE_DAY, to_instant


def candidates(times: PrayerTimeSet, now: datetime) -> list[tuple[PrayerName, datetime, bool]]:
    """Today's six instants plus tomorrow's imsak.

    The boolean marks the synthetic tomorrow entry.
    """
    entries = [(name, to_instant(times[name], now), False) for name in PrayerName.ordered()]
    first = PrayerName.ordered()[0]
    entries.append((first, entries[0][1] + ONE_DAY, True))
    return entries


def evaluate(times: PrayerTimeSet, now: datetime) -> CountdownState:
    """Map ``now`` onto the current prayer, the next one and the time left.

    Tomorrow's imsak is never before tomorrow 00:00, so there is always a
    strictly later candidate.
    """
    upcoming = [entry for entry in candidates(times, now) if entry[1] > now]
    # min() keeps the first of equal instants, which is the earlier name.
    next_name, next_instant, is_tomorrow = min(upcoming, key=lambda entry: entry[1])
    current = next_name.previous()
    first = PrayerName.ordered()[0]
    return CountdownState(
        current=current,
        next=next_name,
        remaining=next_instant - now,
        next_instant=next_instant,
        current_is_yesterday=next_name == first and not is_tomorrow,
    )
