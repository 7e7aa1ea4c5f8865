from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
import logging

from ..errors import ProviderError
from ..models import PrayerTimeSet, ScheduleReport
from ..notifier import PrayerNotifier
from .prayer import PrayerService

logger = logging.getLogger(__name__)


class RefreshResult(str, Enum):
    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILED = "failed"


@dataclass(slots=True)
class RefreshOutcome:
    result: RefreshResult
    times: PrayerTimeSet | None = None
    report: ScheduleReport | None = None
    error: str | None = None


class BackgroundRefresher:
    """Periodic job: fetch today's times and run the scheduling pipeline."""

    def __init__(self, prayer_service: PrayerService, notifier: PrayerNotifier) -> None:
        self.prayer_service = prayer_service
        self.notifier = notifier

    def fetch(self, day: date | None = None) -> RefreshOutcome:
        if self.prayer_service.selected_location() is None:
            logger.info("No location selected; skipping refresh")
            return RefreshOutcome(result=RefreshResult.NO_DATA)
        try:
            times = self.prayer_service.get_times(day)
        except ProviderError as exc:
            logger.error("Prayer times could not be fetched: %s", exc)
            return RefreshOutcome(result=RefreshResult.FAILED, error=str(exc))
        if times is None:
            logger.warning("Provider returned no prayer times")
            return RefreshOutcome(result=RefreshResult.FAILED, error="No prayer times for today")
        return RefreshOutcome(result=RefreshResult.NEW_DATA, times=times)

    def run(self, now: datetime | None = None) -> RefreshOutcome:
        moment = now or datetime.now()
        outcome = self.fetch(moment.date())
        if outcome.times is not None:
            outcome.report = self.notifier.schedule(outcome.times, moment)
            logger.info("Background refresh finished: %s", outcome.report.outcome.value)
        return outcome
