from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from .config import COMMIT_ALL_OR_NOTHING, NotificationSettings, SchedulerSettings
from .errors import StorageError
from .models import PrayerTimeSet, ScheduleItem, ScheduleMeta, ScheduleOutcome, ScheduleReport
from .schedule import SCHEDULED_META_KEY, build, load_meta, should_reschedule, store_meta
from .services.notifications import NotificationBackend
from .settings import SETTINGS_KEY, load_settings
from .storage import KeyValueStore
from .timeutils import roll_forward

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerState:
    busy: bool = False
    last_report: ScheduleReport | None = None


class _Deadline:
    def __init__(self, clock: Callable[[], float], seconds: float) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def expired(self) -> bool:
        return self._clock() > self._expires_at


class PrayerNotifier:
    """Turns a day's prayer times into registered alerts.

    All scheduling goes through :meth:`schedule` (or :meth:`commit`), which
    hold the ``busy`` flag for their whole run. A call made while another
    one is running returns a ``BUSY`` report without touching anything.
    """

    def __init__(
        self,
        backend: NotificationBackend,
        store: KeyValueStore,
        scheduler_settings: SchedulerSettings | None = None,
        notification_settings: NotificationSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        settings_key: str = SETTINGS_KEY,
        meta_key: str = SCHEDULED_META_KEY,
    ) -> None:
        self.backend = backend
        self.store = store
        self.scheduler_settings = scheduler_settings or SchedulerSettings()
        self.notification_settings = notification_settings or NotificationSettings()
        self.state = SchedulerState()
        self._guard = threading.Lock()
        self._clock = clock
        self._now = now
        self._settings_key = settings_key
        self._meta_key = meta_key

    def schedule(self, times: PrayerTimeSet, now: datetime | None = None) -> ScheduleReport:
        """Resolve settings, build the day's items and commit them if they changed."""
        return self._guarded(lambda moment: self._schedule(times, moment), now)

    def commit(
        self,
        items: Sequence[ScheduleItem],
        fingerprint: str,
        now: datetime | None = None,
    ) -> ScheduleReport:
        return self._guarded(lambda moment: self._commit(items, fingerprint, moment), now)

    def reset(self) -> bool:
        """Cancel every alert and forget the last committed schedule."""
        if not self._guard.acquire(blocking=False):
            return False
        self.state.busy = True
        try:
            self.backend.cancel_all()
            self.store.remove(self._meta_key)
        except Exception as exc:
            logger.warning("Could not reset scheduled alerts: %s", exc)
            return False
        finally:
            self.state.busy = False
            self._guard.release()
        self.state.last_report = None
        return True

    def _guarded(self, run: Callable[[datetime], ScheduleReport], now: datetime | None) -> ScheduleReport:
        if not self._guard.acquire(blocking=False):
            return ScheduleReport(outcome=ScheduleOutcome.BUSY)
        self.state.busy = True
        try:
            report = run(now or self._now())
        finally:
            self.state.busy = False
            self._guard.release()
        self.state.last_report = report
        return report

    def _schedule(self, times: PrayerTimeSet, now: datetime) -> ScheduleReport:
        settings = load_settings(self.store, self._settings_key)
        items, digest = build(times, settings)
        day = now.date().isoformat()
        last_meta = load_meta(self.store, self._meta_key)
        if not should_reschedule(day, digest, last_meta, self.scheduler_settings.dedup_key, now):
            logger.debug("Schedule for %s unchanged; skipping", day)
            return ScheduleReport(outcome=ScheduleOutcome.UNCHANGED, fingerprint=digest, date=day)
        return self._commit(items, digest, now)

    def _commit(self, items: Sequence[ScheduleItem], digest: str, now: datetime) -> ScheduleReport:
        day = now.date().isoformat()
        report = ScheduleReport(outcome=ScheduleOutcome.SCHEDULED, fingerprint=digest, date=day)
        deadline = _Deadline(self._clock, self.scheduler_settings.commit_timeout_seconds)

        try:
            granted = bool(self.backend.request_permission())
        except Exception as exc:
            logger.warning("Notification permission request failed: %s", exc)
            granted = False
        if not granted:
            logger.warning("Notification permission denied; existing alerts left untouched")
            report.outcome = ScheduleOutcome.PERMISSION_DENIED
            return report
        if deadline.expired():
            return self._timed_out(report, "permission request")

        try:
            self.backend.cancel_all()
        except Exception as exc:
            logger.error("Could not cancel scheduled alerts: %s", exc)
            report.outcome = ScheduleOutcome.FAILED
            return report
        if deadline.expired():
            return self._timed_out(report, "cancellation")

        margin = self.scheduler_settings.safety_margin
        all_or_nothing = self.scheduler_settings.commit_mode == COMMIT_ALL_OR_NOTHING
        first_alert: datetime | None = None
        for item in items:
            when = roll_forward(item.time, now, margin)
            title, body = self.notification_settings.render(item.name.display_name)
            try:
                self.backend.register(title, body, when)
            except Exception as exc:
                logger.warning("Could not register %s alert at %s: %s", item.name.value, when.isoformat(), exc)
                report.failed.append(item.name)
                if all_or_nothing:
                    self._rollback()
                    report.registered.clear()
                    report.outcome = ScheduleOutcome.FAILED
                    return report
            else:
                report.registered.append(item.name)
                if first_alert is None or when < first_alert:
                    first_alert = when
            if deadline.expired():
                return self._timed_out(report, f"{item.name.value} registration")

        if report.failed:
            report.outcome = ScheduleOutcome.PARTIAL
        try:
            store_meta(
                self.store,
                ScheduleMeta(fingerprint=digest, date=day, first_alert=first_alert),
                self._meta_key,
            )
        except StorageError as exc:
            logger.warning("Could not persist schedule metadata; will reschedule next time: %s", exc)
        else:
            report.committed = True
        logger.info(
            "Scheduled %d of %d prayer alerts for %s",
            len(report.registered),
            len(items),
            day,
        )
        return report

    def _rollback(self) -> None:
        try:
            self.backend.cancel_all()
        except Exception as exc:
            logger.error("Could not roll back partially registered alerts: %s", exc)

    def _timed_out(self, report: ScheduleReport, step: str) -> ScheduleReport:
        logger.warning(
            "Scheduling timed out after %s (%.1fs budget); will retry",
            step,
            self.scheduler_settings.commit_timeout_seconds,
        )
        report.outcome = ScheduleOutcome.TIMED_OUT
        return report
