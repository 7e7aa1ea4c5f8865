from __future__ import annotations

from datetime import date, datetime
import unittest

from vakit.errors import ProviderError
from vakit.models import ScheduleOutcome
from vakit.notifier import PrayerNotifier
from vakit.services.notifications import InAppNotificationBackend
from vakit.services.prayer import Location, PrayerService
from vakit.services.refresh import BackgroundRefresher, RefreshResult
from vakit.storage import MemoryStore

ROWS = [{
    "date": "2024-05-10T00:00:00+03:00",
    "fajr": "05:12",
    "sun": "06:45",
    "dhuhr": "12:30",
    "asr": "15:40",
    "maghrib": "18:10",
    "isha": "19:35",
}]


class DummyProvider:
    name = "diyanet"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def search(self, query):
        return []

    def fetch_month(self, location_id):
        if self.error is not None:
            raise self.error
        return ROWS


class BackgroundRefresherTests(unittest.TestCase):
    def _refresher(self, provider: DummyProvider, select: bool = True) -> tuple[BackgroundRefresher, InAppNotificationBackend]:
        store = MemoryStore()
        service = PrayerService(provider, store, today=lambda: date(2024, 5, 10))
        if select:
            service.select_location(Location(id="9541", name="İstanbul"))
        backend = InAppNotificationBackend()
        return BackgroundRefresher(service, PrayerNotifier(backend, store)), backend

    def test_without_location_there_is_no_data(self) -> None:
        refresher, backend = self._refresher(DummyProvider(), select=False)
        outcome = refresher.run(datetime(2024, 5, 10, 9, 0))
        self.assertEqual(outcome.result, RefreshResult.NO_DATA)
        self.assertEqual(backend.pending(), [])

    def test_fetch_failure_is_reported(self) -> None:
        refresher, backend = self._refresher(DummyProvider(error=ProviderError("offline")))
        with self.assertLogs("vakit.services.refresh", level="ERROR"):
            outcome = refresher.run(datetime(2024, 5, 10, 9, 0))
        self.assertEqual(outcome.result, RefreshResult.FAILED)
        self.assertIn("offline", outcome.error)
        self.assertIsNone(outcome.report)

    def test_new_data_is_scheduled_once(self) -> None:
        refresher, backend = self._refresher(DummyProvider())

        first = refresher.run(datetime(2024, 5, 10, 9, 0))
        second = refresher.run(datetime(2024, 5, 10, 15, 0))

        self.assertEqual(first.result, RefreshResult.NEW_DATA)
        self.assertEqual(first.report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(second.report.outcome, ScheduleOutcome.UNCHANGED)
        self.assertEqual(len(backend.pending()), 5)


class InAppBackendTests(unittest.TestCase):
    def test_pop_due_returns_alerts_in_order(self) -> None:
        backend = InAppNotificationBackend()
        backend.register("Yatsı Vakti", "Yatsı vakti girdi.", datetime(2024, 5, 10, 19, 35))
        backend.register("Akşam Vakti", "Akşam vakti girdi.", datetime(2024, 5, 10, 18, 10))

        due = backend.pop_due(datetime(2024, 5, 10, 19, 0))

        self.assertEqual([alert.title for alert in due], ["Akşam Vakti"])
        self.assertEqual([alert.title for alert in backend.pending()], ["Yatsı Vakti"])

    def test_permission_flag(self) -> None:
        self.assertFalse(InAppNotificationBackend(granted=False).request_permission())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
