from __future__ import annotations

from datetime import datetime
import json
import unittest

from vakit.config import COMMIT_ALL_OR_NOTHING, NotificationSettings, SchedulerSettings
from vakit.errors import NotificationError, StorageError
from vakit.models import PrayerName, PrayerTimeSet, ScheduleOutcome
from vakit.notifier import PrayerNotifier
from vakit.schedule import DEDUP_FINGERPRINT, SCHEDULED_META_KEY, build
from vakit.services.notifications import InAppNotificationBackend
from vakit.settings import DEFAULT_SETTINGS, load_settings, save_settings
from vakit.storage import MemoryStore


class RecordingBackend:
    def __init__(self, granted: bool = True, fail_titles: tuple[str, ...] = ()) -> None:
        self.granted = granted
        self.fail_titles = set(fail_titles)
        self.events: list[tuple] = []
        self.active: list[tuple[str, str, datetime]] = []

    def request_permission(self) -> bool:
        self.events.append(("permission",))
        return self.granted

    def cancel_all(self) -> None:
        self.events.append(("cancel",))
        self.active.clear()

    def register(self, title: str, body: str, when: datetime) -> None:
        if title in self.fail_titles:
            raise NotificationError(f"cannot register {title}")
        self.events.append(("register", title))
        self.active.append((title, body, when))

    def count(self, kind: str) -> int:
        return sum(1 for event in self.events if event[0] == kind)


class MetaWriteFailingStore(MemoryStore):
    def set(self, key, value):
        if key == SCHEDULED_META_KEY:
            raise StorageError("read-only")
        super().set(key, value)


class SteppingClock:
    def __init__(self, step: float) -> None:
        self.value = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.value
        self.value += self.step
        return current


NOW = datetime(2024, 5, 10, 18, 11, 11)


def _times(**overrides: str) -> PrayerTimeSet:
    values = {
        "imsak": "05:12",
        "gunes": "06:45",
        "ogle": "12:30",
        "ikindi": "15:40",
        "aksam": "18:10",
        "yatsi": "19:35",
    }
    values.update(overrides)
    return PrayerTimeSet.from_dict(values)


class PrayerNotifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = RecordingBackend()
        self.store = MemoryStore()
        self.notifier = PrayerNotifier(self.backend, self.store)

    def test_example_day_registers_five_alerts(self) -> None:
        report = self.notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertTrue(report.committed)
        self.assertEqual(len(self.backend.active), 5)
        self.assertNotIn(PrayerName.GUNES, report.registered)
        by_title = {title: when for title, _, when in self.backend.active}
        self.assertEqual(by_title["Yatsı Vakti"], datetime(2024, 5, 10, 19, 35))
        self.assertEqual(by_title["Akşam Vakti"], datetime(2024, 5, 11, 18, 10))
        self.assertEqual(by_title["İmsak Vakti"], datetime(2024, 5, 11, 5, 12))
        bodies = {body for _, body, _ in self.backend.active}
        self.assertIn("Öğle vakti girdi.", bodies)
        meta = json.loads(self.store.values[SCHEDULED_META_KEY])
        self.assertEqual(
            meta,
            {"hash": report.fingerprint, "date": "2024-05-10", "firstAlert": "2024-05-10T19:35:00"},
        )

    def test_cancel_happens_before_registration(self) -> None:
        self.notifier.schedule(_times(), NOW)
        kinds = [event[0] for event in self.backend.events]
        self.assertEqual(kinds[:2], ["permission", "cancel"])
        self.assertEqual(set(kinds[2:]), {"register"})

    def test_second_identical_call_is_a_no_op(self) -> None:
        first = self.notifier.schedule(_times(), NOW)
        second = self.notifier.schedule(_times(), NOW.replace(hour=20))

        self.assertEqual(first.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(second.outcome, ScheduleOutcome.UNCHANGED)
        self.assertEqual(self.backend.count("cancel"), 1)
        self.assertEqual(self.backend.count("register"), 5)

    def test_settings_toggle_forces_reschedule(self) -> None:
        self.notifier.schedule(_times(), NOW)
        settings = load_settings(self.store)
        settings[PrayerName.GUNES] = True
        save_settings(self.store, settings)

        report = self.notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(self.backend.count("cancel"), 2)
        self.assertEqual(len(self.backend.active), 6)

    def test_time_change_forces_reschedule(self) -> None:
        self.notifier.schedule(_times(), NOW)
        report = self.notifier.schedule(_times(yatsi="19:36"), NOW)
        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(self.backend.count("cancel"), 2)

    def test_new_day_forces_reschedule(self) -> None:
        self.notifier.schedule(_times(), NOW)
        report = self.notifier.schedule(_times(), datetime(2024, 5, 11, 0, 5))
        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(report.date, "2024-05-11")

    def test_fingerprint_only_dedup_ignores_day(self) -> None:
        notifier = PrayerNotifier(
            self.backend,
            self.store,
            scheduler_settings=SchedulerSettings(dedup_key=DEDUP_FINGERPRINT),
        )
        # After Yatsı every alert lands on the next day, first at 05:12.
        notifier.schedule(_times(), datetime(2024, 5, 10, 19, 40))
        report = notifier.schedule(_times(), datetime(2024, 5, 11, 0, 5))
        self.assertEqual(report.outcome, ScheduleOutcome.UNCHANGED)

    def test_fingerprint_only_dedup_rearms_after_alerts_fire(self) -> None:
        backend = InAppNotificationBackend()
        notifier = PrayerNotifier(
            backend,
            self.store,
            scheduler_settings=SchedulerSettings(dedup_key=DEDUP_FINGERPRINT),
        )
        notifier.schedule(_times(), NOW)
        backend.pop_due(datetime(2024, 5, 11, 20, 0))
        self.assertEqual(backend.pending(), [])

        report = notifier.schedule(_times(), datetime(2024, 5, 11, 20, 0))

        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(len(backend.pending()), 5)
        self.assertEqual(backend.pending()[0].when, datetime(2024, 5, 12, 5, 12))

    def test_permission_denied_leaves_everything_untouched(self) -> None:
        self.notifier.schedule(_times(), NOW)
        self.backend.granted = False
        before = list(self.backend.active)
        meta_before = self.store.values[SCHEDULED_META_KEY]

        with self.assertLogs("vakit.notifier", level="WARNING"):
            report = self.notifier.schedule(_times(yatsi="19:40"), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.PERMISSION_DENIED)
        self.assertFalse(report.committed)
        self.assertEqual(self.backend.count("cancel"), 1)
        self.assertEqual(self.backend.active, before)
        self.assertEqual(self.store.values[SCHEDULED_META_KEY], meta_before)

    def test_one_failed_registration_does_not_stop_the_rest(self) -> None:
        backend = RecordingBackend(fail_titles=("Öğle Vakti",))
        notifier = PrayerNotifier(backend, self.store)

        with self.assertLogs("vakit.notifier", level="WARNING"):
            report = notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.PARTIAL)
        self.assertEqual(report.failed, [PrayerName.OGLE])
        self.assertEqual(len(report.registered), 4)
        self.assertEqual(len(backend.active), 4)
        self.assertTrue(report.committed)
        self.assertIn(SCHEDULED_META_KEY, self.store.values)

    def test_all_or_nothing_mode_rolls_back(self) -> None:
        backend = RecordingBackend(fail_titles=("Öğle Vakti",))
        notifier = PrayerNotifier(
            backend,
            self.store,
            scheduler_settings=SchedulerSettings(commit_mode=COMMIT_ALL_OR_NOTHING),
        )

        with self.assertLogs("vakit.notifier", level="WARNING"):
            report = notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.FAILED)
        self.assertEqual(backend.active, [])
        self.assertNotIn(SCHEDULED_META_KEY, self.store.values)

    def test_metadata_write_failure_retries_next_time(self) -> None:
        store = MetaWriteFailingStore()
        notifier = PrayerNotifier(self.backend, store)

        with self.assertLogs("vakit.notifier", level="WARNING"):
            first = notifier.schedule(_times(), NOW)
        second = notifier.schedule(_times(), NOW)

        self.assertEqual(first.outcome, ScheduleOutcome.SCHEDULED)
        self.assertFalse(first.committed)
        self.assertEqual(second.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(self.backend.count("cancel"), 2)
        self.assertEqual(len(self.backend.active), 5)

    def test_reentrant_call_is_rejected(self) -> None:
        nested = []
        notifier = self.notifier

        class ReentrantBackend(RecordingBackend):
            def request_permission(self) -> bool:
                nested.append(notifier.schedule(_times(), NOW))
                return super().request_permission()

        notifier.backend = ReentrantBackend()
        report = notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual([item.outcome for item in nested], [ScheduleOutcome.BUSY])
        self.assertEqual(notifier.backend.count("cancel"), 1)
        self.assertFalse(notifier.state.busy)

    def test_guard_is_released_after_errors(self) -> None:
        class ExplodingStore(MemoryStore):
            def get(self, key):
                raise RuntimeError("boom")

        notifier = PrayerNotifier(self.backend, ExplodingStore())
        with self.assertRaises(RuntimeError):
            notifier.schedule(_times(), NOW)
        self.assertFalse(notifier.state.busy)

    def test_timeout_skips_metadata(self) -> None:
        notifier = PrayerNotifier(
            self.backend,
            self.store,
            scheduler_settings=SchedulerSettings(commit_timeout_seconds=30),
            clock=SteppingClock(step=20),
        )

        with self.assertLogs("vakit.notifier", level="WARNING"):
            report = notifier.schedule(_times(), NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.TIMED_OUT)
        self.assertFalse(report.committed)
        self.assertEqual(self.backend.count("register"), 0)
        self.assertNotIn(SCHEDULED_META_KEY, self.store.values)

    def test_commit_uses_given_items(self) -> None:
        settings = dict(DEFAULT_SETTINGS)
        settings[PrayerName.IMSAK] = False
        items, digest = build(_times(), settings)

        report = self.notifier.commit(items, digest, NOW)

        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)
        self.assertEqual(len(self.backend.active), 4)
        self.assertEqual(report.fingerprint, digest)

    def test_custom_notification_text(self) -> None:
        notifier = PrayerNotifier(
            self.backend,
            self.store,
            notification_settings=NotificationSettings(title="{name}", body="Time for {name}"),
        )
        notifier.schedule(_times(), NOW)
        self.assertIn(("Yatsı", "Time for Yatsı", datetime(2024, 5, 10, 19, 35)), self.backend.active)

    def test_safety_margin_rolls_imminent_prayer(self) -> None:
        notifier = PrayerNotifier(
            self.backend,
            self.store,
            scheduler_settings=SchedulerSettings(safety_margin_seconds=30),
        )
        notifier.schedule(_times(), datetime(2024, 5, 10, 19, 34, 45))
        by_title = {title: when for title, _, when in self.backend.active}
        self.assertEqual(by_title["Yatsı Vakti"], datetime(2024, 5, 11, 19, 35))

    def test_reset_cancels_and_forgets(self) -> None:
        self.notifier.schedule(_times(), NOW)
        self.assertTrue(self.notifier.reset())
        self.assertEqual(self.backend.active, [])
        self.assertNotIn(SCHEDULED_META_KEY, self.store.values)

        report = self.notifier.schedule(_times(), NOW)
        self.assertEqual(report.outcome, ScheduleOutcome.SCHEDULED)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
