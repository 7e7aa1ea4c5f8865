from __future__ import annotations

import asyncio
import threading
from datetime import date, datetime
from typing import Callable

from textual.app import App, ComposeResult  # type: ignore[import]
from textual.binding import Binding  # type: ignore[import]
from textual.containers import Vertical  # type: ignore[import]
from textual.widgets import DataTable, Footer, Header, Static  # type: ignore[import]

from ..config import ConfigManager
from ..countdown import evaluate
from ..errors import ProviderError, StorageError
from ..models import CountdownState, PrayerName, PrayerTimeSet, ScheduleOutcome, ScheduleReport
from ..notifier import PrayerNotifier
from ..services.notifications import InAppNotificationBackend, PendingAlert
from ..services.prayer import DiyanetProvider, Location, PrayerProvider, PrayerService
from ..services.refresh import BackgroundRefresher, RefreshOutcome, RefreshResult
from ..settings import load_settings, save_settings
from ..storage import JsonFileStore, KeyValueStore
from .screens import ErrorScreen, LocationPickerScreen, TextEntryScreen


class CountdownLine(Static):
    def show(self, state: CountdownState | None) -> None:
        if state is None:
            self.update("No prayer times loaded")
            return
        current = state.current.display_name
        if state.current_is_yesterday:
            current = f"{current} (yesterday)"
        self.update(
            " • ".join(
                [
                    f"Current: {current}",
                    f"Next: {state.next.display_name} {state.next_instant.strftime('%H:%M')}",
                    f"Remaining: {state.remaining_text}",
                ]
            )
        )


class VakitApp(App):
    CSS = """
    Screen {
        background: $surface;
    }

    .panel {
        border: round $accent;
        padding: 1 2;
        background: $boost;
        layout: vertical;
    }

    .panel-title {
        text-style: bold;
        color: $text;
        margin-bottom: 1;
    }

    .panel-help {
        color: $text-muted;
        margin-top: 1;
    }

    #countdown {
        text-style: bold;
        margin-bottom: 1;
    }

    #times-table {
        height: auto;
    }

    #location-picker, #text-entry, #error-dialog {
        width: 60;
        height: auto;
        max-height: 80%;
        border: round $accent;
        background: $panel;
        padding: 1 2;
    }

    #error-dialog {
        border: round $error;
    }

    #location-picker-list {
        height: auto;
        max-height: 20;
    }

    .dialog-title {
        text-style: bold;
        margin-bottom: 1;
    }

    .dialog-item {
        padding: 0 1;
    }

    .dialog-help {
        color: $text-muted;
        margin-top: 1;
    }

    LocationPickerScreen, TextEntryScreen, ErrorScreen {
        align: center middle;
    }
    """
    TITLE = "Vakit Rehberi"

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "refresh", "Reload"),
        Binding("l", "change_location", "Location"),
        Binding("1", "toggle_alert(0)", "İmsak", show=False),
        Binding("2", "toggle_alert(1)", "Güneş", show=False),
        Binding("3", "toggle_alert(2)", "Öğle", show=False),
        Binding("4", "toggle_alert(3)", "İkindi", show=False),
        Binding("5", "toggle_alert(4)", "Akşam", show=False),
        Binding("6", "toggle_alert(5)", "Yatsı", show=False),
    ]

    def __init__(
        self,
        config_manager: ConfigManager | None = None,
        store: KeyValueStore | None = None,
        provider: PrayerProvider | None = None,
        backend: InAppNotificationBackend | None = None,
    ) -> None:
        super().__init__()
        self.config_manager = config_manager or ConfigManager()
        self.config = self.config_manager.load()
        self.store = store or JsonFileStore(self.config.storage.path)
        self.backend = backend or InAppNotificationBackend()
        self.prayer_service = PrayerService(
            provider or DiyanetProvider.from_settings(self.config.provider),
            self.store,
            default_location=self.config.location,
        )
        self.notifier = PrayerNotifier(
            self.backend,
            self.store,
            scheduler_settings=self.config.scheduler,
            notification_settings=self.config.notifications,
        )
        self.refresher = BackgroundRefresher(self.prayer_service, self.notifier)
        if not self.backend.persistent:
            # Stored metadata describes alerts registered by an earlier process.
            self.notifier.reset()
        self.times: PrayerTimeSet | None = None
        self.times_day: date | None = None
        self.countdown: CountdownState | None = None
        self.delivered_alerts: list[PendingAlert] = []
        self.countdown_line = CountdownLine("", id="countdown")
        self.status_line = Static("", id="status")
        self.times_table: DataTable | None = None
        self._is_refreshing = False
        self._reschedule_wanted = False
        self._mounted = False
        self._rendered_current: PrayerName | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        self.times_table = DataTable(id="times-table", cursor_type="row")
        location = self.prayer_service.selected_location()
        self.location_header = Static(location.name if location else "No location selected", classes="panel-title")
        help_text = Static("1-6 = toggle alert • l = location • r = reload", classes="panel-help")
        yield Vertical(
            self.location_header,
            self.countdown_line,
            self.times_table,
            self.status_line,
            help_text,
            id="main-panel",
            classes="panel",
        )
        yield Footer()

    def on_mount(self) -> None:
        self._mounted = True
        assert self.times_table is not None
        self.times_table.add_columns(" ", "Vakit", "Saat", "Ezan")
        self.set_interval(1.0, self.tick)
        self.set_interval(self.config.provider.refresh_hours * 3600, self.action_refresh)
        errors = self.config_manager.errors()
        if errors:
            self.push_screen(ErrorScreen("Configuration", errors))
        self.action_refresh()

    # -- periodic work -------------------------------------------------

    def tick(self, now: datetime | None = None) -> None:
        moment = now or datetime.now()
        if self.times_day is not None and moment.date() != self.times_day:
            self.times_day = moment.date()
            self.action_refresh()
        for alert in self.backend.pop_due(moment):
            self._deliver(alert)
        if self.times is None:
            self.countdown = None
        else:
            self.countdown = evaluate(self.times, moment)
        if self._mounted:
            self.countdown_line.show(self.countdown)
            current = self.countdown.current if self.countdown else None
            if current != self._rendered_current:
                self._render_times()

    def _deliver(self, alert: PendingAlert) -> None:
        self.delivered_alerts.append(alert)
        if self._mounted:
            self.notify(alert.body, title=alert.title, timeout=30)

    def action_refresh(self) -> None:
        if self._is_refreshing:
            return
        self._is_refreshing = True
        self._set_status("Loading prayer times…")
        self._run_background(self._refresh_job, self._refresh_finished)

    def _refresh_job(self) -> RefreshOutcome:
        try:
            return self.refresher.run()
        except Exception as exc:  # pragma: no cover - UI safeguard
            return RefreshOutcome(result=RefreshResult.FAILED, error=str(exc))

    def _refresh_finished(self, outcome: RefreshOutcome) -> None:
        self._is_refreshing = False
        if outcome.result is RefreshResult.NO_DATA:
            self._set_status("Select a location with 'l'")
            return
        if outcome.times is None:
            self._set_status(f"Could not load prayer times: {outcome.error or 'unknown error'}")
            return
        self.times = outcome.times
        self.times_day = date.today()
        self.tick()
        if outcome.report is not None:
            self._report_schedule(outcome.report)
        if self._reschedule_wanted:
            self._schedule()

    def _schedule(self) -> ScheduleReport | None:
        self._reschedule_wanted = False
        if self.times is None:
            return None
        report = self.notifier.schedule(self.times)
        self._report_schedule(report)
        return report

    def _report_schedule(self, report: ScheduleReport) -> None:
        if report.outcome is ScheduleOutcome.PERMISSION_DENIED:
            self._set_status("Notification permission denied")
            self._display_error("Notifications", "Permission to show alerts was denied.")
        elif report.outcome is ScheduleOutcome.UNCHANGED:
            self._set_status("Alerts up to date")
        elif report.outcome in (ScheduleOutcome.SCHEDULED, ScheduleOutcome.PARTIAL):
            names = ", ".join(name.display_name for name in report.registered) or "none"
            message = f"Alerts scheduled: {names}"
            if report.failed:
                message += f" (failed: {', '.join(name.display_name for name in report.failed)})"
            self._set_status(message)
        elif report.outcome is ScheduleOutcome.BUSY:
            # A refresh holds the notifier; run again once it reports back.
            self._reschedule_wanted = True
        else:
            self._set_status(f"Scheduling {report.outcome.value.replace('_', ' ')}; will retry")

    # -- user actions --------------------------------------------------

    def action_toggle_alert(self, index: int) -> None:
        order = PrayerName.ordered()
        if not 0 <= index < len(order):
            return
        name = order[index]
        settings = load_settings(self.store)
        settings[name] = not settings[name]
        try:
            save_settings(self.store, settings)
        except StorageError as exc:
            self._display_error("Settings", str(exc))
            return
        self._render_times()
        self._schedule()

    def action_change_location(self) -> None:
        def _after_query(query: str | None) -> None:
            if query is None:
                return
            self._run_background(lambda: self._search(query), self._show_search_results)

        self.push_screen(TextEntryScreen("Search location", placeholder="City or district"), _after_query)

    def _search(self, query: str) -> list[Location] | str:
        try:
            return self.prayer_service.search(query)
        except (ValueError, ProviderError) as exc:
            return str(exc)

    def _show_search_results(self, results: list[Location] | str) -> None:
        if isinstance(results, str):
            self._display_error("Location search", results)
            return
        if not results:
            self._display_error("Location search", "No locations found")
            return
        self.push_screen(LocationPickerScreen(results), self.select_location)

    def select_location(self, location: Location | None) -> None:
        if location is None:
            return
        try:
            self.prayer_service.select_location(location)
        except StorageError as exc:
            self._display_error("Location", str(exc))
            return
        self.notifier.reset()
        if self._mounted:
            self.location_header.update(location.name)
        self.times = None
        self.times_day = None
        self.action_refresh()

    # -- helpers -------------------------------------------------------

    def _run_background(self, work: Callable[[], object], done: Callable[[object], None]) -> None:
        """Run ``work`` off the UI thread and hand its result to ``done`` on it."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No running loop (tests or non-async contexts): run inline
            done(work())
            return

        def _worker() -> None:
            result = work()
            self.call_from_thread(done, result)

        threading.Thread(target=_worker, daemon=True).start()

    def _render_times(self) -> None:
        if not self._mounted or self.times_table is None:
            return
        settings = load_settings(self.store)
        self.times_table.clear()
        if self.times is None:
            return
        current = self.countdown.current if self.countdown else None
        self._rendered_current = current
        for name in PrayerName.ordered():
            pointer = "▶" if name == current else " "
            enabled = "✓" if settings[name] else "–"
            self.times_table.add_row(pointer, name.display_name, self.times[name], enabled)

    def _set_status(self, message: str) -> None:
        if self._mounted:
            self.status_line.update(message)

    def _display_error(self, prefix: str, message: str) -> None:
        if self._mounted:
            self.push_screen(ErrorScreen(prefix, message))
