from __future__ import annotations

from typing import Iterable

from textual.app import ComposeResult  # type: ignore[import]
from textual.binding import Binding  # type: ignore[import]
from textual.containers import Vertical  # type: ignore[import]
from textual.screen import ModalScreen  # type: ignore[import]
from textual.widgets import Input, ListItem, ListView, Static  # type: ignore[import]

from ..services.prayer import Location


class LocationPickerScreen(ModalScreen[Location | None]):
    """Modal list of location search results."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
        Binding("j", "cursor_down", "Next", show=False),
        Binding("k", "cursor_up", "Previous", show=False),
    ]

    def __init__(self, locations: Iterable[Location]) -> None:
        super().__init__()
        self.locations = list(locations)
        self.list_view: ListView | None = None
        self._id_to_location: dict[str, Location] = {}

    def compose(self) -> ComposeResult:
        title = Static("Select location", classes="dialog-title")
        items = []
        self._id_to_location.clear()
        for idx, location in enumerate(self.locations):
            body = Static(f"{location.name}\n[dim]{location.country or location.id}[/dim]", classes="dialog-item")
            safe_id = f"location-{idx}"
            self._id_to_location[safe_id] = location
            items.append(ListItem(body, id=safe_id))
        self.list_view = ListView(*items, id="location-picker-list")
        help_text = Static("Enter = Select • Esc = Cancel • j/k move", classes="dialog-help")
        yield Vertical(title, self.list_view, help_text, id="location-picker")

    def on_mount(self) -> None:
        if self.list_view and self.list_view.children:
            self.list_view.index = 0

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        if not event.item.id:
            return
        self.dismiss(self._id_to_location.get(event.item.id))

    def action_cursor_down(self) -> None:
        if self.list_view:
            self.list_view.action_cursor_down()

    def action_cursor_up(self) -> None:
        if self.list_view:
            self.list_view.action_cursor_up()

    def action_cancel(self) -> None:
        self.dismiss(None)


class TextEntryScreen(ModalScreen[str | None]):
    """Asks for a location query; dismisses with the trimmed text, or None."""

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, prompt: str, placeholder: str = "") -> None:
        super().__init__()
        self.prompt = prompt
        self.placeholder = placeholder

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(self.prompt, classes="dialog-title"),
            Input(placeholder=self.placeholder, id="text-entry-input"),
            Static("Enter = Search • Esc = Cancel", classes="dialog-help"),
            id="text-entry",
        )

    def on_mount(self) -> None:
        self.query_one(Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        query = event.value.strip()
        self.dismiss(query or None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ErrorScreen(ModalScreen[None]):
    """Shows one or more error lines under a heading until dismissed."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("enter", "close", "OK"),
    ]

    def __init__(self, heading: str, messages: str | list[str]) -> None:
        super().__init__()
        self.heading = heading
        self.messages = [messages] if isinstance(messages, str) else list(messages)

    def compose(self) -> ComposeResult:
        lines = [Static(line, classes="dialog-item", markup=False) for line in self.messages]
        yield Vertical(
            Static(self.heading, classes="dialog-title"),
            *lines,
            Static("Enter / Esc = Close", classes="dialog-help"),
            id="error-dialog",
        )

    def action_close(self) -> None:
        self.dismiss(None)
