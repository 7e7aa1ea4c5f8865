from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..errors import NotificationError


class NotificationBackend(Protocol):
    def request_permission(self) -> bool:
        ...

    def cancel_all(self) -> None:
        ...

    def register(self, title: str, body: str, when: datetime) -> None:
        ...


@dataclass(slots=True)
class PendingAlert:
    title: str
    body: str
    when: datetime


class InAppNotificationBackend:
    """Keeps registered alerts in memory until the app delivers them.

    The terminal app polls :meth:`pop_due` from its one-second tick and
    shows each due alert as a toast. Registrations may come from the
    refresh worker thread, so the pending list is guarded by a lock.
    """

    # Alerts die with the process; nothing survives a restart.
    persistent = False

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self._pending: list[PendingAlert] = []
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        return self.granted

    def cancel_all(self) -> None:
        with self._lock:
            self._pending.clear()

    def register(self, title: str, body: str, when: datetime) -> None:
        if not title:
            raise NotificationError("Alert title must not be empty")
        with self._lock:
            self._pending.append(PendingAlert(title=title, body=body, when=when))
            self._pending.sort(key=lambda alert: alert.when)

    def pending(self) -> list[PendingAlert]:
        with self._lock:
            return list(self._pending)

    def pop_due(self, now: datetime) -> list[PendingAlert]:
        with self._lock:
            due = [alert for alert in self._pending if alert.when <= now]
            if due:
                self._pending = [alert for alert in self._pending if alert.when > now]
        return due
