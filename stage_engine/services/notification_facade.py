"""Notification facade for engine services.

This module provides a stable interface for user-facing message dispatch
so engine services don't depend on how the host renders toasts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Protocol, runtime_checkable

from stage_engine.db.enums import NotificationKind

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Receives human-readable success/error/info messages."""

    def notify(self, kind: NotificationKind, title: str, detail: str | None = None) -> None: ...


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    title: str
    detail: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Sinks
# =============================================================================


class LoggingNotificationSink:
    """Writes notifications to the standard logger (default when no UI is attached)."""

    _LEVELS = {
        NotificationKind.SUCCESS: logging.INFO,
        NotificationKind.INFO: logging.INFO,
        NotificationKind.ERROR: logging.WARNING,
    }

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def notify(self, kind: NotificationKind, title: str, detail: str | None = None) -> None:
        self.log.log(
            self._LEVELS.get(kind, logging.INFO),
            "notification kind=%s title=%s detail=%s",
            kind.value,
            title,
            detail or "",
        )


class RecordingNotificationSink:
    """Keeps notifications in memory, newest last."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, kind: NotificationKind, title: str, detail: str | None = None) -> None:
        self.notifications.append(Notification(kind=kind, title=title, detail=detail))

    def of_kind(self, kind: NotificationKind) -> list[Notification]:
        return [n for n in self.notifications if n.kind == kind]

    @property
    def last(self) -> Notification | None:
        return self.notifications[-1] if self.notifications else None

    def clear(self) -> None:
        self.notifications.clear()


class FanoutNotificationSink:
    """Dispatches each notification to several sinks."""

    def __init__(self, sinks: Iterable[NotificationSink]):
        self.sinks = list(sinks)

    def notify(self, kind: NotificationKind, title: str, detail: str | None = None) -> None:
        for sink in self.sinks:
            sink.notify(kind, title, detail)


# =============================================================================
# Helpers
# =============================================================================


def notify_success(sink: NotificationSink, title: str, detail: str | None = None) -> None:
    sink.notify(NotificationKind.SUCCESS, title, detail)


def notify_error(sink: NotificationSink, title: str, detail: str | None = None) -> None:
    sink.notify(NotificationKind.ERROR, title, detail)


def notify_info(sink: NotificationSink, title: str, detail: str | None = None) -> None:
    sink.notify(NotificationKind.INFO, title, detail)
