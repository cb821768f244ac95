"""
Notification Service: toast messages.

Listens on the bus and turns domain events (assessment created, response
approved, data errors, ...) into toasts. At most ``max_visible`` toasts are
kept; showing another dismisses the oldest. Toasts with a duration are
dismissed automatically when an event loop is running.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.store import Store
from assessment_platform.errors import PlatformError

logger = logging.getLogger(__name__)


def toast_errors(method):
    """Show an error toast for a PlatformError raised by a service coroutine, then re-raise."""
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except PlatformError as exc:
            self.bus.emit(Events.NOTIFICATION_SHOW, {"type": "error", "message": exc.message})
            raise
    return wrapper


ICONS = {
    "success": "check-circle",
    "error": "x-circle",
    "warning": "alert-triangle",
    "info": "info",
}


@dataclass(frozen=True)
class Notification:
    message: str
    type: str = "info"
    icon: str = "info"
    duration_ms: int = 3000
    dismissible: bool = True
    action_label: str | None = None
    action: Callable[[], Any] | None = field(default=None, compare=False, repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("action")
        return data


class NotificationService:
    def __init__(self, bus: EventBus, settings: ClientSettings, store: Store | None = None):
        self.bus = bus
        self.settings = settings
        self.store = store
        self.notifications: list[Notification] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._unsubscribe: list[Callable[[], None]] = []

    def initialize(self) -> None:
        if self._unsubscribe:
            return
        on = self.bus.on
        self._unsubscribe = [
            on(Events.NOTIFICATION_SHOW, self._on_show),
            on(Events.ASSESSMENT_CREATED,
               lambda a: self.success(f'Assessment "{a.get("title")}" created successfully')),
            on(Events.ASSESSMENT_UPDATED, lambda _a: self.success("Assessment updated")),
            on(Events.QUESTION_ANSWERED, lambda _d: self.success("Response saved successfully")),
            on(Events.QUESTION_SAVED, lambda _d: self.info("Draft saved")),
            on(Events.REVIEW_APPROVED, lambda _d: self.success("Response approved")),
            on(Events.REVIEW_REJECTED, lambda _d: self.warning("Response rejected")),
            on(Events.ROLE_CHANGED, self._on_role_changed),
            on(Events.DATA_ERROR, self._on_data_error),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.dismiss_all()

    # ── Event handlers ───────────────────────────────────────────────────

    def _on_show(self, data: dict) -> None:
        options = data.get("options") or {}
        self.show(data.get("message", ""), data.get("type", "info"), **options)

    def _on_role_changed(self, data: dict) -> None:
        role = data.get("role") or {}
        self.success(f"Switched to {role.get('name', data.get('role_id'))}", icon=role.get("icon"))

    def _on_data_error(self, data: dict) -> None:
        error = data.get("error")
        message = getattr(error, "message", None) or (str(error) if error else "An error occurred")
        self.error(message)

    # ── Showing / dismissing ─────────────────────────────────────────────

    def show(self, message: str, type: str = "info", *, duration_ms: int | None = None,
             icon: str | None = None, dismissible: bool = True,
             action_label: str | None = None, action: Callable[[], Any] | None = None) -> Notification:
        notification = Notification(
            message=message,
            type=type,
            icon=icon or ICONS.get(type, "info"),
            duration_ms=self.settings.notification_duration_ms if duration_ms is None else duration_ms,
            dismissible=dismissible,
            action_label=action_label,
            action=action,
        )
        self.notifications.append(notification)
        self._schedule(notification)
        self._limit_visible()
        self._sync_store()
        logger.debug("Notification (%s): %s", type, message)
        return notification

    def success(self, message: str, **options: Any) -> Notification:
        return self.show(message, "success", **options)

    def error(self, message: str, **options: Any) -> Notification:
        options.setdefault("duration_ms", self.settings.error_notification_duration_ms)
        return self.show(message, "error", **options)

    def warning(self, message: str, **options: Any) -> Notification:
        return self.show(message, "warning", **options)

    def info(self, message: str, **options: Any) -> Notification:
        return self.show(message, "info", **options)

    def show_with_action(self, message: str, action_label: str, action: Callable[[], Any],
                         **options: Any) -> Notification:
        options.setdefault("duration_ms", 0)
        return self.show(message, options.pop("type", "info"),
                         action_label=action_label, action=action, **options)

    def dismiss(self, notification_id: str) -> None:
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()
        before = len(self.notifications)
        self.notifications = [n for n in self.notifications if n.id != notification_id]
        if len(self.notifications) != before:
            self._sync_store()

    def dismiss_all(self) -> None:
        for notification in list(self.notifications):
            self.dismiss(notification.id)

    def get_all(self) -> list[Notification]:
        return list(self.notifications)

    def _limit_visible(self) -> None:
        excess = len(self.notifications) - self.settings.max_visible_notifications
        for notification in self.notifications[:max(excess, 0)]:
            self.dismiss(notification.id)

    def _schedule(self, notification: Notification) -> None:
        if notification.duration_ms <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[notification.id] = loop.call_later(
            notification.duration_ms / 1000, self.dismiss, notification.id,
        )

    def _sync_store(self) -> None:
        if self.store is not None:
            self.store.merge("ui", {"notifications": [n.as_dict() for n in self.notifications]})
