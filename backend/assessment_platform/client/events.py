"""
In-process publish/subscribe bus for the client services.

Handlers run synchronously in subscription order. A handler that raises does
not stop delivery to the others; the failure is logged and returned in the
PublishResult so callers that care can inspect it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class Events(str, Enum):
    # Auth
    USER_LOGGED_IN = "user:logged-in"
    USER_LOGGED_OUT = "user:logged-out"

    # Roles
    ROLE_CHANGED = "role:changed"
    ROLE_LOADED = "role:loaded"

    # Navigation
    PAGE_CHANGED = "page:changed"
    NAV_LOADED = "nav:loaded"

    # Data
    DATA_LOADED = "data:loaded"
    DATA_UPDATED = "data:updated"
    DATA_DELETED = "data:deleted"
    DATA_ERROR = "data:error"

    # UI
    UI_MODAL_OPEN = "ui:modal-open"
    UI_MODAL_CLOSE = "ui:modal-close"
    UI_SIDEBAR_TOGGLE = "ui:sidebar-toggle"
    UI_LOADING = "ui:loading"
    NOTIFICATION_SHOW = "notification:show"

    # Config
    CONFIG_LOADED = "config:loaded"
    CONFIG_REFRESHED = "config:refreshed"

    # Assessments
    ASSESSMENT_INITIALIZED = "assessment:initialized"
    ASSESSMENT_CREATED = "assessment:created"
    ASSESSMENT_UPDATED = "assessment:updated"
    ASSESSMENT_SUBMITTED = "assessment:submitted"

    # Questions / reviews
    QUESTION_ANSWERED = "question:answered"
    QUESTION_SAVED = "question:saved"
    REVIEW_APPROVED = "review:approved"
    REVIEW_REJECTED = "review:rejected"

    # Store
    STATE_UPDATED = "state:updated"


@dataclass(frozen=True)
class HandlerError:
    handler: str
    error: BaseException


@dataclass(frozen=True)
class PublishResult:
    event: str
    delivered: int
    errors: tuple[HandlerError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


def _event_name(event: str | Events) -> str:
    return event.value if isinstance(event, Events) else event


class EventBus:
    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str | Events, handler: Handler) -> Callable[[], None]:
        """Subscribe; returns a function that removes the subscription."""
        name = _event_name(event)
        self._handlers[name].append(handler)
        return lambda: self.off(name, handler)

    def off(self, event: str | Events, handler: Handler) -> None:
        name = _event_name(event)
        handlers = self._handlers.get(name)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[name]

    def once(self, event: str | Events, handler: Handler) -> Callable[[], None]:
        name = _event_name(event)

        def wrapper(payload: Any) -> Any:
            self.off(name, wrapper)
            return handler(payload)

        return self.on(name, wrapper)

    def emit(self, event: str | Events, payload: Any = None) -> PublishResult:
        name = _event_name(event)
        # Copy so handlers may unsubscribe while being called
        handlers = list(self._handlers.get(name, ()))
        errors: list[HandlerError] = []
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                label = getattr(handler, "__qualname__", repr(handler))
                logger.error("Handler %s failed for %s: %s", label, name, exc, exc_info=True)
                errors.append(HandlerError(handler=label, error=exc))
        return PublishResult(event=name, delivered=len(handlers), errors=tuple(errors))

    def clear(self, event: str | Events | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(_event_name(event), None)

    def events(self) -> list[str]:
        return list(self._handlers)

    def listener_count(self, event: str | Events) -> int:
        return len(self._handlers.get(_event_name(event), ()))
