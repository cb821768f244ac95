"""
Central client state.

State is an immutable snapshot (frozen dataclass whose nested dicts and
lists are deep-frozen into read-only mappings and tuples). Updates build a
new snapshot with ``dataclasses.replace`` and notify listeners with
``(state, previous)`` synchronously, in subscription order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping

from assessment_platform.client.events import EventBus, Events

logger = logging.getLogger(__name__)

Listener = Callable[["AppState", "AppState"], None]
Update = Mapping[str, Any] | Callable[["AppState"], Mapping[str, Any]]

_MISSING = object()


def freeze(value: Any) -> Any:
    """Recursively turn dicts into read-only mappings and lists into tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze: plain dicts and lists, safe to serialise or edit."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    if isinstance(value, frozenset):
        return set(thaw(v) for v in value)
    return value


def _section(**values: Any) -> MappingProxyType:
    return freeze(values)


@dataclass(frozen=True)
class AppState:
    user: Mapping[str, Any] = field(default_factory=lambda: _section(
        id=None, email=None, name=None, role=None, tenant_id=None,
        assigned_domains=[], permissions=[],
    ))
    session: Mapping[str, Any] = field(default_factory=lambda: _section(
        is_authenticated=False, token=None, refresh_token=None, expires_at=None,
    ))
    current_role: Mapping[str, Any] = field(default_factory=lambda: _section(
        id=None, name=None, type=None, read_only=False, navigation=[], permissions=[],
    ))
    ui: Mapping[str, Any] = field(default_factory=lambda: _section(
        sidebar_open=True, theme="light", notifications=[], modals=[], loading=False,
    ))
    data: Mapping[str, Any] = field(default_factory=lambda: _section(
        roles=None, permissions=None, navigation=None, templates=None,
        questions=None, assessments=None, actions=None, team=None,
    ))
    current_page: Mapping[str, Any] = field(default_factory=lambda: _section(
        id=None, title=None, params={},
    ))


_SECTIONS = frozenset(f.name for f in fields(AppState))


class Store:
    def __init__(self, bus: EventBus | None = None, initial: AppState | None = None):
        self.bus = bus
        self._initial = initial or AppState()
        self._state = self._initial
        self._listeners: list[Listener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def set_state(self, update: Update) -> AppState:
        """
        Replace whole top-level sections.

        ``update`` maps section names (``user``, ``session``, ...) to their new
        value, or is a function of the current state returning such a mapping.
        """
        previous = self._state
        changes = update(previous) if callable(update) else update
        unknown = set(changes) - _SECTIONS
        if unknown:
            raise KeyError(f"Unknown state section(s): {', '.join(sorted(unknown))}")
        self._state = replace(previous, **{k: freeze(v) for k, v in changes.items()})
        self._notify(previous)
        return self._state

    def merge(self, section: str, changes: Mapping[str, Any]) -> AppState:
        """Update some keys of one section, keeping the rest."""
        current = getattr(self._state, section)
        return self.set_state({section: {**thaw(current), **changes}})

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-path lookup, e.g. ``store.get("user.id")``."""
        value = self._lookup(path)
        return default if value is _MISSING else value

    def has(self, path: str) -> bool:
        return self._lookup(path) is not _MISSING

    def reset(self, initial: AppState | None = None) -> AppState:
        previous = self._state
        self._state = initial or self._initial
        self._notify(previous)
        return self._state

    def _lookup(self, path: str) -> Any:
        head, _, rest = path.partition(".")
        if head not in _SECTIONS:
            return _MISSING
        value: Any = getattr(self._state, head)
        for key in rest.split(".") if rest else ():
            if isinstance(value, Mapping) and key in value:
                value = value[key]
            else:
                return _MISSING
        return value

    def _notify(self, previous: AppState) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, previous)
            except Exception as exc:
                logger.error("Store listener failed: %s", exc, exc_info=True)
        if self.bus is not None:
            self.bus.emit(Events.STATE_UPDATED, {"state": self._state, "previous": previous})
