"""
UI view models: the state and behaviour behind the sidebar, modal, data
table, form builder and role switcher, with no markup. A renderer reads
their attributes; user actions call their methods.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.navigation import NavigationService
from assessment_platform.client.notifications import NotificationService
from assessment_platform.client.role_service import RoleInfo, RoleService
from assessment_platform.errors import PlatformError
from assessment_platform.forms import FormSchema, field_error, validate_form

logger = logging.getLogger(__name__)


def cell_value(row: Mapping[str, Any], field: str | Callable[[Mapping[str, Any]], Any]) -> Any:
    """Dot-path lookup (``"owner.name"``) or a callable applied to the row."""
    if callable(field):
        return field(row)
    value: Any = row
    for key in field.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _sort_key(value: Any) -> tuple:
    # None last (ascending); numbers before text
    if value is None:
        return (1, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, 0, value)
    return (0, 1, str(value).lower())


class Sidebar:
    def __init__(self, bus: EventBus, navigation: NavigationService, roles: RoleService):
        self.bus = bus
        self.navigation = navigation
        self.roles = roles
        self.collapsed = False
        self.menu_items: list[dict[str, Any]] = []
        self._unsubscribe = [
            bus.on(Events.ROLE_CHANGED, lambda _data: self.refresh()),
            bus.on(Events.NAV_LOADED, lambda _items: self.refresh()),
        ]

    def refresh(self) -> list[dict[str, Any]]:
        self.menu_items = self.navigation.build_menu()
        return self.menu_items

    @property
    def current_role(self) -> RoleInfo | None:
        return self.roles.get_current_role()

    def toggle_collapse(self) -> bool:
        self.collapsed = not self.collapsed
        self.bus.emit(Events.UI_SIDEBAR_TOGGLE, {"collapsed": self.collapsed})
        return self.collapsed

    def set_active(self, page_id: str) -> None:
        self.navigation.set_active(page_id)
        self.refresh()

    def update_badges(self, badges: Mapping[str, int]) -> None:
        self.navigation.update_badges(badges)
        self.refresh()

    def destroy(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []


class Modal:
    """Dialog state. ``confirm`` runs on_confirm then closes; closing runs on_cancel."""

    def __init__(self, bus: EventBus, *, title: str = "", content: Any = "", size: str = "medium",
                 type: str = "default", on_confirm: Callable[[], Any] | None = None,
                 on_cancel: Callable[[], Any] | None = None, close_on_backdrop: bool = True):
        self.bus = bus
        self.is_open = False
        self.title = title
        self.content = content
        self.size = size
        self.type = type
        self.on_confirm = on_confirm
        self.on_cancel = on_cancel
        self.close_on_backdrop = close_on_backdrop

    def open(self, **config: Any) -> None:
        for key, value in config.items():
            if not hasattr(self, key) or key in ("bus", "is_open"):
                raise AttributeError(f"Unknown modal option: {key}")
            setattr(self, key, value)
        self.is_open = True
        self.bus.emit(Events.UI_MODAL_OPEN, {"title": self.title, "type": self.type})

    def close(self, *, cancelled: bool = True) -> None:
        if not self.is_open:
            return
        self.is_open = False
        self.bus.emit(Events.UI_MODAL_CLOSE, {"title": self.title})
        if cancelled and self.on_cancel is not None:
            self.on_cancel()

    def confirm(self) -> None:
        if self.on_confirm is not None:
            self.on_confirm()
        self.close(cancelled=False)

    def backdrop_click(self) -> None:
        if self.close_on_backdrop:
            self.close()


class DataTable:
    def __init__(self, columns: Sequence[Mapping[str, Any]], data: Sequence[Mapping[str, Any]] = (),
                 *, page_size: int = 20, sort_column: str | None = None, sort_direction: str = "asc"):
        self.columns = [dict(c) for c in columns]
        self.page_size = page_size
        self.sort_column = sort_column
        self.sort_direction = sort_direction
        self.search_query = ""
        self.current_page = 1
        self.selected: set[str] = set()
        self.data: list[Mapping[str, Any]] = []
        self.filtered: list[Mapping[str, Any]] = []
        self.set_data(data)

    def set_data(self, data: Sequence[Mapping[str, Any]]) -> None:
        self.data = list(data)
        self.current_page = 1
        self.selected = set()
        self._apply()

    def _apply(self) -> None:
        rows = list(self.data)
        if self.search_query:
            needle = self.search_query.lower()
            rows = [
                r for r in rows
                if any(needle in str(cell_value(r, c["field"]) or "").lower() for c in self.columns)
            ]
        if self.sort_column:
            rows.sort(key=lambda r: _sort_key(cell_value(r, self.sort_column)),
                      reverse=self.sort_direction == "desc")
        self.filtered = rows

    def search(self, query: str) -> None:
        self.search_query = query
        self.current_page = 1
        self._apply()

    def sort(self, field: str) -> None:
        """Sort by a sortable column; the same column again flips direction."""
        column = next((c for c in self.columns if c["field"] == field), None)
        if column is None or not column.get("sortable"):
            return
        if self.sort_column == field and self.sort_direction == "asc":
            self.sort_direction = "desc"
        else:
            self.sort_direction = "asc"
        self.sort_column = field
        self._apply()

    @staticmethod
    def row_id(row: Mapping[str, Any]) -> str:
        return str(row.get("id") or row.get("_id") or repr(sorted(row.items())))

    @property
    def total_pages(self) -> int:
        return -(-len(self.filtered) // self.page_size) if self.page_size else 1

    def page_rows(self) -> list[Mapping[str, Any]]:
        start = (self.current_page - 1) * self.page_size
        return self.filtered[start:start + self.page_size]

    def go_to_page(self, page: int) -> bool:
        if page < 1 or page > self.total_pages:
            return False
        self.current_page = page
        return True

    def toggle_row(self, row_id: str) -> None:
        if row_id in self.selected:
            self.selected.discard(row_id)
        else:
            self.selected.add(row_id)

    def toggle_all(self) -> None:
        """Select every row on the page, or clear them if all are selected."""
        ids = {self.row_id(r) for r in self.page_rows()}
        if ids and ids <= self.selected:
            self.selected -= ids
        else:
            self.selected |= ids

    def selected_rows(self) -> list[Mapping[str, Any]]:
        return [r for r in self.data if self.row_id(r) in self.selected]

    def clear_selection(self) -> None:
        self.selected = set()


SubmitHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


class FormBuilder:
    def __init__(self, schema: FormSchema, notifications: NotificationService, *,
                 values: Mapping[str, Any] | None = None, on_submit: SubmitHandler | None = None,
                 validators: Mapping[str, Callable[[Any, Mapping[str, Any]], str | None]] | None = None):
        self.schema = schema
        self.notifications = notifications
        self.on_submit = on_submit
        self.validators = dict(validators or {})
        self.values: dict[str, Any] = {**schema.initial_values(), **(values or {})}
        self.errors: dict[str, str] = {}
        self.touched: set[str] = set()
        self.submitting = False

    def visible_fields(self):
        return self.schema.visible_fields(self.values)

    def handle_change(self, name: str, value: Any) -> str | None:
        """Record a value, mark it touched and re-validate that field."""
        self.values[name] = value
        self.touched.add(name)
        field = self.schema.get_field(name)
        if field is None:
            return None
        error = field_error(field, value, self.values, self.validators)
        if error:
            self.errors[name] = error
        else:
            self.errors.pop(name, None)
        return error

    def validate(self) -> bool:
        self.errors = validate_form(self.schema, self.values, self.validators)
        return not self.errors

    async def submit(self) -> bool:
        if not self.validate():
            self.notifications.error("Please fix the errors in the form")
            return False
        self.submitting = True
        try:
            if self.on_submit is not None:
                result = self.on_submit(dict(self.values))
                if inspect.isawaitable(result):
                    await result
        except PlatformError as exc:
            logger.error("Form submit failed: %s", exc.message)
            self.notifications.error(exc.message or "Failed to submit form")
            return False
        finally:
            self.submitting = False
        return True

    def reset(self) -> None:
        self.values = self.schema.initial_values()
        self.errors = {}
        self.touched = set()
        self.submitting = False


class RoleSwitcher:
    def __init__(self, bus: EventBus, roles: RoleService):
        self.roles = roles
        self.is_open = False
        self.current_role = roles.current_role
        self._unsubscribe = bus.on(Events.ROLE_CHANGED, self._on_role_changed)

    def _on_role_changed(self, data: dict) -> None:
        self.current_role = data.get("role_id")
        self.is_open = False

    def toggle(self) -> bool:
        self.is_open = not self.is_open
        return self.is_open

    def categorized_roles(self) -> dict[str, list[RoleInfo]]:
        return self.roles.get_roles_by_category()

    async def switch_role(self, role_id: str) -> bool:
        if role_id == self.current_role:
            self.is_open = False
            return False
        try:
            await self.roles.switch_role(role_id)
        except PlatformError as exc:
            # RoleService already published data:error, which raises the toast
            logger.warning("Role switch to %s failed: %s", role_id, exc.message)
            return False
        return True

    def destroy(self) -> None:
        self._unsubscribe()
