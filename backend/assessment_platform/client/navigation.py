"""Navigation Service: role-filtered menus built from the navigation resource."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.role_service import RoleService
from assessment_platform.client.store import Store
from assessment_platform.menus import annotate_menu, is_item_allowed

logger = logging.getLogger(__name__)

HOME_CRUMB = {"label": "Home", "href": "02_dashboard.html"}


class NavigationService:
    def __init__(self, loader: ResourceLoader, bus: EventBus, store: Store, roles: RoleService):
        self.loader = loader
        self.bus = bus
        self.store = store
        self.roles = roles
        self.items: list[dict[str, Any]] = []
        self.current_page: str | None = None
        self.badges: dict[str, int] = {}
        self.initialized = False

    async def initialize(self) -> None:
        data = await self.loader.load("navigation")
        items = data.get("navigation", data) if isinstance(data, dict) else data
        self.items = [dict(item) for item in items or []]
        self.initialized = True
        self.store.merge("data", {"navigation": self.items})
        self.bus.emit(Events.NAV_LOADED, self.items)
        logger.info("Navigation loaded: %d items", len(self.items))

    def build_menu(self, role_id: str | None = None) -> list[dict[str, Any]]:
        """
        Every item, annotated ``allowed`` / ``disabled`` / ``active`` for the
        role. Nothing is dropped; disallowed items come back disabled.
        """
        role = self.roles.roles.get(role_id) if role_id else self.roles.get_current_role()
        if role is None:
            return []
        menu = annotate_menu(self.items, role.navigation, self.current_page)
        for item in menu:
            if item["id"] in self.badges:
                item["badge"] = self.badges[item["id"]]
        return menu

    def is_item_allowed(self, item: Mapping[str, Any], allowed=None) -> bool:
        if allowed is None:
            allowed = self.roles.get_allowed_navigation()
        return is_item_allowed(item, allowed)

    def get_item(self, item_id: str) -> dict[str, Any] | None:
        return next((i for i in self.items if i.get("id") == item_id), None)

    def get_by_category(self, category: str) -> list[dict[str, Any]]:
        return [i for i in self.items if i.get("category") == category]

    def search(self, query: str) -> list[dict[str, Any]]:
        if not query:
            return []
        needle = query.lower()
        return [
            i for i in self.items
            if needle in str(i.get("label", "")).lower()
            or any(needle in str(k).lower() for k in i.get("keywords") or ())
        ]

    def get_quick_access_menu(self) -> list[dict[str, Any]]:
        return [i for i in self.build_menu() if i["allowed"]]

    def can_access_page(self, page_id: str) -> bool:
        item = self.get_item(page_id)
        if item is None or self.roles.get_current_role() is None:
            return False
        return self.is_item_allowed(item)

    def get_page_metadata(self, page_id: str) -> dict[str, Any] | None:
        item = self.get_item(page_id)
        if item is None:
            return None
        return {
            "id": item["id"],
            "title": item.get("label"),
            "icon": item.get("icon"),
            "href": item.get("href"),
            "description": item.get("description") or "",
            "category": item.get("category") or "general",
        }

    def get_breadcrumbs(self) -> list[dict[str, Any]]:
        item = self.get_item(self.current_page) if self.current_page else None
        if item is None:
            return []
        return [dict(HOME_CRUMB), {"label": item.get("label"), "href": item.get("href"), "active": True}]

    def set_active(self, page_id: str) -> None:
        item = self.get_item(page_id)
        previous = self.current_page
        self.current_page = page_id
        self.store.set_state({"current_page": {
            "id": page_id,
            "title": item.get("label") if item else None,
            "params": {},
        }})
        self.bus.emit(Events.PAGE_CHANGED, {
            "from": previous,
            "to": page_id,
            "href": item.get("href") if item else None,
        })

    def update_badges(self, badges: Mapping[str, int]) -> None:
        """Set badge counts; a count of zero or less removes the badge."""
        for item_id, count in badges.items():
            if count > 0:
                self.badges[item_id] = count
            else:
                self.badges.pop(item_id, None)
