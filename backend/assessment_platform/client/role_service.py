"""
Role Service: the active role, its permissions and demo role switching.

Role definitions and grants come from the ``roles`` / ``permissions``
resources. Local files key roles by id (``{"roles": {id: {...}}}``) and hold
the grants of every role; the API returns a list of role rows and only the
caller's own grants. Both shapes are normalised here.

Permission checks are never cached: every ``has_permission`` call reads the
grant list of whichever role is active at that moment.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from assessment_platform.auth.permissions import permission_matches
from assessment_platform.auth.roles import DataScope, data_scope
from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.storage import ClientStorage
from assessment_platform.client.store import Store
from assessment_platform.errors import NotFound, PlatformError
from assessment_platform.menus import ALLOW_ALL

logger = logging.getLogger(__name__)

# Cached resources whose content depends on the active role
ROLE_SCOPED_RESOURCES = ("assessments", "navigation", "permissions")


class RoleInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    type: str = "customer"
    icon: str | None = None
    description: str = ""
    color: str = "#48A9A6"
    read_only: bool = Field(default=False, alias="readOnly")
    navigation: str | tuple[str, ...] = ()
    banner: dict[str, Any] | None = None


def parse_roles(payload: Any) -> dict[str, RoleInfo]:
    """Accept either the local keyed shape or the API's list of role rows."""
    roles = payload.get("roles", payload) if isinstance(payload, dict) else payload
    parsed: dict[str, RoleInfo] = {}
    if isinstance(roles, dict):
        for role_id, body in roles.items():
            parsed[role_id] = RoleInfo.model_validate({**body, "id": role_id})
    else:
        for row in roles or []:
            role = RoleInfo(
                id=row["role_key"],
                name=row.get("role_name") or row["role_key"],
                type=row.get("role_type") or "customer",
                icon=row.get("icon"),
                description=row.get("description") or "",
                color=row.get("color") or "#48A9A6",
                read_only=bool(row.get("read_only")),
                navigation=row.get("navigation") or (),
                banner=row.get("banner"),
            )
            parsed[role.id] = role
    return parsed


def parse_permissions(payload: Any) -> tuple[dict[str, tuple[str, ...]], dict[str, str]]:
    """Return (grants by role id, assessment data filters by role id)."""
    if not isinstance(payload, dict):
        return {}, {}
    if "permissions" in payload and "role" in payload:
        keys = tuple(
            p["permission_key"] if isinstance(p, dict) else p
            for p in payload["permissions"]
        )
        return {payload["role"]: keys}, {}
    filters = (payload.get("data_filters") or {}).get("assessments") or {}
    grants = {
        role_id: tuple(keys)
        for role_id, keys in payload.items()
        if role_id != "data_filters" and isinstance(keys, list)
    }
    return grants, dict(filters)


class RoleService:
    def __init__(self, loader: ResourceLoader, bus: EventBus, store: Store,
                 storage: ClientStorage, settings: ClientSettings):
        self.loader = loader
        self.bus = bus
        self.store = store
        self.storage = storage
        self.settings = settings
        self.roles: dict[str, RoleInfo] = {}
        self.permissions: dict[str, tuple[str, ...]] = {}
        self.data_filters: dict[str, str] = {}
        self.current_role: str | None = None
        self.initialized = False

    @property
    def _role_key(self) -> str:
        return self.settings.storage_keys["role"]

    async def initialize(self) -> None:
        self.roles = parse_roles(await self.loader.load("roles"))
        self.permissions, self.data_filters = parse_permissions(await self.loader.load("permissions"))

        candidates = [self.storage.get(self._role_key), self.settings.default_role]
        if self.settings.is_api:
            candidates.insert(0, self.store.get("user.role"))
        role_id = next((c for c in candidates if c and c in self.roles), None)
        if role_id is None and self.roles:
            role_id = next(iter(self.roles))

        self.current_role = role_id
        self.store.merge("data", {"roles": {k: r.model_dump() for k, r in self.roles.items()},
                                  "permissions": {k: list(v) for k, v in self.permissions.items()}})
        self._update_store_role()
        self.initialized = True
        self.bus.emit(Events.ROLE_LOADED, self.current_role)
        logger.info("Roles loaded (%d), current role: %s", len(self.roles), self.current_role)

    async def switch_role(self, role_id: str) -> RoleInfo:
        """
        Make ``role_id`` the active role.

        An unknown role raises NotFound and changes nothing: the active role,
        the stored choice and the store stay as they were, and no
        ``role:changed`` event is published.
        """
        role = self.roles.get(role_id)
        try:
            if role is None:
                raise NotFound(f"Role not found: {role_id}")
            grants = None
            session = None
            if self.settings.is_api:
                result = await self.loader.save("user/role", {"roleId": role_id}, "PUT")
                grants = tuple((result.get("user") or {}).get("permissions") or ())
                session = {"token": result.get("token"), "refresh_token": result.get("refreshToken")}
        except PlatformError as exc:
            logger.error("Role switch to %s failed: %s", role_id, exc.message)
            self.bus.emit(Events.DATA_ERROR, {"service": "RoleService", "action": "switch_role", "error": exc})
            raise

        if session is not None:
            self.store.merge("session", session)
        if grants is not None:
            self.permissions = {**self.permissions, role_id: grants}

        previous = self.current_role
        self.current_role = role_id
        self.storage.set(self._role_key, role_id)
        self._update_store_role()
        for resource in ROLE_SCOPED_RESOURCES:
            self.loader.clear_cache(resource)
        self.bus.emit(Events.ROLE_CHANGED, {"role_id": role_id, "role": role.model_dump()})
        logger.info("Role switched: %s → %s", previous, role_id)
        return role

    async def reset_to_default(self) -> RoleInfo:
        return await self.switch_role(self.settings.default_role)

    def _update_store_role(self) -> None:
        role = self.get_current_role()
        if role is None:
            return
        self.store.set_state({"current_role": {
            "id": role.id,
            "name": role.name,
            "type": role.type,
            "icon": role.icon,
            "read_only": role.read_only,
            "navigation": role.navigation,
            "permissions": list(self.get_current_permissions()),
        }})

    # ── Queries ──────────────────────────────────────────────────────────

    def get_current_role(self) -> RoleInfo | None:
        return self.roles.get(self.current_role) if self.current_role else None

    def get_all_roles(self) -> dict[str, RoleInfo]:
        return dict(self.roles)

    def get_current_permissions(self) -> tuple[str, ...]:
        return self.permissions.get(self.current_role, ()) if self.current_role else ()

    def has_permission(self, action: str, resource: str | None = None) -> bool:
        return permission_matches(self.get_current_permissions(), action, resource)

    def get_allowed_navigation(self) -> str | tuple[str, ...]:
        role = self.get_current_role()
        if role is None:
            return ()
        return role.navigation if role.navigation == ALLOW_ALL else tuple(role.navigation)

    def is_read_only(self) -> bool:
        role = self.get_current_role()
        return bool(role and role.read_only)

    def get_banner(self) -> dict[str, Any] | None:
        role = self.get_current_role()
        return role.banner if role else None

    def get_role_display_name(self, role_id: str) -> str:
        role = self.roles.get(role_id)
        return role.name if role else role_id

    def get_roles_by_category(self) -> dict[str, list[RoleInfo]]:
        grouped: dict[str, list[RoleInfo]] = {"platform": [], "customer": []}
        for role_id, role in self.roles.items():
            category = "platform" if role_id.startswith(self.settings.platform_role_prefix) else "customer"
            grouped[category].append(role)
        return grouped

    def get_role_metadata(self, role_id: str) -> dict[str, Any] | None:
        role = self.roles.get(role_id)
        if role is None:
            return None
        return {
            "id": role.id,
            "name": role.name,
            "type": role.type,
            "icon": role.icon,
            "description": role.description,
            "read_only": role.read_only,
            "color": role.color,
        }

    def assessment_scope(self) -> DataScope:
        """Row-level scope for the active role's assessment list."""
        configured = self.data_filters.get(self.current_role or "")
        if configured:
            return DataScope(configured)
        return data_scope(self.current_role or "")
