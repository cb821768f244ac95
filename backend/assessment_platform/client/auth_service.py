"""
Auth Service: login, logout and session restore.

In demo mode any credentials are accepted and a local session is minted.
Otherwise credentials go to ``POST /auth/login`` and the returned bearer
token is kept in the store, where the loader picks it up for later calls.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from assessment_platform.auth.permissions import has_permission_key
from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.storage import ClientStorage
from assessment_platform.client.store import AppState, Store, thaw
from assessment_platform.errors import PlatformError, ValidationError

logger = logging.getLogger(__name__)

DEMO_COMPANY = "Acme Corporation"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def name_from_email(email: str) -> str:
    """``jane.doe@acme.io`` → ``Jane Doe``."""
    local = email.split("@", 1)[0]
    return " ".join(part[:1].upper() + part[1:] for part in local.split(".") if part)


class AuthService:
    def __init__(self, loader: ResourceLoader, bus: EventBus, store: Store,
                 storage: ClientStorage, settings: ClientSettings):
        self.loader = loader
        self.bus = bus
        self.store = store
        self.storage = storage
        self.settings = settings

    @property
    def _user_key(self) -> str:
        return self.settings.storage_keys["user"]

    @property
    def _session_key(self) -> str:
        return self.settings.storage_keys["session"]

    async def login(self, email: str, password: str) -> dict[str, Any]:
        if not email:
            raise ValidationError("Email is required", field="email")
        if self.settings.is_demo:
            user, session = self._demo_session(email)
        else:
            if not password:
                raise ValidationError("Email and password are required", field="password")
            result = await self.loader.request(
                "POST", "/auth/login", json_body={"email": email, "password": password},
            )
            user = self._user_from_api(result["user"])
            expires_at = _now() + timedelta(seconds=int(result.get("expiresIn") or 0))
            session = {
                "token": result["token"],
                "refresh_token": result.get("refreshToken"),
                "expires_at": expires_at.isoformat(),
            }

        self._apply(user, session)
        self.storage.set(self._user_key, user)
        self.storage.set(self._session_key, session)
        self.bus.emit(Events.USER_LOGGED_IN, user)
        logger.info("User logged in: %s", user["email"])
        return {"user": user, "session": session}

    def _demo_session(self, email: str) -> tuple[dict, dict]:
        role = self.store.get("current_role.id") or self.settings.default_role
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "name": name_from_email(email),
            "role": role,
            "tenant_id": None,
            "company": DEMO_COMPANY,
            "assigned_domains": [],
            "permissions": list(self.store.get("current_role.permissions") or ()),
        }
        expires_at = _now() + timedelta(hours=self.settings.session_hours)
        session = {"token": f"demo-token-{uuid.uuid4().hex}", "refresh_token": None,
                   "expires_at": expires_at.isoformat()}
        return user, session

    @staticmethod
    def _user_from_api(profile: dict) -> dict:
        return {
            "id": profile.get("id"),
            "email": profile.get("email"),
            "name": profile.get("name"),
            "role": profile.get("role"),
            "tenant_id": profile.get("tenantId"),
            "company": profile.get("tenantName"),
            "assigned_domains": list(profile.get("assignedDomains") or []),
            "permissions": list(profile.get("permissions") or []),
        }

    def _apply(self, user: dict, session: dict) -> None:
        self.store.set_state({
            "user": user,
            "session": {"is_authenticated": True, **session},
        })

    async def logout(self) -> None:
        if not self.settings.is_demo:
            refresh_token = self.store.get("session.refresh_token")
            try:
                await self.loader.request("POST", "/auth/logout", json_body={"refreshToken": refresh_token})
            except PlatformError as exc:
                logger.warning("Logout call failed, clearing local session anyway: %s", exc.message)

        blank = AppState()
        self.store.set_state({"user": thaw(blank.user), "session": thaw(blank.session)})
        self.storage.clear(self.settings.storage_keys.values())
        self.loader.clear_cache()
        self.bus.emit(Events.USER_LOGGED_OUT)
        logger.info("User logged out")

    def _expired(self, expires_at: str | None) -> bool:
        if not expires_at:
            return False
        return _now() >= datetime.fromisoformat(expires_at)

    async def is_authenticated(self) -> bool:
        """True while the session is live; an expired session is logged out."""
        if not self.store.get("session.is_authenticated"):
            return False
        if self._expired(self.store.get("session.expires_at")):
            logger.info("Session expired")
            await self.logout()
            return False
        return True

    def restore_session(self) -> bool:
        user = self.storage.get(self._user_key)
        session = self.storage.get(self._session_key)
        if not user or not session or self._expired(session.get("expires_at")):
            return False
        self._apply(user, session)
        logger.info("Session restored for %s", user.get("email"))
        return True

    def get_current_user(self) -> dict[str, Any]:
        return thaw(self.store.state.user)

    def has_permission(self, permission: str) -> bool:
        return has_permission_key(self.store.get("user.permissions") or (), permission)
