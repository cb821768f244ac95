"""
Resource loader: the client's single data-access layer.

``load(resource)`` answers from the cache when it can. Otherwise it starts
one fetch per resource and every concurrent caller awaits that same task,
so two simultaneous ``load("roles")`` calls cause exactly one read. A
failed fetch is not cached; the error reaches every waiter and is published
as ``data:error``.

Two sources:
  local  JSON files under ``settings.data_dir`` (demo mode)
  api    the REST backend over httpx, bearer token from the store
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping

import httpx

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.store import Store
from assessment_platform.errors import NetworkError, NotFound, PermissionDenied, PlatformError, ValidationError

logger = logging.getLogger(__name__)

LOCAL_FILES: dict[str, str] = {
    "roles": "roles.json",
    "permissions": "permissions.json",
    "navigation": "navigation.json",
    "templates": "templates.json",
    "questions": "questions.json",
    "assessments": "assessments.json",
    "actions": "actions.json",
    "team": "team.json",
    "responses": "responses.json",
    "config_ui": "config/ui.json",
    "config_workflows": "config/workflows.json",
    "config_forms": "config/forms.json",
    "config_validations": "config/validations.json",
    "config_menus": "config/menus.json",
    "config_features": "config/features.json",
}

API_ENDPOINTS: dict[str, str] = {
    "roles": "/roles",
    "permissions": "/permissions",
    "navigation": "/navigation",
    "templates": "/templates",
    "questions": "/questions",
    "assessments": "/assessments",
    "responses": "/responses",
    "actions": "/actions",
    "team": "/team",
    "user/role": "/user/role",
}

# HTTP status → domain error raised to the caller
_STATUS_ERRORS = {400: ValidationError, 403: PermissionDenied, 404: NotFound}


def _cache_key(resource: str, params: Mapping[str, Any] | None) -> str:
    if not params:
        return resource
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return f"{resource}?{query}"


class ResourceLoader:
    def __init__(
        self,
        settings: ClientSettings,
        bus: EventBus,
        store: Store | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.bus = bus
        self.store = store
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def mode(self) -> str:
        return self.settings.data_mode

    # ── Loading ──────────────────────────────────────────────────────────

    async def load(self, resource: str, params: Mapping[str, Any] | None = None,
                   *, silent: bool = False) -> Any:
        """
        Cached, coalesced read of one resource.

        ``silent`` suppresses the ``data:error`` event for optional resources
        whose absence the caller handles itself.
        """
        key = _cache_key(resource, params)
        if key in self._cache:
            return self._cache[key]

        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch_and_cache(resource, key, params, silent))
            self._pending[key] = task
            task.add_done_callback(lambda _t, k=key: self._pending.pop(k, None))
        # Shield so one cancelled waiter does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _fetch_and_cache(self, resource: str, key: str,
                               params: Mapping[str, Any] | None, silent: bool) -> Any:
        try:
            if self.settings.is_api:
                data = await self._load_remote(resource, params)
            else:
                data = await self._load_local(resource)
        except PlatformError as exc:
            logger.error("Failed to load %s: %s", key, exc.message)
            if not silent:
                self.bus.emit(Events.DATA_ERROR, {"resource": resource, "error": exc})
            raise

        self._cache[key] = data
        self.bus.emit(Events.DATA_LOADED, {"resource": resource, "data": data})
        logger.debug("Loaded %s (%s)", key, self.mode)
        return data

    async def _load_local(self, resource: str) -> Any:
        name = LOCAL_FILES.get(resource)
        if name is None:
            raise NotFound(f"Unknown resource: {resource}")
        path = self.settings.data_dir / name
        try:
            raw = await asyncio.to_thread(path.read_text)
        except FileNotFoundError:
            raise NetworkError(f"Failed to load {resource}: {path} not found", status=404) from None
        except OSError as exc:
            raise NetworkError(f"Failed to load {resource}: {exc}") from exc
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise NetworkError(f"Failed to load {resource}: invalid JSON ({exc})") from exc

    async def _load_remote(self, resource: str, params: Mapping[str, Any] | None) -> Any:
        return await self.request("GET", API_ENDPOINTS.get(resource, f"/{resource}"), params=params)

    # ── Raw HTTP ─────────────────────────────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            transport = self._transport or httpx.AsyncHTTPTransport(retries=self.settings.retry_attempts)
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_base_url,
                timeout=self.settings.timeout,
                transport=transport,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.store.get("session.token") if self.store is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(self, method: str, path: str, *, json_body: Any = None,
                      params: Mapping[str, Any] | None = None) -> Any:
        """One call to the backend; non-2xx statuses become domain errors."""
        try:
            resp = await self._http().request(
                method, path, json=json_body, params=dict(params) if params else None,
                headers=self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {path} timed out after {self.settings.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            message = message or f"HTTP {resp.status_code}: {resp.reason_phrase}"
            error_cls = _STATUS_ERRORS.get(resp.status_code)
            if error_cls is not None:
                raise error_cls(message)
            raise NetworkError(message, status=resp.status_code)
        return body

    # ── Writes ───────────────────────────────────────────────────────────

    async def save(self, resource: str, data: Mapping[str, Any], method: str = "POST") -> dict:
        """Create or update; local mode pretends the write succeeded."""
        if self.settings.is_api:
            result = await self.request(method, API_ENDPOINTS.get(resource, f"/{resource}"),
                                        json_body=dict(data))
        else:
            result = {"success": True, "data": dict(data)}

        self.clear_cache(resource.split("/", 1)[0])
        self.bus.emit(Events.DATA_UPDATED, {"resource": resource, "method": method, "data": result})
        return result

    async def delete(self, resource: str, resource_id: str) -> dict:
        if self.settings.is_api:
            result = await self.request("DELETE", f"{API_ENDPOINTS.get(resource, '/' + resource)}/{resource_id}")
        else:
            result = {"success": True}

        self.clear_cache(resource)
        self.bus.emit(Events.DATA_DELETED, {"resource": resource, "id": resource_id})
        return result

    # ── Cache ────────────────────────────────────────────────────────────

    def clear_cache(self, resource: str | None = None) -> None:
        """Drop one resource (all of its parameterised variants) or everything."""
        if resource is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k == resource or k.startswith(f"{resource}?")]:
            del self._cache[key]

    def cache_status(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "cached": sorted(self._cache),
            "pending": sorted(self._pending),
            "size": len(self._cache),
        }

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
