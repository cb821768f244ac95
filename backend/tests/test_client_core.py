"""Tests for the client event bus, state store, storage and resource loader."""

import asyncio
import json

import httpx
import pytest

from assessment_platform.client.events import EventBus, Events
from assessment_platform.client.loader import ResourceLoader
from assessment_platform.client.settings import ClientSettings
from assessment_platform.client.storage import ClientStorage
from assessment_platform.client.store import AppState, Store, thaw
from assessment_platform.errors import NetworkError, NotFound, PermissionDenied


# ── Event bus ────────────────────────────────────────────────────────────────

class TestEventBus:
    def test_handlers_run_in_subscription_order(self):
        bus = EventBus()
        seen = []
        bus.on(Events.ROLE_CHANGED, lambda p: seen.append(("a", p)))
        bus.on("role:changed", lambda p: seen.append(("b", p)))
        result = bus.emit(Events.ROLE_CHANGED, 1)
        assert seen == [("a", 1), ("b", 1)]
        assert result.delivered == 2 and result.ok

    def test_failing_handler_does_not_stop_delivery(self):
        bus = EventBus()
        seen = []

        def broken(_payload):
            raise RuntimeError("boom")

        bus.on("x", broken)
        bus.on("x", seen.append)
        result = bus.emit("x", "payload")
        assert seen == ["payload"]
        assert not result.ok
        assert str(result.errors[0].error) == "boom"

    def test_unsubscribe_and_once(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.on("x", seen.append)
        bus.once("x", lambda p: seen.append(f"once:{p}"))
        bus.emit("x", 1)
        unsubscribe()
        bus.emit("x", 2)
        assert seen == [1, "once:1"]
        assert bus.listener_count("x") == 0

    def test_off_unknown_handler_is_noop(self):
        bus = EventBus()
        bus.off("never", print)
        assert bus.events() == []

    def test_emit_without_listeners(self):
        assert EventBus().emit("nothing").delivered == 0


# ── Store ────────────────────────────────────────────────────────────────────

class TestStore:
    def test_state_is_immutable(self):
        store = Store()
        with pytest.raises(AttributeError):
            store.state.user = {}
        with pytest.raises(TypeError):
            store.state.user["id"] = "x"

    def test_set_state_replaces_section_and_notifies(self):
        bus = EventBus()
        store = Store(bus)
        calls = []
        store.subscribe(lambda state, previous: calls.append((state.user["id"], previous.user["id"])))
        events = []
        bus.on(Events.STATE_UPDATED, events.append)

        store.set_state({"user": {"id": "u-1"}})

        assert calls == [("u-1", None)]
        assert len(events) == 1
        assert store.get("user.id") == "u-1"
        assert store.get("user.email") is None
        assert not store.has("user.email")

    def test_merge_keeps_other_keys(self):
        store = Store()
        store.merge("ui", {"theme": "dark"})
        assert store.get("ui.theme") == "dark"
        assert store.get("ui.sidebar_open") is True

    def test_callable_update(self):
        store = Store()
        store.set_state(lambda s: {"ui": {**thaw(s.ui), "loading": True}})
        assert store.get("ui.loading") is True

    def test_unknown_section_rejected(self):
        with pytest.raises(KeyError):
            Store().set_state({"nope": {}})

    def test_failing_listener_is_isolated(self):
        store = Store()
        seen = []

        def broken(state, previous):
            raise ValueError("listener bug")

        store.subscribe(broken)
        store.subscribe(lambda state, previous: seen.append(state))
        store.merge("ui", {"theme": "dark"})
        assert len(seen) == 1

    def test_reset(self):
        store = Store()
        store.merge("session", {"token": "t"})
        store.reset()
        assert store.state == AppState()

    def test_get_default_for_missing_path(self):
        assert Store().get("data.roles.customer_admin", "fallback") == "fallback"


# ── Storage ──────────────────────────────────────────────────────────────────

class TestClientStorage:
    def test_persists_to_file_with_prefix(self, tmp_path):
        path = tmp_path / "storage.json"
        storage = ClientStorage("reabel_", path)
        storage.set("demoRole", "reviewer")
        assert json.loads(path.read_text()) == {"reabel_demoRole": "reviewer"}
        assert ClientStorage("reabel_", path).get("demoRole") == "reviewer"

    def test_clear_only_named_keys(self):
        storage = ClientStorage()
        storage.set("a", 1)
        storage.set("b", 2)
        storage.clear(["a"])
        assert storage.keys() == ["b"]

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json")
        assert ClientStorage("p_", path).keys() == []


# ── Resource loader ──────────────────────────────────────────────────────────

def api_loader(handler, bus=None, store=None) -> ResourceLoader:
    settings = ClientSettings(data_mode="api", api_base_url="http://test/api/v1")
    return ResourceLoader(settings, bus or EventBus(), store, transport=httpx.MockTransport(handler))


class TestLoaderApiMode:
    async def test_concurrent_loads_share_one_fetch(self):
        calls = []

        async def handler(request):
            calls.append(request.url.path)
            await asyncio.sleep(0.01)
            return httpx.Response(200, json={"roles": [{"role_key": "reviewer"}]})

        loader = api_loader(handler)
        first, second = await asyncio.gather(loader.load("roles"), loader.load("roles"))

        assert calls == ["/api/v1/roles"]
        assert first == second == {"roles": [{"role_key": "reviewer"}]}
        assert loader.cache_status()["cached"] == ["roles"]
        assert loader.cache_status()["pending"] == []

        await loader.load("roles")
        assert len(calls) == 1
        await loader.aclose()

    async def test_failure_reaches_every_waiter_and_is_not_cached(self):
        calls = []

        async def handler(request):
            calls.append(1)
            await asyncio.sleep(0.01)
            return httpx.Response(503, json={"success": False, "message": "maintenance"})

        bus = EventBus()
        errors = []
        bus.on(Events.DATA_ERROR, errors.append)
        loader = api_loader(handler, bus)

        results = await asyncio.gather(loader.load("roles"), loader.load("roles"), return_exceptions=True)

        assert all(isinstance(r, NetworkError) for r in results)
        assert results[0].status == 503
        assert results[0].message == "maintenance"
        assert len(errors) == 1
        assert loader.cache_status()["size"] == 0

        with pytest.raises(NetworkError):
            await loader.load("roles")
        assert len(calls) == 2
        await loader.aclose()

    async def test_status_codes_map_to_domain_errors(self):
        def handler(request):
            status = {"/api/v1/templates": 403, "/api/v1/team": 404}[request.url.path]
            return httpx.Response(status, json={"message": "nope"})

        loader = api_loader(handler)
        with pytest.raises(PermissionDenied):
            await loader.load("templates")
        with pytest.raises(NotFound):
            await loader.load("team", silent=True)
        await loader.aclose()

    async def test_bearer_token_from_store(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={})

        store = Store()
        store.merge("session", {"token": "abc"})
        loader = api_loader(handler, store=store)
        await loader.load("navigation")
        assert seen == ["Bearer abc"]
        await loader.aclose()

    async def test_transport_error_becomes_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        loader = api_loader(handler)
        with pytest.raises(NetworkError):
            await loader.load("roles")
        await loader.aclose()

    async def test_save_invalidates_cache_and_emits(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"assessments": []})
            return httpx.Response(201, json={"success": True, "assessment": {"assessment_id": "a1"}})

        bus = EventBus()
        updates = []
        bus.on(Events.DATA_UPDATED, updates.append)
        loader = api_loader(handler, bus)
        await loader.load("assessments")
        await loader.load("assessments", {"status": "draft"})

        await loader.save("assessments", {"name": "X"})

        assert loader.cache_status()["cached"] == []
        assert updates[0]["resource"] == "assessments"
        assert updates[0]["method"] == "POST"
        await loader.aclose()


class TestLoaderLocalMode:
    async def test_reads_exported_files(self, local_settings):
        bus = EventBus()
        loaded = []
        bus.on(Events.DATA_LOADED, loaded.append)
        loader = ResourceLoader(local_settings, bus)

        roles = await loader.load("roles")

        assert "customer_admin" in roles["roles"]
        assert loaded[0]["resource"] == "roles"

    async def test_missing_file(self, local_settings):
        loader = ResourceLoader(local_settings, EventBus())
        with pytest.raises(NetworkError) as exc:
            await loader.load("config_ui")
        assert exc.value.status == 404

    async def test_unknown_resource(self, local_settings):
        with pytest.raises(NotFound):
            await ResourceLoader(local_settings, EventBus()).load("spaceships")

    async def test_delete_emits(self, local_settings):
        bus = EventBus()
        deleted = []
        bus.on(Events.DATA_DELETED, deleted.append)
        result = await ResourceLoader(local_settings, bus).delete("assessments", "a1")
        assert result == {"success": True}
        assert deleted == [{"resource": "assessments", "id": "a1"}]
