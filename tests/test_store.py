"""Tests for store.py -- key-value backends and PreferenceStore accessors."""

import pytest
import pytest_asyncio

from errors import PreferenceStoreError
from schemas import InterfaceType, Mode, UserParameterOverride
from store import (
    InMemoryKeyValueStore,
    PreferenceStore,
    Scope,
    SqliteKeyValueStore,
    global_model_key,
    override_key,
    tab_platform_key,
)


# ── Keys ────────────────────────────────────────────────────────────

class TestKeys:
    def test_composite_keys(self):
        assert tab_platform_key(12) == "tab_platform_preference|12"
        assert global_model_key(InterfaceType.SIDEPANEL, "claude") == "global_model_preference|sidepanel|claude"
        assert override_key("claude", "claude-sonnet-4-5", Mode.THINKING) == (
            "parameter_overrides|claude|claude-sonnet-4-5|thinking"
        )


# ── Backends ────────────────────────────────────────────────────────

@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def backend(request, tmp_path):
    if request.param == "memory":
        return InMemoryKeyValueStore()
    kv = SqliteKeyValueStore(tmp_path / "prefs.db")
    await kv.init()
    return kv


class TestBackends:
    @pytest.mark.asyncio
    async def test_get_missing(self, backend):
        assert await backend.get(Scope.GLOBAL, "nothing") is None

    @pytest.mark.asyncio
    async def test_set_get_overwrite(self, backend):
        await backend.set(Scope.GLOBAL, "k", {"a": 1})
        await backend.set(Scope.GLOBAL, "k", {"a": 2})
        assert await backend.get(Scope.GLOBAL, "k") == {"a": 2}

    @pytest.mark.asyncio
    async def test_scopes_are_separate(self, backend):
        await backend.set(Scope.TAB, "k", "tab")
        await backend.set(Scope.GLOBAL, "k", "global")
        assert await backend.get(Scope.TAB, "k") == "tab"
        assert await backend.get(Scope.GLOBAL, "k") == "global"

    @pytest.mark.asyncio
    async def test_delete(self, backend):
        await backend.set(Scope.TAB, "k", 1)
        assert await backend.delete(Scope.TAB, "k") is True
        assert await backend.delete(Scope.TAB, "k") is False
        assert await backend.get(Scope.TAB, "k") is None

    @pytest.mark.asyncio
    async def test_clear_by_prefix(self, backend):
        await backend.set(Scope.TAB, "tab_platform_preference|1", "a")
        await backend.set(Scope.TAB, "tab_platform_preference|2", "b")
        await backend.set(Scope.TAB, "other", "c")
        await backend.set(Scope.GLOBAL, "tab_platform_preference|1", "kept")
        assert await backend.clear(Scope.TAB, "tab_platform_preference|") == 2
        assert await backend.get(Scope.TAB, "other") == "c"
        assert await backend.get(Scope.GLOBAL, "tab_platform_preference|1") == "kept"

    @pytest.mark.asyncio
    async def test_clear_prefix_is_literal(self, backend):
        await backend.set(Scope.TAB, "a_b", 1)
        await backend.set(Scope.TAB, "axb", 2)
        assert await backend.clear(Scope.TAB, "a_") == 1
        assert await backend.get(Scope.TAB, "axb") == 2


class TestSqlitePersistence:
    @pytest.mark.asyncio
    async def test_values_survive_new_instance(self, tmp_path):
        path = tmp_path / "prefs.db"
        first = SqliteKeyValueStore(path)
        await first.init()
        await first.set(Scope.GLOBAL, "global_platform_preference|popup", "claude")

        second = SqliteKeyValueStore(path)
        await second.init()
        assert await second.get(Scope.GLOBAL, "global_platform_preference|popup") == "claude"


# ── PreferenceStore ─────────────────────────────────────────────────

class TestPreferenceStore:
    @pytest.mark.asyncio
    async def test_platform_preferences(self, store):
        assert await store.get_tab_platform(None) is None
        await store.set_tab_platform(3, "claude")
        await store.set_global_platform(InterfaceType.POPUP, "chatgpt")
        assert await store.get_tab_platform(3) == "claude"
        assert await store.get_global_platform(InterfaceType.POPUP) == "chatgpt"
        assert await store.get_global_platform(InterfaceType.SIDEPANEL) is None

    @pytest.mark.asyncio
    async def test_model_preference_scoped_per_interface_and_platform(self, store):
        await store.set_global_model(InterfaceType.SIDEPANEL, "claude", "claude-haiku-4-5")
        assert await store.get_global_model(InterfaceType.SIDEPANEL, "claude") == "claude-haiku-4-5"
        assert await store.get_global_model(InterfaceType.POPUP, "claude") is None
        assert await store.get_global_model(InterfaceType.SIDEPANEL, "gemini") is None

    @pytest.mark.asyncio
    async def test_thinking_mode_defaults_false(self, store):
        assert await store.get_thinking_mode("claude", "claude-sonnet-4-5") is False
        await store.set_thinking_mode("claude", "claude-sonnet-4-5", True)
        assert await store.get_thinking_mode("claude", "claude-sonnet-4-5") is True

    @pytest.mark.asyncio
    async def test_overrides_per_mode(self, store):
        await store.set_override("p", "m", Mode.BASE, UserParameterOverride(temperature=0.3))
        overrides = await store.get_overrides("p", "m")
        assert overrides[Mode.BASE].temperature == 0.3
        assert overrides[Mode.THINKING] == UserParameterOverride()

    @pytest.mark.asyncio
    async def test_camel_case_record_accepted(self, store, kv):
        await kv.set(Scope.GLOBAL, override_key("p", "m", Mode.BASE), {"maxTokens": 500, "includeTopP": True})
        override = await store.get_override("p", "m", Mode.BASE)
        assert override.max_tokens == 500
        assert override.include_top_p is True

    @pytest.mark.asyncio
    async def test_malformed_override_degrades_to_empty(self, store, kv):
        await kv.set(Scope.GLOBAL, override_key("p", "m", Mode.BASE), {"max_tokens": "lots"})
        assert await store.get_override("p", "m", Mode.BASE) == UserParameterOverride()

    @pytest.mark.asyncio
    async def test_delete_override(self, store):
        await store.set_override("p", "m", Mode.BASE, UserParameterOverride(max_tokens=10))
        assert await store.delete_override("p", "m", Mode.BASE) is True
        assert await store.get_override("p", "m", Mode.BASE) == UserParameterOverride()

    @pytest.mark.asyncio
    async def test_clear_tab_and_all_tabs(self, store):
        await store.set_tab_platform(1, "a")
        await store.set_tab_platform(2, "b")
        await store.set_global_platform(InterfaceType.POPUP, "c")
        assert await store.clear_tab(1) is True
        assert await store.get_tab_platform(1) is None
        assert await store.clear_all_tabs() == 1
        assert await store.get_tab_platform(2) is None
        assert await store.get_global_platform(InterfaceType.POPUP) == "c"


class TestStoreErrors:
    @pytest.mark.asyncio
    async def test_read_failure_wrapped(self, store, kv):
        kv.fail_prefix = "global_platform_preference"
        with pytest.raises(PreferenceStoreError) as exc_info:
            await store.get_global_platform(InterfaceType.POPUP)
        err = exc_info.value
        assert err.operation == "get"
        assert err.scope == "global"
        assert err.key == "global_platform_preference|popup"
        assert isinstance(err.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_write_failure_wrapped(self, store, kv):
        kv.fail_writes = True
        with pytest.raises(PreferenceStoreError):
            await store.set_tab_platform(1, "claude")

    @pytest.mark.asyncio
    async def test_kv_property(self, kv):
        assert PreferenceStore(kv).kv is kv
