"""Tests for selection.py -- platform and model selectors."""

import pytest

from schemas import InterfaceType
from selection import FallbackPolicy, ModelSelection, ModelSource, resolve_model, resolve_platform


# ── PlatformSelector ────────────────────────────────────────────────

class TestResolvePlatform:
    def test_no_preferences_returns_none(self, catalog):
        platforms = catalog.get_platforms()
        for interface in InterfaceType:
            assert resolve_platform(None, None, platforms, {}, interface) is None

    def test_no_credentials_returns_none_even_with_preferences(self, catalog):
        platforms = catalog.get_platforms()
        status = {"alpha": False, "beta": False, "gamma": False}
        assert resolve_platform("alpha", "beta", platforms, status, InterfaceType.SIDEPANEL) is None

    def test_tab_preference_wins_over_global(self, catalog):
        platforms = catalog.get_platforms()
        status = {"alpha": True, "beta": True}
        result = resolve_platform("beta", "alpha", platforms, status, InterfaceType.SIDEPANEL)
        assert result == "beta"

    def test_global_used_when_tab_uncredentialed(self, catalog):
        platforms = catalog.get_platforms()
        status = {"alpha": True, "beta": False}
        result = resolve_platform("beta", "alpha", platforms, status, InterfaceType.SIDEPANEL)
        assert result == "alpha"

    def test_unknown_platform_preference_skipped(self, catalog):
        platforms = catalog.get_platforms()
        status = {"retired": True, "alpha": True}
        result = resolve_platform("retired", "alpha", platforms, status, InterfaceType.SIDEPANEL)
        assert result == "alpha"

    def test_popup_ignores_credentials(self, catalog):
        platforms = catalog.get_platforms()
        assert resolve_platform("gamma", None, platforms, {}, InterfaceType.POPUP) == "gamma"

    def test_unknown_preferences_return_none_not_first_platform(self, catalog):
        platforms = catalog.get_platforms()
        assert resolve_platform("x", "y", platforms, {}, InterfaceType.POPUP) is None

    def test_credential_status_must_be_true_not_truthy(self, catalog):
        platforms = catalog.get_platforms()
        status = {"alpha": "yes"}
        assert resolve_platform("alpha", None, platforms, status, InterfaceType.SIDEPANEL) is None


# ── ModelSelector ───────────────────────────────────────────────────

LIVE = ["m-1", "m-2", "m-3"]


class TestResolveModel:
    def test_preference_in_live_list(self):
        result = resolve_model("p", "m-2", "m-1", LIVE)
        assert result == ModelSelection("m-2", ModelSource.PREFERENCE)
        assert result.is_fallback is False

    def test_retired_preference_falls_to_default(self):
        result = resolve_model("p", "m-gone", "m-3", LIVE)
        assert result == ModelSelection("m-3", ModelSource.PLATFORM_DEFAULT)

    def test_no_preference_uses_default(self):
        assert resolve_model("p", None, "m-3", LIVE).source is ModelSource.PLATFORM_DEFAULT

    def test_fallback_first_is_flagged(self):
        result = resolve_model("p", "m-gone", "m-retired", LIVE)
        assert result.model_id == "m-1"
        assert result.source is ModelSource.FALLBACK_FIRST
        assert result.is_fallback is True

    def test_fallback_disabled_by_policy(self):
        result = resolve_model("p", "m-gone", "m-retired", LIVE, FallbackPolicy.NONE)
        assert result == ModelSelection(None, ModelSource.NONE)

    def test_empty_live_list(self):
        result = resolve_model("p", "m-1", "m-1", [])
        assert result.model_id is None
        assert result.source is ModelSource.NONE

    @pytest.mark.parametrize("policy", list(FallbackPolicy))
    def test_policy_does_not_affect_preference_tiers(self, policy):
        assert resolve_model("p", "m-2", None, LIVE, policy).model_id == "m-2"
        assert resolve_model("p", None, "m-3", LIVE, policy).model_id == "m-3"
