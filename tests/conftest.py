"""Shared fixtures for the Preference Resolver test suite.

Provides:
- A small in-memory catalog covering every capability combination
- In-memory preference store (plus a failure-injecting wrapper)
- Fake credential gate and a controllable model-list channel
- Coordinator factory and a FastAPI async test client via httpx.AsyncClient
"""

import asyncio

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from catalog import (
    ApiStructure,
    BudgetSpec,
    Capabilities,
    ConfigCache,
    ModelDescriptor,
    PlatformDescriptor,
    RangeSpec,
    ReasoningEffortSpec,
    ThinkingSpec,
    TokenSpec,
)
from coordinator import StableStateCoordinator
from credentials import KeyVault
from model_list import ModelListService
from schemas import InterfaceType
from selection import FallbackPolicy
from store import InMemoryKeyValueStore, PreferenceStore


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def _tokens(max_output=4096, context_window=128000, parameter_name="max_tokens"):
    return TokenSpec(context_window=context_window, max_output=max_output, parameter_name=parameter_name)


ALPHA_MODELS = [
    ModelDescriptor(
        id="alpha-base",
        display_name="Alpha Base",
        tokens=_tokens(),
        capabilities=Capabilities(supports_temperature=True, supports_top_p=True),
    ),
    ModelDescriptor(
        id="alpha-think",
        display_name="Alpha Think",
        tokens=_tokens(max_output=8192),
        capabilities=Capabilities(supports_temperature=True, supports_top_p=True),
        thinking=ThinkingSpec(
            available=True,
            toggleable=True,
            max_output=64000,
            supports_temperature=False,
            supports_top_p=False,
            budget=BudgetSpec(default=1024, min=1024, max=32000, step=256),
        ),
    ),
    ModelDescriptor(
        id="alpha-notemp",
        display_name="Alpha No Temperature",
        tokens=_tokens(parameter_name="max_completion_tokens"),
        capabilities=Capabilities(supports_temperature=False),
    ),
    ModelDescriptor(
        id="alpha-fixed",
        display_name="Alpha Fixed Reasoning",
        tokens=_tokens(max_output=100000, context_window=200000),
        capabilities=Capabilities(supports_temperature=False),
        thinking=ThinkingSpec(
            available=True,
            toggleable=False,
            reasoning_effort=ReasoningEffortSpec(default="medium", allowed_values=["low", "medium", "high"]),
        ),
    ),
    ModelDescriptor(
        id="alpha-effort",
        display_name="Alpha Effort",
        tokens=_tokens(),
        thinking=ThinkingSpec(
            available=True,
            toggleable=True,
            reasoning_effort=ReasoningEffortSpec(default="low", allowed_values=["low", "high"]),
        ),
    ),
]

BETA_MODELS = [
    ModelDescriptor(id="beta-1", display_name="Beta One", tokens=_tokens(max_output=2048)),
    ModelDescriptor(id="beta-2", display_name="Beta Two", tokens=_tokens(max_output=2048)),
]

GAMMA_MODELS = [
    ModelDescriptor(id="gamma-1", display_name="Gamma One", tokens=_tokens()),
    ModelDescriptor(id="gamma-2", display_name="Gamma Two", tokens=_tokens()),
]

PLATFORMS = [
    PlatformDescriptor(
        id="alpha",
        name="Alpha",
        url="https://alpha.example",
        icon_url="icons/alpha.png",
        default_model="alpha-base",
        temperature=RangeSpec(min=0.0, max=2.0, default=0.7),
        top_p=RangeSpec(min=0.0, max=1.0, default=0.9),
    ),
    PlatformDescriptor(
        id="beta",
        name="Beta",
        default_model="beta-1",
        temperature=RangeSpec(min=0.0, max=1.0, default=1.0),
        api_structure=ApiStructure(supports_system_prompt=False),
    ),
    # default_model is retired: not in the live list
    PlatformDescriptor(id="gamma", name="Gamma", default_model="gamma-retired"),
]

LIVE_MODELS = {
    "alpha": [m.id for m in ALPHA_MODELS],
    "beta": [m.id for m in BETA_MODELS],
    "gamma": [m.id for m in GAMMA_MODELS],
}


@pytest.fixture
def catalog():
    return ConfigCache.from_platforms(
        PLATFORMS, {"alpha": ALPHA_MODELS, "beta": BETA_MODELS, "gamma": GAMMA_MODELS},
    )


# ---------------------------------------------------------------------------
# Preference store
# ---------------------------------------------------------------------------

class FlakyKeyValueStore(InMemoryKeyValueStore):
    """In-memory store that raises for keys with a given prefix once armed."""

    def __init__(self):
        super().__init__()
        self.fail_prefix = None
        self.fail_writes = False

    def _check(self, key):
        if self.fail_prefix is not None and key.startswith(self.fail_prefix):
            raise OSError(f"storage unavailable for {key}")

    async def get(self, scope, key):
        self._check(key)
        return await super().get(scope, key)

    async def set(self, scope, key, value):
        if self.fail_writes:
            raise OSError("storage is read-only")
        self._check(key)
        await super().set(scope, key, value)


@pytest.fixture
def kv():
    return FlakyKeyValueStore()


@pytest.fixture
def store(kv):
    return PreferenceStore(kv)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class FakeGate:
    """CredentialGate stand-in with a mutable status map."""

    def __init__(self, status=None):
        self.status = dict(status or {})
        self.checked: list[str] = []

    async def check(self, platform_id):
        self.checked.append(platform_id)
        return self.status.get(platform_id, False)

    async def check_many(self, platform_ids):
        return {pid: await self.check(pid) for pid in platform_ids}


class ControllableChannel:
    """Model-list RequestChannel whose replies can be held and released.

    While ``hold`` is set every request parks on its own asyncio.Event
    (appended to ``waiting``) until the test releases it.
    """

    def __init__(self, models=None):
        self.models = {pid: list(ids) for pid, ids in (models or LIVE_MODELS).items()}
        self.hold = False
        self.waiting: list[asyncio.Event] = []
        self.calls: list[dict] = []
        self.fail = False

    async def send(self, message):
        self.calls.append(message)
        if self.hold:
            event = asyncio.Event()
            self.waiting.append(event)
            await event.wait()
        if self.fail:
            return {"success": False, "error": "host unreachable"}
        ids = self.models.get(message.get("platform_id"))
        if ids is None:
            return {"success": False, "error": "unknown platform"}
        return {"success": True, "models": [{"id": mid, "name": mid} for mid in ids]}


async def wait_until(predicate, attempts=200):
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def gate():
    return FakeGate({"alpha": True, "beta": True, "gamma": True})


@pytest.fixture
def channel():
    return ControllableChannel()


@pytest.fixture
def make_coordinator(catalog, store, gate, channel):
    def _make(interface_type=InterfaceType.SIDEPANEL, policy=FallbackPolicy.FIRST_AVAILABLE):
        return StableStateCoordinator(
            interface_type, catalog, store, gate, ModelListService(channel), policy,
        )
    return _make


@pytest.fixture
def sidepanel(make_coordinator):
    return make_coordinator(InterfaceType.SIDEPANEL)


@pytest.fixture
def popup(make_coordinator):
    return make_coordinator(InterfaceType.POPUP)


@pytest.fixture
def vault(tmp_path, monkeypatch):
    monkeypatch.setenv("FERNET_KEY", Fernet.generate_key().decode())
    return KeyVault(key_file=tmp_path / ".fernet_key")


# ---------------------------------------------------------------------------
# API test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def services(catalog, kv, vault):
    from app import build_services
    return build_services(catalog, kv, vault)


@pytest_asyncio.fixture
async def app_client(services):
    """Async HTTP client against the FastAPI app with in-memory services."""
    from httpx import ASGITransport, AsyncClient
    from app import attach_services, create_app

    app = create_app()
    attach_services(app, services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
