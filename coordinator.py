"""Stable state coordination for one extension interface.

Every trigger (tab switch, explicit refresh, user selection) starts a new
resolution pass tagged with a monotonically increasing generation id:

    PlatformSelector -> ModelSelector -> ParameterResolver -> commit

Intermediate results are staged in a private buffer. The consumer-visible
stable state is replaced only when the whole chain succeeds AND the pass
is still the newest one started (last generation wins, not last to finish).
Older passes are never cancelled; their results are dropped at commit time.

Usage:
    coordinator = StableStateCoordinator(InterfaceType.SIDEPANEL, catalog, store, gate, model_lists)
    await coordinator.set_tab(42)
    coordinator.stable_selected_platform_id
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from catalog import ConfigCache, PlatformDescriptor
from credentials import CredentialGate
from errors import ConfigNotFound, ResolutionError, user_message
from model_list import ModelListService
from parameter_resolver import resolve_parameters
from schemas import InterfaceType, ResolvedParameters
from selection import FallbackPolicy, ModelSource, resolve_model, resolve_platform
from store import PreferenceStore

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    COMMITTED = "committed"
    FAILED = "failed"


VALID_TRANSITIONS = {
    CoordinatorState.IDLE: {CoordinatorState.RESOLVING},
    # A newer trigger may start while the previous pass is still resolving.
    CoordinatorState.RESOLVING: {
        CoordinatorState.RESOLVING, CoordinatorState.COMMITTED, CoordinatorState.FAILED,
    },
    CoordinatorState.COMMITTED: {CoordinatorState.IDLE},
    CoordinatorState.FAILED: {CoordinatorState.IDLE},
}


def validate_transition(current: str, new: str) -> bool:
    """Check if a coordinator state transition is valid."""
    try:
        current_state = CoordinatorState(current)
        new_state = CoordinatorState(new)
    except ValueError:
        return False
    return new_state in VALID_TRANSITIONS.get(current_state, set())


def should_commit(
    pass_generation: int,
    latest_generation: int,
    committed_generation: int,
    failed: bool,
) -> bool:
    """Commit rule: a complete pass that is still the newest one started."""
    return (
        not failed
        and pass_generation == latest_generation
        and pass_generation > committed_generation
    )


@dataclass(frozen=True)
class StableState:
    """Committed, consumer-visible resolution result."""
    generation: int = 0
    tab_id: Optional[int] = None
    platforms: tuple[PlatformDescriptor, ...] = ()
    credential_status: tuple[tuple[str, bool], ...] = ()
    selected_platform_id: Optional[str] = None
    models: tuple[dict, ...] = ()
    selected_model_id: Optional[str] = None
    model_source: ModelSource = ModelSource.NONE
    use_thinking_mode: bool = False
    parameters: Optional[ResolvedParameters] = None

    def to_dict(self) -> dict:
        return {
            "generation": self.generation,
            "tab_id": self.tab_id,
            "platforms": [
                {"id": p.id, "name": p.name, "url": p.url, "icon_url": p.icon_url}
                for p in self.platforms
            ],
            "credential_status": dict(self.credential_status),
            "selected_platform_id": self.selected_platform_id,
            "models": [dict(m) for m in self.models],
            "selected_model_id": self.selected_model_id,
            "model_source": self.model_source.value,
            "use_thinking_mode": self.use_thinking_mode,
            "parameters": self.parameters.to_request_dict() if self.parameters else None,
        }


@dataclass
class _PassBuffer:
    """Staging area for one pass; never visible to consumers."""
    generation: int
    tab_id: Optional[int]
    platforms: list[PlatformDescriptor] = field(default_factory=list)
    credential_status: dict[str, bool] = field(default_factory=dict)
    selected_platform_id: Optional[str] = None
    models: list[dict] = field(default_factory=list)
    selected_model_id: Optional[str] = None
    model_source: ModelSource = ModelSource.NONE
    use_thinking_mode: bool = False
    parameters: Optional[ResolvedParameters] = None

    def freeze(self) -> StableState:
        return StableState(
            generation=self.generation,
            tab_id=self.tab_id,
            platforms=tuple(self.platforms),
            credential_status=tuple(sorted(self.credential_status.items())),
            selected_platform_id=self.selected_platform_id,
            models=tuple(self.models),
            selected_model_id=self.selected_model_id,
            model_source=self.model_source,
            use_thinking_mode=self.use_thinking_mode,
            parameters=self.parameters,
        )


@dataclass(frozen=True)
class PassOutcome:
    generation: int
    reason: str
    committed: bool = False
    stale: bool = False
    error: Optional[Exception] = None


class StableStateCoordinator:
    """Runs resolution passes for one interface and commits them atomically."""

    def __init__(
        self,
        interface_type: InterfaceType,
        catalog: ConfigCache,
        store: PreferenceStore,
        gate: CredentialGate,
        model_lists: ModelListService,
        fallback_policy: FallbackPolicy = FallbackPolicy.FIRST_AVAILABLE,
    ):
        self.interface_type = InterfaceType(interface_type)
        self._catalog = catalog
        self._store = store
        self._gate = gate
        self._model_lists = model_lists
        self._fallback_policy = FallbackPolicy(fallback_policy)

        self._tab_id: Optional[int] = None
        self._generation = 0                    # highest generation started
        self._committed_generation = 0
        self._in_flight: set[int] = set()
        self._stable = StableState()
        self._error: Optional[Exception] = None
        self._state = CoordinatorState.IDLE
        self._ws_manager = None                 # set via set_ws_manager()
        self._tasks: set[asyncio.Task] = set()

    def set_ws_manager(self, manager):
        """Set the WebSocket connection manager for broadcasting commits."""
        self._ws_manager = manager

    # --- Consumer view ---

    @property
    def stable_state(self) -> StableState:
        return self._stable

    @property
    def stable_platforms(self) -> tuple[PlatformDescriptor, ...]:
        return self._stable.platforms

    @property
    def stable_selected_platform_id(self) -> Optional[str]:
        return self._stable.selected_platform_id

    @property
    def stable_models(self) -> tuple[dict, ...]:
        return self._stable.models

    @property
    def stable_selected_model_id(self) -> Optional[str]:
        return self._stable.selected_model_id

    @property
    def stable_parameters(self) -> Optional[ResolvedParameters]:
        return self._stable.parameters

    @property
    def is_loading(self) -> bool:
        """True while the newest pass is in flight, even if stable state is populated."""
        return self._generation in self._in_flight

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tab_id(self) -> Optional[int]:
        return self._tab_id

    def snapshot(self) -> dict:
        return {
            "interface_type": self.interface_type.value,
            "state": self._state.value,
            "is_loading": self.is_loading,
            "error": user_message(self._error) if self._error else None,
            "stable": self._stable.to_dict(),
        }

    # --- Triggers ---

    async def set_tab(self, tab_id: int) -> PassOutcome:
        self._tab_id = tab_id
        return await self.run_pass("tab_change")

    async def refresh(self) -> PassOutcome:
        return await self.run_pass("refresh")

    def schedule_refresh(self, reason: str = "refresh") -> asyncio.Task:
        """Start a pass in the background (e.g. after credentials change)."""
        task = asyncio.create_task(self.run_pass(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self):
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close_tab(self, tab_id: int) -> bool:
        removed = await self._store.clear_tab(tab_id)
        if self._tab_id == tab_id:
            self._tab_id = None
            await self.run_pass("tab_closed")
        return removed

    async def select_platform(self, platform_id: str) -> PassOutcome:
        """Persist a user platform choice (tab + interface-global) and re-resolve."""
        if self._catalog.get_platform(platform_id) is None:
            raise ConfigNotFound(f"Platform '{platform_id}' not found in catalog", platform_id)
        if self.interface_type.requires_credentials and not await self._gate.check(platform_id):
            raise ValueError(f"No API credentials configured for '{platform_id}'")

        tab_id = self._tab_id
        try:
            if tab_id is not None and self.interface_type.has_tab_preferences:
                await self._store.set_tab_platform(tab_id, platform_id)
            await self._store.set_global_platform(self.interface_type, platform_id)
        except ResolutionError as e:
            await self._record_write_failure(e)
            raise
        logger.info(
            "Platform selected: interface=%s tab_id=%s platform=%s",
            self.interface_type.value, tab_id, platform_id,
        )
        return await self.run_pass("select_platform")

    async def select_model(self, model_id: str) -> PassOutcome:
        """Persist a user model choice for the committed platform and re-resolve."""
        if not self.interface_type.has_model_choice:
            raise ValueError(f"{self.interface_type.value} does not offer model selection")
        platform_id = self._stable.selected_platform_id
        if not platform_id:
            raise ValueError("No platform selected")
        if not any(m.get("id") == model_id for m in self._stable.models):
            raise ValueError(f"Model '{model_id}' is not available for '{platform_id}'")

        try:
            await self._store.set_global_model(self.interface_type, platform_id, model_id)
        except ResolutionError as e:
            await self._record_write_failure(e)
            raise
        logger.info(
            "Model selected: interface=%s platform=%s model=%s",
            self.interface_type.value, platform_id, model_id,
        )
        return await self.run_pass("select_model")

    async def set_thinking_mode(self, enabled: bool) -> Optional[PassOutcome]:
        """Persist the thinking-mode toggle for the committed model and re-resolve."""
        platform_id = self._stable.selected_platform_id
        model_id = self._stable.selected_model_id
        if not platform_id or not model_id:
            raise ValueError("No model selected")
        model = self._catalog.get_model(platform_id, model_id)
        if model is None:
            raise ConfigNotFound(
                f"Model '{model_id}' not found for platform '{platform_id}'", platform_id, model_id,
            )
        thinking = model.thinking
        if not (thinking and thinking.available and thinking.toggleable):
            logger.warning("Thinking mode is not toggleable for %s/%s, ignoring", platform_id, model_id)
            return None

        try:
            await self._store.set_thinking_mode(platform_id, model_id, enabled)
        except ResolutionError as e:
            await self._record_write_failure(e)
            raise
        return await self.run_pass("thinking_mode")

    # --- Pass execution ---

    async def run_pass(self, reason: str = "refresh") -> PassOutcome:
        """Run one resolution pass and commit it if it is still the newest."""
        self._generation += 1
        generation = self._generation
        tab_id = self._tab_id
        self._in_flight.add(generation)
        self._transition(CoordinatorState.RESOLVING)
        logger.debug(
            "Resolution pass started: interface=%s generation=%d reason=%s",
            self.interface_type.value, generation, reason,
        )

        try:
            buffer = await self._resolve(generation, tab_id)
        except Exception as e:
            return await self._finish_failed(generation, reason, e)
        finally:
            self._in_flight.discard(generation)

        return await self._finish_complete(generation, reason, buffer)

    async def _resolve(self, generation: int, tab_id: Optional[int]) -> _PassBuffer:
        buffer = _PassBuffer(generation=generation, tab_id=tab_id)
        buffer.platforms = self._catalog.get_platforms()
        platform_ids = [p.id for p in buffer.platforms]

        # Only tab-aware interfaces consult the per-tab tier.
        tab_key = tab_id if self.interface_type.has_tab_preferences else None

        # Credential refresh runs alongside the preference reads.
        if self.interface_type.requires_credentials:
            credentials = self._gate.check_many(platform_ids)
        else:
            credentials = _no_credentials_needed()
        buffer.credential_status, tab_pref, global_pref = await asyncio.gather(
            credentials,
            self._store.get_tab_platform(tab_key),
            self._store.get_global_platform(self.interface_type),
        )

        buffer.selected_platform_id = resolve_platform(
            tab_pref, global_pref, buffer.platforms, buffer.credential_status, self.interface_type,
        )
        if not buffer.selected_platform_id or not self.interface_type.has_model_choice:
            return buffer

        platform_id = buffer.selected_platform_id
        response, preferred = await asyncio.gather(
            self._model_lists.request(platform_id),
            self._store.get_global_model(self.interface_type, platform_id),
        )
        buffer.models = list(response.models) if response.success else []

        selection = resolve_model(
            platform_id,
            preferred,
            self._catalog.get_default_model(platform_id),
            [m["id"] for m in buffer.models],
            self._fallback_policy,
        )
        buffer.selected_model_id = selection.model_id
        buffer.model_source = selection.source
        if not selection.model_id:
            return buffer

        overrides, use_thinking = await asyncio.gather(
            self._store.get_overrides(platform_id, selection.model_id),
            self._store.get_thinking_mode(platform_id, selection.model_id),
        )
        buffer.use_thinking_mode = use_thinking
        buffer.parameters = resolve_parameters(
            self._catalog,
            platform_id,
            selection.model_id,
            overrides=overrides,
            tab_id=tab_id,
            interface_type=self.interface_type,
            use_thinking_mode=use_thinking,
        )
        return buffer

    async def _finish_complete(self, generation: int, reason: str, buffer: _PassBuffer) -> PassOutcome:
        if not should_commit(generation, self._generation, self._committed_generation, failed=False):
            logger.info(
                "Discarding stale pass: interface=%s generation=%d latest=%d",
                self.interface_type.value, generation, self._generation,
            )
            return PassOutcome(generation, reason, stale=True)

        # Single synchronous write: consumers see the old state or the new one, never a mix.
        self._stable = buffer.freeze()
        self._committed_generation = generation
        self._error = None
        self._transition(CoordinatorState.COMMITTED)
        logger.info(
            "Pass committed: interface=%s generation=%d platform=%s model=%s",
            self.interface_type.value, generation,
            buffer.selected_platform_id, buffer.selected_model_id,
            extra={
                "interface": self.interface_type.value,
                "tab_id": buffer.tab_id,
                "generation": generation,
                "platform": buffer.selected_platform_id,
                "model": buffer.selected_model_id,
            },
        )
        message = {"type": "state_committed", **self.snapshot()}
        self._transition(CoordinatorState.IDLE)
        await self._broadcast(message)
        return PassOutcome(generation, reason, committed=True)

    async def _finish_failed(self, generation: int, reason: str, exc: Exception) -> PassOutcome:
        if generation != self._generation:
            logger.warning(
                "Stale pass failed: interface=%s generation=%d error=%s",
                self.interface_type.value, generation, exc,
            )
            return PassOutcome(generation, reason, stale=True, error=exc)

        if isinstance(exc, ResolutionError):
            logger.warning(
                "Pass failed: interface=%s generation=%d error=%s",
                self.interface_type.value, generation, exc,
                extra={"interface": self.interface_type.value, "generation": generation},
            )
        else:
            logger.exception(
                "Pass failed unexpectedly: interface=%s generation=%d",
                self.interface_type.value, generation,
            )
        self._error = exc
        self._transition(CoordinatorState.FAILED)
        message = {"type": "state_failed", **self.snapshot()}
        self._transition(CoordinatorState.IDLE)
        await self._broadcast(message)
        return PassOutcome(generation, reason, error=exc)

    async def _record_write_failure(self, exc: Exception):
        logger.warning("Preference write failed: interface=%s error=%s", self.interface_type.value, exc)
        self._error = exc
        await self._broadcast({"type": "state_failed", **self.snapshot()})

    def _transition(self, new_state: CoordinatorState):
        if not validate_transition(self._state, new_state):
            logger.warning(
                "Invalid coordinator transition for %s: %s -> %s",
                self.interface_type.value, self._state.value, new_state.value,
            )
        self._state = new_state

    async def _broadcast(self, message: dict):
        if self._ws_manager:
            await self._ws_manager.send_to_interface(self.interface_type.value, message)


async def _no_credentials_needed() -> dict[str, bool]:
    return {}
