"""Platform/model capability catalog.

The catalog is a YAML file describing every supported AI platform and the
models it exposes through its API. It is parsed into frozen pydantic
descriptors once and cached on an explicit ConfigCache value; callers
invalidate or refresh the cache instead of relying on module globals.

Usage:
    cache = ConfigCache("platform_config.yaml", icon_base_url="chrome-extension://abc/")
    platforms = cache.get_platforms()
    model = cache.get_model("claude", "claude-sonnet-4-5")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import CatalogLoadError, ConfigNotFound

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RangeSpec(_Frozen):
    min: float
    max: float
    default: float


class ApiStructure(_Frozen):
    supports_system_prompt: bool = True


class TokenSpec(_Frozen):
    context_window: int = Field(..., ge=1)
    max_output: int = Field(..., ge=1)
    parameter_name: str = "max_tokens"


class Capabilities(_Frozen):
    supports_temperature: bool = True
    supports_top_p: bool = False
    supports_system_prompt: bool = True


class BudgetSpec(_Frozen):
    default: int
    min: int = 0
    max: Optional[int] = None
    step: int = 1


class ReasoningEffortSpec(_Frozen):
    default: str
    allowed_values: list[str] = Field(default_factory=list)


class ThinkingSpec(_Frozen):
    available: bool = False
    toggleable: bool = False
    max_output: Optional[int] = None
    supports_temperature: Optional[bool] = None
    supports_top_p: Optional[bool] = None
    supports_system_prompt: Optional[bool] = None
    budget: Optional[BudgetSpec] = None
    reasoning_effort: Optional[ReasoningEffortSpec] = None


class ModelDescriptor(_Frozen):
    id: str
    display_name: Optional[str] = None
    tokens: TokenSpec
    capabilities: Capabilities = Field(default_factory=Capabilities)
    thinking: Optional[ThinkingSpec] = None


class PlatformDescriptor(_Frozen):
    id: str
    name: str
    url: Optional[str] = None
    icon_url: str = ""
    default_model: Optional[str] = None
    temperature: RangeSpec = RangeSpec(min=0.0, max=1.0, default=0.7)
    top_p: RangeSpec = RangeSpec(min=0.0, max=1.0, default=1.0)
    api_structure: ApiStructure = Field(default_factory=ApiStructure)

    @property
    def temperature_default(self) -> float:
        return self.temperature.default

    @property
    def top_p_default(self) -> float:
        return self.top_p.default


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------

class _PlatformApiSchema(BaseModel):
    default_model: Optional[str] = None
    temperature: Optional[RangeSpec] = None
    top_p: Optional[RangeSpec] = None
    api_structure: ApiStructure = Field(default_factory=ApiStructure)
    models: list[ModelDescriptor] = Field(default_factory=list)


class _PlatformSchema(BaseModel):
    name: str
    url: Optional[str] = None
    icon: str = ""
    api: _PlatformApiSchema


class CatalogSchema(BaseModel):
    platforms: dict[str, _PlatformSchema]


def load_catalog(path: str | Path) -> CatalogSchema:
    """Load and validate the catalog YAML file."""
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"Cannot read catalog {path}: {e}") from e
    try:
        return CatalogSchema(**(raw or {}))
    except (ValidationError, TypeError) as e:
        if isinstance(e, ValidationError):
            for err in e.errors():
                loc = " -> ".join(str(x) for x in err["loc"])
                logger.error("Catalog validation error in %s: %s: %s", path, loc, err["msg"])
        raise CatalogLoadError(f"Catalog {path} failed validation") from e


def _join_url(base: str, path: str) -> str:
    if not base or not path:
        return path
    return base.rstrip("/") + "/" + path.lstrip("/")


# ---------------------------------------------------------------------------
# ConfigCache
# ---------------------------------------------------------------------------

class ConfigCache:
    """Read-only cached view over the catalog, with explicit invalidation."""

    def __init__(self, path: str | Path, icon_base_url: str = ""):
        self._path = Path(path)
        self._icon_base_url = icon_base_url
        self._platforms: dict[str, PlatformDescriptor] | None = None
        self._models: dict[str, dict[str, ModelDescriptor]] = {}

    @classmethod
    def from_platforms(
        cls,
        platforms: list[PlatformDescriptor],
        models: dict[str, list[ModelDescriptor]],
    ) -> "ConfigCache":
        """Build an already-loaded cache from descriptors (no file involved)."""
        cache = cls(Path("<memory>"))
        cache._platforms = {p.id: p for p in platforms}
        cache._models = {
            pid: {m.id: m for m in models.get(pid, [])} for pid in cache._platforms
        }
        return cache

    @property
    def is_loaded(self) -> bool:
        return self._platforms is not None

    def load(self) -> None:
        """Parse the catalog file if the cache is empty."""
        if self._platforms is not None:
            return
        self._platforms, self._models = self._parse()

    def _parse(self) -> tuple[dict[str, PlatformDescriptor], dict[str, dict[str, ModelDescriptor]]]:
        logger.info("Loading platform catalog from %s", self._path)
        schema = load_catalog(self._path)
        platforms: dict[str, PlatformDescriptor] = {}
        models: dict[str, dict[str, ModelDescriptor]] = {}
        for pid, p in schema.platforms.items():
            api = p.api
            fields = {
                "id": pid,
                "name": p.name,
                "url": p.url,
                "icon_url": _join_url(self._icon_base_url, p.icon),
                "default_model": api.default_model,
                "api_structure": api.api_structure,
            }
            if api.temperature is not None:
                fields["temperature"] = api.temperature
            if api.top_p is not None:
                fields["top_p"] = api.top_p
            platforms[pid] = PlatformDescriptor(**fields)
            models[pid] = {m.id: m for m in api.models}
        logger.info("Platform catalog loaded: %d platforms", len(platforms))
        return platforms, models

    def invalidate(self) -> None:
        """Drop cached descriptors; the next read reloads the file."""
        if self._path == Path("<memory>"):
            return
        self._platforms = None
        self._models = {}

    def refresh(self) -> None:
        """Reload immediately. A file that fails to load leaves the cached catalog in place."""
        if self._path == Path("<memory>"):
            return
        platforms, models = self._parse()
        self._platforms, self._models = platforms, models

    def _ensure(self) -> dict[str, PlatformDescriptor]:
        self.load()
        return self._platforms  # type: ignore[return-value]

    def get_platforms(self) -> list[PlatformDescriptor]:
        return list(self._ensure().values())

    def get_platform(self, platform_id: str) -> PlatformDescriptor | None:
        return self._ensure().get(platform_id)

    def require_platform(self, platform_id: str) -> PlatformDescriptor:
        platform = self.get_platform(platform_id)
        if platform is None:
            raise ConfigNotFound(f"Platform '{platform_id}' not found in catalog", platform_id)
        return platform

    def get_models(self, platform_id: str) -> list[ModelDescriptor]:
        self._ensure()
        return list(self._models.get(platform_id, {}).values())

    def get_model(self, platform_id: str, model_id: str) -> ModelDescriptor | None:
        self._ensure()
        return self._models.get(platform_id, {}).get(model_id)

    def get_default_model(self, platform_id: str) -> str | None:
        platform = self.get_platform(platform_id)
        return platform.default_model if platform else None
