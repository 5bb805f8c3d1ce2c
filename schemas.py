"""Pydantic schemas shared by the resolution engine and the HTTP API."""
from __future__ import annotations

from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ──────────────────────── Constants ────────────────────────

MAX_SYSTEM_PROMPT_LENGTH = 50_000

# Platforms whose credentials are managed by the service.
KNOWN_PLATFORM_PATTERN = r"^[a-z0-9_\-]+$"


class InterfaceType(str, Enum):
    POPUP = "popup"
    SIDEPANEL = "sidepanel"

    @property
    def requires_credentials(self) -> bool:
        """Interfaces that make live API calls only offer credentialed platforms."""
        return self is InterfaceType.SIDEPANEL

    @property
    def has_model_choice(self) -> bool:
        """Interfaces that let the user pick a model per call."""
        return self is InterfaceType.SIDEPANEL

    @property
    def has_tab_preferences(self) -> bool:
        """Interfaces that remember a platform per browser tab."""
        return self is InterfaceType.SIDEPANEL


class Mode(str, Enum):
    BASE = "base"
    THINKING = "thinking"


# ──────────────────── Parameter Schemas ────────────────────

class UserParameterOverride(BaseModel):
    """User-edited parameter values for one (platform, model, mode).

    Accepts both snake_case and the camelCase keys written by older
    settings exports.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
        frozen=True,
    )

    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    include_temperature: Optional[bool] = None
    include_top_p: Optional[bool] = None
    system_prompt: Optional[str] = None
    thinking_budget: Optional[int] = None
    reasoning_effort: Optional[str] = None

    def to_storage(self) -> dict:
        """Serialize for the preference store (unset fields dropped)."""
        return self.model_dump(exclude_none=True)


class ResolvedParameters(BaseModel):
    """Final parameter set for one API call. Never persisted."""

    model_config = ConfigDict(frozen=True)

    model: str
    token_parameter: str
    max_tokens: int
    context_window: int
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    system_prompt: Optional[str] = None
    thinking_budget: Optional[int] = None
    reasoning_effort: Optional[str] = None
    is_thinking_enabled_for_request: bool = False
    model_supports_system_prompt: bool = True
    tab_id: Optional[int] = None
    conversation_history: Optional[List[dict]] = None

    def to_request_dict(self) -> dict:
        """Return the parameters with excluded keys absent, not null."""
        return self.model_dump(exclude_none=True)


# ──────────────────── Request Schemas ──────────────────────

class TabChange(BaseModel):
    tab_id: int = Field(..., ge=0)


class PlatformSelect(BaseModel):
    platform_id: str = Field(..., min_length=1, max_length=64, pattern=KNOWN_PLATFORM_PATTERN)


class ModelSelect(BaseModel):
    model_id: str = Field(..., min_length=1, max_length=256)


class ThinkingModeUpdate(BaseModel):
    enabled: bool


class ResolveParametersRequest(BaseModel):
    platform_id: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    interface_type: InterfaceType = InterfaceType.SIDEPANEL
    tab_id: Optional[int] = None
    use_thinking_mode: bool = False
    conversation_history: Optional[List[dict]] = None


class CredentialUpdate(BaseModel):
    api_key: str = Field(..., min_length=1)

    @field_validator("api_key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("api_key must be a non-empty string")
        return v


# ──────────────────── Response Schemas ─────────────────────

class CredentialStatusResponse(BaseModel):
    platform_id: str
    has_credentials: bool
