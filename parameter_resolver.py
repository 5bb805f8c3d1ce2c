"""Parameter resolution for a single API call.

Merges model capability defaults, stored user overrides, and thinking-mode
rules into the final ResolvedParameters. Everything here is pure: the
caller pre-fetches overrides and passes the catalog in, so identical inputs
always give identical output.

Precedence:
  - Capability is authoritative over preference: a parameter the model (or
    its active thinking mode) does not support is never emitted, whatever
    the stored override says.
  - Within what the model supports: override value > config default.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from catalog import ConfigCache, ModelDescriptor, PlatformDescriptor
from errors import ConfigNotFound, InvalidOverrideValue
from schemas import (
    MAX_SYSTEM_PROMPT_LENGTH,
    InterfaceType,
    Mode,
    ResolvedParameters,
    UserParameterOverride,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------

def _lookup(catalog: ConfigCache, platform_id: str, model_id: str) -> tuple[PlatformDescriptor, ModelDescriptor]:
    platform = catalog.get_platform(platform_id)
    if platform is None:
        raise ConfigNotFound(f"Platform configuration not found for {platform_id}", platform_id, model_id)
    model = catalog.get_model(platform_id, model_id)
    if model is None:
        raise ConfigNotFound(
            f"Model configuration not found for {platform_id}/{model_id}", platform_id, model_id,
        )
    return platform, model


def is_thinking_enabled(model: ModelDescriptor, use_thinking_mode: bool) -> bool:
    """Thinking mode applies only to models whose thinking is available AND toggleable."""
    thinking = model.thinking
    return bool(thinking and thinking.available and thinking.toggleable and use_thinking_mode)


def select_mode(model: ModelDescriptor, use_thinking_mode: bool) -> Mode:
    return Mode.THINKING if is_thinking_enabled(model, use_thinking_mode) else Mode.BASE


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve_parameters(
    catalog: ConfigCache,
    platform_id: str,
    model_id: str,
    *,
    overrides: Optional[Mapping[Mode, UserParameterOverride]] = None,
    tab_id: Optional[int] = None,
    interface_type: InterfaceType = InterfaceType.SIDEPANEL,
    conversation_history: Optional[list[dict]] = None,
    use_thinking_mode: bool = False,
) -> ResolvedParameters:
    """Resolve the parameter set for one API call.

    Raises ConfigNotFound if the platform or model is missing from the
    catalog. Every other anomaly is recovered with a configured default.
    """
    platform, model = _lookup(catalog, platform_id, model_id)

    thinking_enabled = is_thinking_enabled(model, use_thinking_mode)
    mode = Mode.THINKING if thinking_enabled else Mode.BASE
    override = (overrides or {}).get(mode) or UserParameterOverride()
    thinking = model.thinking

    # --- Token limit ---
    if override.max_tokens is not None:
        max_tokens = override.max_tokens
    elif thinking_enabled and thinking.max_output is not None:
        max_tokens = thinking.max_output
    else:
        max_tokens = model.tokens.max_output

    params: dict[str, Any] = {
        "model": model.id,
        "token_parameter": model.tokens.parameter_name,
        "max_tokens": max_tokens,
        "context_window": model.tokens.context_window,
        "is_thinking_enabled_for_request": thinking_enabled,
    }

    # --- Temperature: on by default wherever the model allows it ---
    include_temperature = (
        model.capabilities.supports_temperature is not False
        and (override.include_temperature if override.include_temperature is not None else True)
        and not (thinking_enabled and thinking.supports_temperature is False)
    )
    if include_temperature:
        params["temperature"] = (
            override.temperature if override.temperature is not None else platform.temperature_default
        )

    # --- Top P: opt-in, and only on models that declare support ---
    include_top_p = (
        model.capabilities.supports_top_p is True
        and (override.include_top_p if override.include_top_p is not None else False)
        and not (thinking_enabled and thinking.supports_top_p is False)
    )
    if include_top_p:
        params["top_p"] = override.top_p if override.top_p is not None else platform.top_p_default

    # --- Thinking controls ---
    if thinking_enabled and thinking.budget is not None:
        params["thinking_budget"] = (
            override.thinking_budget if override.thinking_budget is not None else thinking.budget.default
        )

    if thinking_enabled and thinking.reasoning_effort is not None:
        effort_cfg = thinking.reasoning_effort
        effort = override.reasoning_effort if override.reasoning_effort is not None else effort_cfg.default
        if effort_cfg.allowed_values and effort not in effort_cfg.allowed_values:
            problem = InvalidOverrideValue("reasoning_effort", effort, effort_cfg.allowed_values)
            logger.warning(
                "%s for %s/%s; using default %r", problem, platform_id, model_id, effort_cfg.default,
            )
            effort = effort_cfg.default
        params["reasoning_effort"] = effort

    # --- System prompt ---
    supports_system_prompt = (
        platform.api_structure.supports_system_prompt is not False
        and model.capabilities.supports_system_prompt is not False
    )
    params["model_supports_system_prompt"] = supports_system_prompt
    if supports_system_prompt and override.system_prompt:
        params["system_prompt"] = override.system_prompt

    # --- Pass-through ---
    if conversation_history is not None:
        params["conversation_history"] = conversation_history
    if tab_id is not None:
        params["tab_id"] = tab_id

    logger.debug(
        "Resolved parameters for %s/%s (%s, mode=%s)",
        platform_id, model_id, interface_type.value, mode.value,
    )
    return ResolvedParameters(**params)


# ---------------------------------------------------------------------------
# Derived settings (settings UI)
# ---------------------------------------------------------------------------

def _effective_config(model: ModelDescriptor, mode: Mode) -> dict:
    """Token limits and capabilities with thinking overrides applied for the mode."""
    tokens = model.tokens.model_dump()
    capabilities = model.capabilities.model_dump()
    thinking = model.thinking
    if mode is Mode.THINKING and thinking and thinking.available:
        if thinking.max_output is not None:
            tokens["max_output"] = thinking.max_output
        for cap in ("supports_temperature", "supports_top_p", "supports_system_prompt"):
            value = getattr(thinking, cap)
            if value is not None:
                capabilities[cap] = value
    return {"tokens": tokens, "capabilities": capabilities}


def derive_model_settings(catalog: ConfigCache, platform_id: str, model_id: str, mode: Mode) -> dict:
    """Return effective config, default form values and input specs for one model/mode."""
    platform, model = _lookup(catalog, platform_id, model_id)
    mode = Mode(mode)
    effective = _effective_config(model, mode)
    tokens = effective["tokens"]
    caps = effective["capabilities"]
    thinking = model.thinking

    temperature_ok = caps["supports_temperature"] is not False
    top_p_ok = caps["supports_top_p"] is True
    system_prompt_ok = (
        platform.api_structure.supports_system_prompt is not False
        and caps["supports_system_prompt"] is not False
    )

    defaults = {
        "max_tokens": tokens["max_output"],
        "context_window": tokens["context_window"],
        "system_prompt": "",
        "include_temperature": temperature_ok,
        "include_top_p": False,
        "temperature": platform.temperature.default if temperature_ok else None,
        "top_p": platform.top_p.default if top_p_ok else None,
        "thinking_budget": thinking.budget.default if thinking and thinking.budget else None,
        "reasoning_effort": (
            thinking.reasoning_effort.default if thinking and thinking.reasoning_effort else None
        ),
    }

    specs = {
        "max_tokens": {
            "min": 1, "max": tokens["max_output"], "step": 1,
            "parameter_name": tokens["parameter_name"],
        },
        "temperature": (
            {"min": platform.temperature.min, "max": platform.temperature.max, "step": 0.01}
            if temperature_ok else None
        ),
        "top_p": (
            {"min": platform.top_p.min, "max": platform.top_p.max, "step": 0.01}
            if top_p_ok else None
        ),
        "system_prompt": {"max_length": MAX_SYSTEM_PROMPT_LENGTH} if system_prompt_ok else None,
        "thinking_budget": (
            thinking.budget.model_dump() if thinking and thinking.budget else None
        ),
        "reasoning_effort": (
            thinking.reasoning_effort.model_dump() if thinking and thinking.reasoning_effort else None
        ),
    }

    return {
        "platform_id": platform_id,
        "model_id": model_id,
        "mode": mode.value,
        "thinking_toggleable": bool(thinking and thinking.available and thinking.toggleable),
        "effective_config": effective,
        "capabilities": caps,
        "default_settings": defaults,
        "parameter_specs": specs,
    }


# ---------------------------------------------------------------------------
# Override validation (write path)
# ---------------------------------------------------------------------------

# Accepts both field names and their camelCase aliases.
_FIELD_BY_KEY: dict[str, str] = {
    **{f.alias: name for name, f in UserParameterOverride.model_fields.items() if f.alias},
    **{name: name for name in UserParameterOverride.model_fields},
}


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_overrides(
    catalog: ConfigCache,
    platform_id: str,
    model_id: str,
    mode: Mode,
    data: dict,
) -> dict:
    """Type- and range-check an override record before it is saved.

    Unknown keys are ignored. Returns:
        {"valid": bool, "errors": [...], "override": {...} or None}
    """
    platform, model = _lookup(catalog, platform_id, model_id)
    mode = Mode(mode)
    where = f"{platform_id}/{model_id}/{mode.value}"
    errors: list[str] = []

    if not isinstance(data, dict):
        return {"valid": False, "errors": ["Override must be an object."], "override": None}

    thinking = model.thinking
    if mode is Mode.THINKING and not (thinking and thinking.available and thinking.toggleable):
        errors.append(f"{platform_id}/{model_id} has no toggleable thinking mode.")

    values = {_FIELD_BY_KEY[k]: v for k, v in data.items() if k in _FIELD_BY_KEY}
    effective = _effective_config(model, mode)
    caps = effective["capabilities"]
    max_output = effective["tokens"]["max_output"]

    for key, value in values.items():
        if value is None:
            continue
        if key == "max_tokens":
            if not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"max_tokens for {where} must be an integer or null.")
            elif not 1 <= value <= max_output:
                errors.append(f"max_tokens for {where} must be between 1 and {max_output}. Found: {value}.")
        elif key == "temperature":
            if not _is_number(value):
                errors.append(f"temperature for {where} must be a number or null.")
            elif values.get("include_temperature") is not False:
                if caps["supports_temperature"] is False:
                    errors.append(f"temperature is set for {where}, but this model/mode does not support it.")
                elif not platform.temperature.min <= value <= platform.temperature.max:
                    errors.append(
                        f"temperature for {where} must be between {platform.temperature.min} "
                        f"and {platform.temperature.max}. Found: {value}."
                    )
        elif key == "top_p":
            if not _is_number(value):
                errors.append(f"top_p for {where} must be a number or null.")
            elif values.get("include_top_p") is True:
                if caps["supports_top_p"] is not True:
                    errors.append(f"top_p is set for {where}, but this model/mode does not support it.")
                elif not platform.top_p.min <= value <= platform.top_p.max:
                    errors.append(
                        f"top_p for {where} must be between {platform.top_p.min} "
                        f"and {platform.top_p.max}. Found: {value}."
                    )
        elif key == "thinking_budget":
            budget = thinking.budget if thinking else None
            if budget is None:
                errors.append(f"thinking_budget is set for {where}, but this model does not support a thinking budget.")
            elif not isinstance(value, int) or isinstance(value, bool):
                errors.append(f"thinking_budget for {where} must be an integer.")
            elif value < budget.min or (budget.max is not None and value > budget.max):
                errors.append(
                    f"thinking_budget for {where} must be between {budget.min} and {budget.max}. Found: {value}."
                )
        elif key == "reasoning_effort":
            effort_cfg = thinking.reasoning_effort if thinking else None
            if effort_cfg is None or not effort_cfg.allowed_values:
                errors.append(f"reasoning_effort is set for {where}, but this model has no allowed values.")
            elif not isinstance(value, str):
                errors.append(f"reasoning_effort for {where} must be a string.")
            elif value not in effort_cfg.allowed_values:
                errors.append(
                    f"Invalid reasoning_effort value {value!r} for {where}. "
                    f"Allowed values are: {', '.join(effort_cfg.allowed_values)}."
                )
        elif key == "system_prompt":
            if not isinstance(value, str):
                errors.append(f"system_prompt for {where} must be a string or null.")
            elif len(value) > MAX_SYSTEM_PROMPT_LENGTH:
                errors.append(
                    f"system_prompt for {where} exceeds maximum length of {MAX_SYSTEM_PROMPT_LENGTH} characters."
                )
        elif key in ("include_temperature", "include_top_p"):
            if not isinstance(value, bool):
                errors.append(f"{key} for {where} must be a boolean.")

    if errors:
        return {"valid": False, "errors": errors, "override": None}
    override = UserParameterOverride.model_validate(values)
    return {"valid": True, "errors": [], "override": override.to_storage()}
