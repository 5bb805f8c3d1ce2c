"""Platform and model selection.

Both selectors are pure: preferences, credential status and the live model
list are fetched by the caller and passed in, and nothing is persisted here.

Platform resolution order (first match wins):
  1. Tab-scoped preference
  2. Interface-global preference
  3. None -- no guessing; "no valid preference" is a real result

Model resolution order (first match wins):
  1. Interface-global per-platform preference, if in the live list
  2. Platform default model from the catalog, if in the live list
  3. First live model, only under FallbackPolicy.FIRST_AVAILABLE (flagged)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from catalog import PlatformDescriptor
from schemas import InterfaceType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# PlatformSelector
# ---------------------------------------------------------------------------

def _platform_usable(
    platform_id: Optional[str],
    known_ids: set[str],
    credential_status: dict[str, bool],
    interface_type: InterfaceType,
) -> bool:
    if not platform_id or platform_id not in known_ids:
        return False
    if interface_type.requires_credentials:
        return credential_status.get(platform_id) is True
    return True


def resolve_platform(
    tab_preference: Optional[str],
    global_preference: Optional[str],
    platforms: Sequence[PlatformDescriptor],
    credential_status: dict[str, bool],
    interface_type: InterfaceType,
) -> Optional[str]:
    """Resolve the active platform id, or None if no valid preference exists."""
    known_ids = {p.id for p in platforms}

    if _platform_usable(tab_preference, known_ids, credential_status, interface_type):
        logger.debug("Using tab platform preference (%s): %s", interface_type.value, tab_preference)
        return tab_preference

    if _platform_usable(global_preference, known_ids, credential_status, interface_type):
        logger.debug("Using global platform preference (%s): %s", interface_type.value, global_preference)
        return global_preference

    if tab_preference or global_preference:
        logger.info(
            "Stored platform preference not usable (%s): tab=%s global=%s",
            interface_type.value, tab_preference, global_preference,
        )
    return None


# ---------------------------------------------------------------------------
# ModelSelector
# ---------------------------------------------------------------------------

class ModelSource(str, Enum):
    PREFERENCE = "preference"
    PLATFORM_DEFAULT = "platform_default"
    FALLBACK_FIRST = "fallback_first"
    NONE = "none"


class FallbackPolicy(str, Enum):
    FIRST_AVAILABLE = "first_available"
    NONE = "none"


@dataclass(frozen=True)
class ModelSelection:
    model_id: Optional[str]
    source: ModelSource

    @property
    def is_fallback(self) -> bool:
        return self.source is ModelSource.FALLBACK_FIRST


def resolve_model(
    platform_id: str,
    preferred_model_id: Optional[str],
    default_model_id: Optional[str],
    live_model_ids: Sequence[str],
    policy: FallbackPolicy = FallbackPolicy.FIRST_AVAILABLE,
) -> ModelSelection:
    """Resolve the active model for a platform against the live model list."""
    available = set(live_model_ids)

    if preferred_model_id and preferred_model_id in available:
        return ModelSelection(preferred_model_id, ModelSource.PREFERENCE)
    if preferred_model_id:
        logger.info(
            "Saved model preference %s for %s is not in the live model list, skipping",
            preferred_model_id, platform_id,
        )

    if default_model_id and default_model_id in available:
        return ModelSelection(default_model_id, ModelSource.PLATFORM_DEFAULT)

    if live_model_ids and policy is FallbackPolicy.FIRST_AVAILABLE:
        logger.warning(
            "No valid preference or default model for %s, falling back to first available: %s",
            platform_id, live_model_ids[0],
        )
        return ModelSelection(live_model_ids[0], ModelSource.FALLBACK_FIRST)

    return ModelSelection(None, ModelSource.NONE)
