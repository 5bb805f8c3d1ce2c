"""Service configuration, read from environment variables (and .env)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_dir = Path(__file__).parent

FALLBACK_POLICIES = ("first_available", "none")


@dataclass(frozen=True)
class Settings:
    catalog_path: Path
    db_path: Path
    icon_base_url: str = ""
    model_fallback_policy: str = "first_available"
    log_level: str = "warning"

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "Settings":
        """Build settings from the process environment.

        A .env file next to the code (or *env_file*) is loaded first; values
        already present in the environment win.
        """
        load_dotenv(env_file or _dir / ".env", override=False)

        policy = os.environ.get("MODEL_FALLBACK_POLICY", "first_available").strip().lower()
        if policy not in FALLBACK_POLICIES:
            logger.warning(
                "Unknown MODEL_FALLBACK_POLICY=%r, using 'first_available'", policy,
            )
            policy = "first_available"

        return cls(
            catalog_path=Path(os.environ.get("CATALOG_PATH", _dir / "platform_config.yaml")),
            db_path=Path(os.environ.get("DB_PATH", _dir / "data" / "preferences.db")),
            icon_base_url=os.environ.get("ICON_BASE_URL", ""),
            model_fallback_policy=policy,
            log_level=os.environ.get("LOG_LEVEL", "warning").lower(),
        )
