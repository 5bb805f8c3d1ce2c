"""API credential storage and credential gating.

Keys are encrypted with Fernet before they reach the preference store, so
the store only ever holds ciphertext. CredentialGate answers the only
question the resolution engine asks: does this platform have usable
credentials right now?
"""

import asyncio
import logging
import os
import warnings
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from errors import CredentialCheckFailed
from store import PreferenceStore, Scope, credentials_key

logger = logging.getLogger(__name__)

_KEY_FILE = Path(__file__).parent / "data" / ".fernet_key"


class KeyVault:
    """Encrypt/decrypt API keys using Fernet symmetric encryption.

    Master key resolution order:
    1. FERNET_KEY environment variable
    2. data/.fernet_key file (auto-generated on first run)
    """

    def __init__(self, key_file: Path = _KEY_FILE):
        self._key_file = key_file
        self._fernet = Fernet(self._load_or_create_key())

    def _load_or_create_key(self) -> bytes:
        env_key = os.environ.get("FERNET_KEY")
        if env_key:
            return env_key.encode()

        if self._key_file.exists():
            return self._key_file.read_bytes().strip()

        key = Fernet.generate_key()
        self._key_file.parent.mkdir(parents=True, exist_ok=True)
        self._key_file.write_bytes(key)
        self._key_file.chmod(0o600)

        warnings.warn(
            f"FERNET encryption key auto-generated at {self._key_file}. "
            f"Back it up: if lost, stored API keys become unrecoverable. "
            f"Set FERNET_KEY in production.",
            stacklevel=2,
        )
        return key

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        return self._fernet.decrypt(ciphertext.encode()).decode()


class CredentialManager:
    """Store, fetch and remove per-platform API keys."""

    def __init__(self, store: PreferenceStore, vault: KeyVault):
        self._store = store
        self._vault = vault

    async def store_credentials(self, platform_id: str, api_key: str) -> None:
        await self._store.set(
            Scope.GLOBAL, credentials_key(platform_id), {"api_key": self._vault.encrypt(api_key)},
        )
        logger.info("API credentials stored: platform=%s", platform_id)

    async def get_credentials(self, platform_id: str) -> dict | None:
        """Return {"api_key": plaintext} or None if absent or undecryptable."""
        record = await self._store.get(Scope.GLOBAL, credentials_key(platform_id))
        if not record or not record.get("api_key"):
            return None
        try:
            return {"api_key": self._vault.decrypt(record["api_key"])}
        except InvalidToken:
            logger.warning("Failed to decrypt API key for platform=%s", platform_id)
            return None

    async def remove_credentials(self, platform_id: str) -> bool:
        removed = await self._store.delete(Scope.GLOBAL, credentials_key(platform_id))
        if removed:
            logger.info("API credentials removed: platform=%s", platform_id)
        return removed

    async def has_credentials(self, platform_id: str) -> bool:
        return await self.get_credentials(platform_id) is not None


class CredentialGate:
    """Per-platform credential availability, never fatal to the caller."""

    def __init__(self, manager: CredentialManager):
        self._manager = manager

    async def check(self, platform_id: str) -> bool:
        try:
            return await self._manager.has_credentials(platform_id)
        except Exception as e:
            failure = CredentialCheckFailed(platform_id, e)
            logger.warning("%s; treating as no credentials", failure)
            return False

    async def check_many(self, platform_ids: list[str]) -> dict[str, bool]:
        results = await asyncio.gather(*(self.check(pid) for pid in platform_ids))
        return dict(zip(platform_ids, results))
