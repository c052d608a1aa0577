"""
API Key Service

Issues, validates and revokes API keys.

Key format: "rlk_" followed by 32 lowercase hex characters (16 random bytes).
Only the SHA-256 hex digest is stored. SHA-256 is adequate here because keys
are high-entropy random strings, not user-chosen passwords; a slow hash would
only add latency to every API request.

The plaintext key exists only in the return value of issue(). It is never
logged and cannot be recovered from the stored hash.
"""

import hashlib
import logging
import re
import secrets
from typing import Optional

from shortlinks.db.api_key_store import ApiKeyStore
from shortlinks.db.models import ApiKey, utcnow

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rlk_"
API_KEY_RANDOM_BYTES = 16
API_KEY_PATTERN = re.compile(r"^rlk_[a-f0-9]{32}$")


def generate_api_key() -> str:
    """Generate a new plaintext key: rlk_<32 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(API_KEY_RANDOM_BYTES)}"


def hash_api_key(plain_key: str) -> str:
    """Hash a plaintext key with SHA-256; returns the hex digest used for lookup."""
    return hashlib.sha256(plain_key.encode("utf-8")).hexdigest()


def is_well_formed_api_key(value: str) -> bool:
    return bool(API_KEY_PATTERN.match(value))


class ApiKeyService:
    """
    Credential validator and key lifecycle operations.

    Backed by an ApiKeyStore injected at construction time.
    """

    def __init__(self, store: ApiKeyStore):
        self.store = store

    async def issue(self, user_id: str, name: str) -> tuple[ApiKey, str]:
        """
        Create a new API key for user_id.

        Args:
            user_id: Owner of the key
            name: Human-readable label

        Returns:
            (stored record, plaintext key). The plaintext is not retrievable later.
        """
        plain_key = generate_api_key()
        api_key = ApiKey(
            user_id=user_id,
            key_hash=hash_api_key(plain_key),
            name=name,
        )
        await self.store.insert(api_key)
        logger.info(f"Issued API key {api_key.id} for user {user_id}")
        return api_key, plain_key

    async def validate(self, plain_key: str) -> Optional[ApiKey]:
        """
        Resolve a presented key to its credential.

        Matches on exact hash equality only. On success the key's last_used_at
        is refreshed before returning.

        Returns:
            The matching ApiKey, or None if no key matches (not an error)

        Raises:
            StorageUnavailableError: If the credential store cannot be reached
        """
        api_key = await self.lookup(plain_key)
        if api_key is None:
            return None

        await self.touch(api_key)
        return api_key

    async def lookup(self, plain_key: str) -> Optional[ApiKey]:
        """Resolve a presented key without recording any usage."""
        return await self.store.find_by_hash(hash_api_key(plain_key))

    async def touch(self, api_key: ApiKey) -> None:
        """Record that api_key was just used."""
        used_at = utcnow()
        await self.store.update_last_used(api_key.id, used_at)
        api_key.last_used_at = used_at

    async def revoke(self, api_key_id: str) -> bool:
        """
        Permanently delete a key.

        Returns:
            True if a key was deleted, False if none existed
        """
        deleted = await self.store.delete(api_key_id)
        if deleted:
            logger.info(f"Revoked API key {api_key_id}")
        return deleted

    async def get(self, api_key_id: str) -> Optional[ApiKey]:
        return await self.store.get(api_key_id)

    async def list_for_user(self, user_id: str) -> list[ApiKey]:
        return await self.store.list_by_user(user_id)
