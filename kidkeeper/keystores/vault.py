"""Key store splitting private material from metadata.

Private keys live in a :class:`SecretVault`; the active kid, the kid list
and per-key metadata live in a versioned :class:`ConfigurationStore`.
Rotation relies on conditional writes of the active kid instead of a lock.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..backends.base import ConfigurationStore, SecretVault
from ..cache import LocalCache
from ..config import RotationConfig
from ..crypto import (
    DEFAULT_KEY_SIZE,
    generate_key_record,
    private_key_from_pem,
    private_key_to_pem,
)
from ..errors import (
    ActiveKeyRetirement,
    BackendUnavailable,
    NoActiveKey,
    RotationConflict,
    VersionConflict,
)
from ..models import KeyRecord
from ..utils.retry import schedule_retry
from .base import KeyStore, bounded

logger = logging.getLogger(__name__)

ACTIVE_KID_NAME = "active-kid"
ALL_KEYS_NAME = "all-keys"

# check-and-set attempts for a single kid list edit
KID_LIST_ATTEMPTS = 10

ACTIVE_KID_CACHE_KEY = "jwt:active:kid"
ALL_KEYS_CACHE_KEY = "jwt:keys:all"


def _metadata_name(kid: str) -> str:
    return f"keys/{kid}"


def _key_cache_key(kid: str) -> str:
    return f"jwt:key:{kid}"


class VaultKeyStore(KeyStore):
    """Vault-backed key store using optimistic concurrency.

    The ``active`` flag on returned records is derived from the active kid
    pointer, so a listing shows exactly one active key even while a losing
    rotation attempt is being cleaned up.
    """

    def __init__(
        self,
        vault: SecretVault,
        config_store: ConfigurationStore,
        cache: Optional[LocalCache] = None,
        rotation: Optional[RotationConfig] = None,
        key_size: int = DEFAULT_KEY_SIZE,
        secret_prefix: str = "jwt-signing-key-",
        key_passphrase: Optional[str] = None,
        remote_timeout: Optional[float] = 5.0,
    ) -> None:
        self._vault = vault
        self._config = config_store
        self._cache = cache if cache is not None else LocalCache()
        self._rotation = rotation or RotationConfig()
        self._key_size = key_size
        self._secret_prefix = secret_prefix
        self._passphrase = key_passphrase
        self._remote_timeout = remote_timeout

    def secret_name(self, kid: str) -> str:
        return f"{self._secret_prefix}{kid}"

    async def start(self) -> None:
        await self._ensure_initial_key()

    # ------------------------------------------------------------------
    # Remote access
    async def _read_config(self, name: str):
        return await bounded(self._config.get(name), self._remote_timeout, f"read {name}")

    async def _write_config(
        self, name: str, value, expected_version: Optional[int] = None
    ) -> int:
        return await bounded(
            self._config.set(name, value, expected_version=expected_version),
            self._remote_timeout,
            f"write {name}",
        )

    async def _remote_active_kid(self) -> Optional[str]:
        current = await self._read_config(ACTIVE_KID_NAME)
        return current.value if current else None

    async def _load_key(self, kid: str) -> Optional[KeyRecord]:
        pem = await bounded(
            self._vault.get_secret(self.secret_name(kid)),
            self._remote_timeout,
            f"read secret for {kid}",
        )
        if pem is None:
            return None
        metadata = await self._read_config(_metadata_name(kid))
        meta = metadata.value if metadata else {}
        created_at = meta.get("created_at") or datetime.now(timezone.utc)
        return KeyRecord(
            kid=kid,
            private_key=private_key_from_pem(pem, self._passphrase),
            created_at=created_at,
            active=bool(meta.get("active", False)),
        )

    async def _load_all_keys(self) -> list[KeyRecord]:
        listing = await self._read_config(ALL_KEYS_NAME)
        kids = list(listing.value or []) if listing else []
        active_kid = await self._remote_active_kid()
        records = await asyncio.gather(*(self._get_key(kid) for kid in kids))
        keys = []
        for kid, record in zip(kids, records):
            if record is None:
                logger.warning(f"Failed to retrieve key {kid}")
                continue
            keys.append(record.model_copy(update={"active": kid == active_kid}))
        return keys

    # ------------------------------------------------------------------
    # Cached reads
    async def _get_active_kid(self) -> Optional[str]:
        return await self._cache.get_or_create(ACTIVE_KID_CACHE_KEY, self._remote_active_kid)

    async def _get_key(self, kid: str) -> Optional[KeyRecord]:
        return await self._cache.get_or_create(_key_cache_key(kid), lambda: self._load_key(kid))

    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        record = await self._get_key(kid)
        if record is None:
            return None
        active_kid = await self._get_active_kid()
        return record.model_copy(update={"active": kid == active_kid})

    async def get_active_key(self) -> KeyRecord:
        kid = await self._get_active_kid()
        if not kid:
            await self._ensure_initial_key()
            kid = await self._get_active_kid()
        if not kid:
            raise NoActiveKey("No active key found")

        record = await self._get_key(kid)
        if record is None:
            raise NoActiveKey(f"Active key {kid} not found")
        return record.model_copy(update={"active": True})

    async def get_all_keys(self) -> list[KeyRecord]:
        keys = await self._cache.get_or_create(
            ALL_KEYS_CACHE_KEY,
            self._load_all_keys,
            fallback_errors=(BackendUnavailable,),
        )
        return list(keys)

    # ------------------------------------------------------------------
    # Mutations
    def _invalidate(self, *kids: Optional[str]) -> None:
        self._cache.invalidate(
            ACTIVE_KID_CACHE_KEY,
            ALL_KEYS_CACHE_KEY,
            *(_key_cache_key(kid) for kid in kids if kid),
        )

    async def _update_kid_list(self, change: Callable[[list[str]], list[str]]) -> None:
        """Apply ``change`` to the kid list with check-and-set retries."""
        for attempt in range(KID_LIST_ATTEMPTS):
            listing = await self._read_config(ALL_KEYS_NAME)
            kids = list(listing.value or []) if listing else []
            updated = change(kids)
            if updated == kids:
                return
            try:
                await self._write_config(
                    ALL_KEYS_NAME, updated, expected_version=listing.version if listing else 0
                )
                return
            except VersionConflict:
                logger.warning(f"Concurrent update of key list, retrying... Attempt {attempt + 1}")
                await schedule_retry(min(attempt, 3), base=self._rotation.backoff_base_seconds)
        raise RotationConflict("Could not update the key list after retries")

    async def _write_metadata(self, record: KeyRecord, active: bool) -> None:
        await self._write_config(
            _metadata_name(record.kid),
            {"created_at": record.created_at.isoformat(), "active": active},
        )

    async def _set_metadata_active(self, kid: str, active: bool) -> None:
        metadata = await self._read_config(_metadata_name(kid))
        if metadata is None:
            return
        await self._write_config(_metadata_name(kid), {**metadata.value, "active": active})

    async def _discard(self, kid: str) -> None:
        await self._update_kid_list(lambda kids: [k for k in kids if k != kid])
        await bounded(self._config.delete(_metadata_name(kid)), self._remote_timeout, "delete metadata")
        await bounded(self._vault.delete_secret(self.secret_name(kid)), self._remote_timeout, "delete secret")

    async def _publish(self, expected_version: int) -> KeyRecord:
        """Create a key and make it active if the pointer is still at ``expected_version``.

        Raises:
            VersionConflict: another process moved the pointer first; the
                new key has been removed again.
        """
        new_key = await asyncio.to_thread(generate_key_record, self._key_size)
        await bounded(
            self._vault.set_secret(
                self.secret_name(new_key.kid),
                private_key_to_pem(new_key.private_key, self._passphrase),
            ),
            self._remote_timeout,
            "write secret",
        )
        await self._update_kid_list(lambda kids: kids + [new_key.kid])
        await self._write_metadata(new_key, active=True)

        try:
            await self._write_config(ACTIVE_KID_NAME, new_key.kid, expected_version=expected_version)
        except VersionConflict:
            await self._discard(new_key.kid)
            raise
        return new_key

    async def create_and_activate_new_key(self) -> KeyRecord:
        attempts = self._rotation.max_attempts
        for attempt in range(attempts):
            current = await self._read_config(ACTIVE_KID_NAME)
            current_kid = current.value if current else None
            try:
                new_key = await self._publish(current.version if current else 0)
            except VersionConflict as exc:
                if attempt == attempts - 1:
                    raise RotationConflict(
                        "Another instance is currently rotating keys. Please try again."
                    ) from exc
                logger.warning(f"Concurrent key rotation detected, retrying... Attempt {attempt + 1}")
                await schedule_retry(attempt, base=self._rotation.backoff_base_seconds)
                continue

            if current_kid:
                await self._set_metadata_active(current_kid, False)
            self._invalidate(current_kid, new_key.kid)
            logger.info(f"Key rotated successfully. New active key: {new_key.kid}")
            return new_key

        raise RotationConflict("Failed to rotate key after retries")

    async def retire_key(self, kid: str) -> None:
        if kid == await self._remote_active_kid():
            raise ActiveKeyRetirement(kid)

        listing = await self._read_config(ALL_KEYS_NAME)
        known = listing is not None and kid in (listing.value or [])
        await self._discard(kid)
        self._invalidate(kid)
        if known:
            logger.info(f"Key retired: {kid}")

    async def _ensure_initial_key(self) -> None:
        """Publish a first key if none is active.

        Concurrent callers race on a create-only conditional write; losers
        clean up their candidate and observe the winner on the next read.
        """
        current = await self._read_config(ACTIVE_KID_NAME)
        if current is not None and current.value:
            return

        logger.info("No active key found, creating initial key...")
        try:
            initial = await self._publish(current.version if current else 0)
        except VersionConflict:
            logger.info("Initial key was published by another instance")
            return
        finally:
            self._invalidate()
        logger.info(f"Initial key created: {initial.kid}")
