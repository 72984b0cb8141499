"""Cache-fronted key store over a shared metadata backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..backends.base import KeyMetadataBackend
from ..cache import LocalCache
from ..config import RotationConfig
from ..crypto import DEFAULT_KEY_SIZE, generate_key_record
from ..errors import (
    ActiveKeyRetirement,
    BackendUnavailable,
    NoActiveKey,
    RotationInProgress,
)
from ..models import KeyRecord
from .base import KeyStore, bounded

logger = logging.getLogger(__name__)

ACTIVE_KID_CACHE_KEY = "jwt:active:kid"
ALL_KEYS_CACHE_KEY = "jwt:keys:all"


def _key_cache_key(kid: str) -> str:
    return f"jwt:key:{kid}"


class CachedDistributedKeyStore(KeyStore):
    """Key store shared by many processes through a remote backend.

    Reads go through a process-local :class:`LocalCache`; other processes'
    caches are never touched, so after a rotation or retirement elsewhere
    this process may serve stale keys for up to one cache TTL. Rotation is
    serialized fleet-wide by the backend's named lock.
    """

    def __init__(
        self,
        backend: KeyMetadataBackend,
        cache: Optional[LocalCache] = None,
        rotation: Optional[RotationConfig] = None,
        key_size: int = DEFAULT_KEY_SIZE,
        remote_timeout: Optional[float] = 5.0,
    ) -> None:
        self._backend = backend
        self._cache = cache if cache is not None else LocalCache()
        self._rotation = rotation or RotationConfig()
        self._key_size = key_size
        self._remote_timeout = remote_timeout

    @property
    def backend(self) -> KeyMetadataBackend:
        return self._backend

    async def start(self) -> None:
        await self._backend.connect()
        await self._ensure_initial_key()

    async def close(self) -> None:
        await self._backend.disconnect()

    # ------------------------------------------------------------------
    # Remote access
    async def _remote_active_kid(self) -> Optional[str]:
        return await bounded(
            self._backend.get_active_kid(), self._remote_timeout, "get_active_kid"
        )

    async def _remote_key(self, kid: str) -> Optional[KeyRecord]:
        return await bounded(self._backend.get_key(kid), self._remote_timeout, "get_key")

    async def _remote_all_keys(self) -> list[KeyRecord]:
        return await bounded(
            self._backend.get_all_keys(), self._remote_timeout, "get_all_keys"
        )

    async def _acquire_rotation_lock(self) -> Optional[str]:
        rotation = self._rotation
        # the lock wait is itself bounded, so allow it on top of the remote timeout
        timeout = rotation.lock_timeout_seconds + (self._remote_timeout or 0)
        return await bounded(
            self._backend.acquire_lock(
                rotation.lock_name,
                ttl=rotation.lock_ttl_seconds,
                wait=rotation.lock_timeout_seconds,
            ),
            timeout,
            "acquire_lock",
        )

    async def _release_rotation_lock(self, token: str) -> None:
        try:
            await bounded(
                self._backend.release_lock(self._rotation.lock_name, token),
                self._remote_timeout,
                "release_lock",
            )
        except BackendUnavailable as exc:
            logger.warning(
                f"Failed to release lock {self._rotation.lock_name}; "
                f"it expires after {self._rotation.lock_ttl_seconds}s: {exc}"
            )

    # ------------------------------------------------------------------
    # Cached reads
    async def _get_active_kid(self) -> Optional[str]:
        return await self._cache.get_or_create(ACTIVE_KID_CACHE_KEY, self._remote_active_kid)

    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        return await self._cache.get_or_create(
            _key_cache_key(kid), lambda: self._remote_key(kid)
        )

    async def get_active_key(self) -> KeyRecord:
        kid = await self._get_active_kid()
        if not kid:
            await self._ensure_initial_key()
            kid = await self._get_active_kid()
        if not kid:
            raise NoActiveKey("No active key found")

        record = await self.get_key(kid)
        if record is None:
            raise NoActiveKey(f"Active key {kid} not found")
        return record

    async def get_all_keys(self) -> list[KeyRecord]:
        keys = await self._cache.get_or_create(
            ALL_KEYS_CACHE_KEY,
            self._remote_all_keys,
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

    async def _install(self, new_key: KeyRecord) -> None:
        await bounded(self._backend.save_key(new_key), self._remote_timeout, "save_key")
        await bounded(
            self._backend.set_active_kid(new_key.kid), self._remote_timeout, "set_active_kid"
        )

    async def create_and_activate_new_key(self) -> KeyRecord:
        token = await self._acquire_rotation_lock()
        if token is None:
            raise RotationInProgress(
                "Another instance is currently rotating keys. Please try again."
            )

        try:
            new_key = await asyncio.to_thread(generate_key_record, self._key_size)

            # read through to the backend; the local cache may be stale
            current_kid = await self._remote_active_kid()
            if current_kid:
                current = await self._remote_key(current_kid)
                if current is not None and current.active:
                    await bounded(
                        self._backend.save_key(current.deactivated()),
                        self._remote_timeout,
                        "save_key",
                    )

            await self._install(new_key)
            self._invalidate(current_kid, new_key.kid)
        finally:
            await self._release_rotation_lock(token)

        logger.info(f"Key rotated successfully. New active key: {new_key.kid}")
        return new_key

    async def retire_key(self, kid: str) -> None:
        if kid == await self._remote_active_kid():
            raise ActiveKeyRetirement(kid)

        existing = await self._remote_key(kid)
        await bounded(self._backend.delete_key(kid), self._remote_timeout, "delete_key")
        self._invalidate(kid)
        if existing is not None:
            logger.info(f"Key retired: {kid}")

    async def _ensure_initial_key(self) -> None:
        """Install a first key if the backend has none.

        Safe to run from many processes at once: creation happens under the
        rotation lock and re-checks the backend once the lock is held.
        """
        if await self._remote_active_kid():
            return

        token = await self._acquire_rotation_lock()
        if token is None:
            if await self._remote_active_kid():
                return
            raise RotationInProgress("Initial key creation is in progress elsewhere")

        try:
            if await self._remote_active_kid():
                return
            logger.info("No active key found, creating initial key...")
            initial = await asyncio.to_thread(generate_key_record, self._key_size)
            await self._install(initial)
            self._invalidate(initial.kid)
        finally:
            await self._release_rotation_lock(token)

        logger.info(f"Initial key created: {initial.kid}")
