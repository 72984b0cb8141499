"""Single-process key store."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from ..crypto import DEFAULT_KEY_SIZE, generate_key_record
from ..errors import ActiveKeyRetirement, NoActiveKey
from ..models import KeyRecord
from .base import KeyStore

logger = logging.getLogger(__name__)


class InMemoryKeyStore(KeyStore):
    """Keep keys in local memory.

    The only variant where initialisation is unconditionally safe: the state
    lives in exactly one place, so the constructor simply creates the first
    key. Keys do not survive a restart.
    """

    def __init__(self, key_size: int = DEFAULT_KEY_SIZE) -> None:
        self._key_size = key_size
        self._lock = asyncio.Lock()
        initial = generate_key_record(key_size)
        self._keys: Dict[str, KeyRecord] = {initial.kid: initial}
        self._active_kid: Optional[str] = initial.kid
        logger.info(f"Initial signing key created: {initial.kid}")

    async def get_active_key(self) -> KeyRecord:
        kid = self._active_kid
        record = self._keys.get(kid) if kid else None
        if record is None:
            raise NoActiveKey("No active key found")
        return record

    async def get_all_keys(self) -> list[KeyRecord]:
        return list(self._keys.values())

    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        return self._keys.get(kid)

    async def create_and_activate_new_key(self) -> KeyRecord:
        new_key = await asyncio.to_thread(generate_key_record, self._key_size)
        async with self._lock:
            old = self._keys.get(self._active_kid) if self._active_kid else None
            # replace rather than mutate so readers holding a snapshot stay consistent
            keys = dict(self._keys)
            if old is not None:
                keys[old.kid] = old.deactivated()
            keys[new_key.kid] = new_key
            self._keys = keys
            self._active_kid = new_key.kid
        logger.info(f"Key rotated successfully. New active key: {new_key.kid}")
        return new_key

    async def retire_key(self, kid: str) -> None:
        async with self._lock:
            if kid not in self._keys:
                return
            if kid == self._active_kid:
                raise ActiveKeyRetirement(kid)
            keys = dict(self._keys)
            del keys[kid]
            self._keys = keys
        logger.info(f"Key retired: {kid}")
