"""In-process backends for tests and single-host deployments.

One instance can be shared by several key stores to stand in for processes
sharing a remote service.
"""

from __future__ import annotations

import asyncio
import copy
import time
import uuid
from typing import Any, Dict, Optional, Tuple

from ..errors import VersionConflict
from ..models import KeyRecord
from .base import ConfigurationStore, KeyMetadataBackend, SecretVault, VersionedValue

_LOCK_POLL_INTERVAL = 0.05


class InMemoryKeyMetadataBackend(KeyMetadataBackend):
    """Dictionary-backed metadata store with an expiring lock table."""

    def __init__(self) -> None:
        self._keys: Dict[str, KeyRecord] = {}
        self._active_kid: Optional[str] = None
        self._locks: Dict[str, Tuple[str, float]] = {}
        self.calls: Dict[str, int] = {}

    def _count(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1

    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        self._count("get_key")
        return self._keys.get(kid)

    async def get_all_keys(self) -> list[KeyRecord]:
        self._count("get_all_keys")
        return list(self._keys.values())

    async def get_active_kid(self) -> Optional[str]:
        self._count("get_active_kid")
        return self._active_kid

    async def save_key(self, record: KeyRecord) -> None:
        self._count("save_key")
        self._keys[record.kid] = record

    async def set_active_kid(self, kid: str) -> None:
        self._count("set_active_kid")
        self._active_kid = kid

    async def delete_key(self, kid: str) -> None:
        self._count("delete_key")
        self._keys.pop(kid, None)

    def _try_lock(self, name: str, ttl: float) -> Optional[str]:
        now = time.monotonic()
        held = self._locks.get(name)
        if held is not None and held[1] > now:
            return None
        token = uuid.uuid4().hex
        self._locks[name] = (token, now + ttl)
        return token

    async def acquire_lock(self, name: str, ttl: float, wait: float) -> Optional[str]:
        deadline = time.monotonic() + wait
        while True:
            token = self._try_lock(name, ttl)
            if token is not None or time.monotonic() >= deadline:
                return token
            await asyncio.sleep(_LOCK_POLL_INTERVAL)

    async def release_lock(self, name: str, token: str) -> None:
        held = self._locks.get(name)
        if held is not None and held[0] == token:
            del self._locks[name]


class InMemorySecretVault(SecretVault):
    """Plain dictionary of secrets."""

    def __init__(self) -> None:
        self.secrets: Dict[str, str] = {}

    async def get_secret(self, name: str) -> Optional[str]:
        return self.secrets.get(name)

    async def set_secret(self, name: str, value: str) -> None:
        self.secrets[name] = value

    async def delete_secret(self, name: str) -> None:
        self.secrets.pop(name, None)


class InMemoryConfigurationStore(ConfigurationStore):
    """Versioned dictionary with check-and-set semantics."""

    def __init__(self) -> None:
        self._values: Dict[str, VersionedValue] = {}

    async def get(self, name: str) -> Optional[VersionedValue]:
        current = self._values.get(name)
        if current is None:
            return None
        return VersionedValue(copy.deepcopy(current.value), current.version)

    async def set(
        self, name: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        current = self._values.get(name)
        current_version = current.version if current else 0
        if expected_version is not None and expected_version != current_version:
            raise VersionConflict(name, expected_version)
        version = current_version + 1
        self._values[name] = VersionedValue(copy.deepcopy(value), version)
        return version

    async def delete(self, name: str) -> None:
        self._values.pop(name, None)
