"""Base key store interface shared by all storage variants."""

from __future__ import annotations

import abc
import asyncio
from typing import Awaitable, Optional, TypeVar

from ..errors import BackendUnavailable
from ..models import KeyRecord

T = TypeVar("T")


class KeyStore(metaclass=abc.ABCMeta):
    """Abstract signing key store with rotation and retirement."""

    async def start(self) -> None:
        """Connect backends and ensure an initial key exists (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release backend connections (no-op by default)."""
        pass

    async def __aenter__(self) -> "KeyStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abc.abstractmethod
    async def get_active_key(self) -> KeyRecord:
        """Return the key used for new signatures.

        Raises:
            NoActiveKey: if the store holds no active key.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def get_all_keys(self) -> list[KeyRecord]:
        """Return every known key, active and inactive, in no particular order."""
        raise NotImplementedError

    @abc.abstractmethod
    async def create_and_activate_new_key(self) -> KeyRecord:
        """Generate a key, make it active and deactivate the previous one."""
        raise NotImplementedError

    @abc.abstractmethod
    async def retire_key(self, kid: str) -> None:
        """Permanently remove ``kid``. Unknown ids are ignored.

        Raises:
            ActiveKeyRetirement: if ``kid`` is the active key; rotate first.
        """
        raise NotImplementedError

    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        """Look up a single key by ``kid``."""
        for record in await self.get_all_keys():
            if record.kid == kid:
                return record
        return None


async def bounded(awaitable: Awaitable[T], timeout: Optional[float], op: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Raises:
        BackendUnavailable: if the call does not finish in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise BackendUnavailable(f"{op} timed out after {timeout}s") from exc
