"""Contracts for the remote services the shared key stores build on."""

from __future__ import annotations

import abc
from typing import Any, NamedTuple, Optional

from ..models import KeyRecord


class KeyMetadataBackend(metaclass=abc.ABCMeta):
    """Shared key-value service holding key records and the active kid.

    Implementations must support a named lock with a bounded wait and an
    expiry so that a crashed holder cannot block rotation forever.
    """

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_all_keys(self) -> list[KeyRecord]:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_active_kid(self) -> Optional[str]:
        raise NotImplementedError

    @abc.abstractmethod
    async def save_key(self, record: KeyRecord) -> None:
        """Insert or overwrite ``record`` and register its kid."""
        raise NotImplementedError

    @abc.abstractmethod
    async def set_active_kid(self, kid: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_key(self, kid: str) -> None:
        """Remove ``kid``; absent ids are ignored."""
        raise NotImplementedError

    @abc.abstractmethod
    async def acquire_lock(self, name: str, ttl: float, wait: float) -> Optional[str]:
        """Try to take lock ``name`` for ``ttl`` seconds, waiting at most ``wait``.

        Returns:
            An opaque owner token, or ``None`` if the lock could not be taken.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def release_lock(self, name: str, token: str) -> None:
        """Release ``name`` if still held by ``token``."""
        raise NotImplementedError


class SecretVault(metaclass=abc.ABCMeta):
    """Secure storage for private key material."""

    @abc.abstractmethod
    async def get_secret(self, name: str) -> Optional[str]:
        raise NotImplementedError

    @abc.abstractmethod
    async def set_secret(self, name: str, value: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_secret(self, name: str) -> None:
        raise NotImplementedError


class VersionedValue(NamedTuple):
    """A configuration value together with the version it was read at."""

    value: Any
    version: int


class ConfigurationStore(metaclass=abc.ABCMeta):
    """Versioned key-value store supporting conditional writes.

    Versions start at 1 for the first write of a name. Passing
    ``expected_version=0`` to :meth:`set` means "only if absent".
    """

    @abc.abstractmethod
    async def get(self, name: str) -> Optional[VersionedValue]:
        raise NotImplementedError

    @abc.abstractmethod
    async def set(
        self, name: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        """Write ``value`` and return its new version.

        Raises:
            VersionConflict: if ``expected_version`` is given and does not
                match the stored version.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, name: str) -> None:
        raise NotImplementedError
