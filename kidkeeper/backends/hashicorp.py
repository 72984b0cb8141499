"""HashiCorp Vault KV v2 implementations of the secret vault and config store.

The hvac client is synchronous, so every call runs in a worker thread.
Conditional writes use the KV v2 ``cas`` parameter: Vault rejects a write
whose ``cas`` does not equal the current version of the secret, and
``cas=0`` only succeeds when the path does not exist yet.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

try:
    import hvac
    from hvac.exceptions import InvalidPath, InvalidRequest, VaultError
except ImportError:
    hvac = None

from requests.exceptions import RequestException

from ..config import VaultConfig
from ..errors import BackendUnavailable, VersionConflict
from .base import ConfigurationStore, SecretVault, VersionedValue

logger = logging.getLogger(__name__)


def build_hvac_client(config: VaultConfig, timeout: float = 5.0) -> Any:
    """Create an hvac client from ``config``."""
    if hvac is None:
        raise ImportError("hvac package is required for the vault key store")
    return hvac.Client(
        url=config.url,
        token=config.token,
        namespace=config.namespace,
        timeout=timeout,
    )


def _unavailable(op: str, path: str, exc: Exception) -> BackendUnavailable:
    return BackendUnavailable(f"Vault {op} of {path} failed: {exc}")


class _KV2Client:
    """Thin async wrapper over ``client.secrets.kv.v2``."""

    def __init__(self, client: Any, mount_point: str) -> None:
        if hvac is None:
            raise ImportError("hvac package is required for the vault key store")
        self._client = client
        self.mount_point = mount_point

    @property
    def _kv(self) -> Any:
        return self._client.secrets.kv.v2

    async def read(self, path: str) -> Optional[dict]:
        try:
            return await asyncio.to_thread(
                self._kv.read_secret_version,
                path=path,
                mount_point=self.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath:
            return None
        except (VaultError, RequestException) as exc:
            raise _unavailable("read", path, exc) from exc

    async def write(self, path: str, data: dict, cas: Optional[int] = None) -> dict:
        try:
            return await asyncio.to_thread(
                self._kv.create_or_update_secret,
                path=path,
                secret=data,
                cas=cas,
                mount_point=self.mount_point,
            )
        except InvalidRequest as exc:
            if "check-and-set" in str(exc):
                raise VersionConflict(path, cas) from exc
            raise _unavailable("write", path, exc) from exc
        except (VaultError, RequestException) as exc:
            raise _unavailable("write", path, exc) from exc

    async def soft_delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(
                self._kv.delete_latest_version_of_secret,
                path=path,
                mount_point=self.mount_point,
            )
        except InvalidPath:
            pass
        except (VaultError, RequestException) as exc:
            raise _unavailable("delete", path, exc) from exc

    async def destroy(self, path: str) -> None:
        try:
            await asyncio.to_thread(
                self._kv.delete_metadata_and_all_versions,
                path=path,
                mount_point=self.mount_point,
            )
        except InvalidPath:
            pass
        except (VaultError, RequestException) as exc:
            raise _unavailable("destroy", path, exc) from exc


class HvacSecretVault(SecretVault):
    """Private key material in Vault KV v2, one secret per key.

    Deletion is a soft delete of the latest version: the store can no longer
    read the material, while Vault operators can still undelete it for audit.
    """

    def __init__(self, client: Any, mount_point: str = "secret", path_prefix: str = "") -> None:
        self._kv = _KV2Client(client, mount_point)
        self.path_prefix = path_prefix

    def _path(self, name: str) -> str:
        return f"{self.path_prefix}{name}"

    async def get_secret(self, name: str) -> Optional[str]:
        response = await self._kv.read(self._path(name))
        if response is None:
            return None
        return response["data"]["data"].get("value")

    async def set_secret(self, name: str, value: str) -> None:
        await self._kv.write(self._path(name), {"value": value})

    async def delete_secret(self, name: str) -> None:
        await self._kv.soft_delete(self._path(name))
        logger.info(f"Soft-deleted vault secret {name}")


class HvacConfigurationStore(ConfigurationStore):
    """Versioned configuration values kept as KV v2 secrets under ``prefix``."""

    def __init__(self, client: Any, mount_point: str = "secret", prefix: str = "jwt") -> None:
        self._kv = _KV2Client(client, mount_point)
        self.prefix = prefix.rstrip("/")

    def _path(self, name: str) -> str:
        return f"{self.prefix}/{name}"

    async def get(self, name: str) -> Optional[VersionedValue]:
        response = await self._kv.read(self._path(name))
        if response is None:
            return None
        data = response["data"]
        return VersionedValue(data["data"].get("value"), int(data["metadata"]["version"]))

    async def set(
        self, name: str, value: Any, expected_version: Optional[int] = None
    ) -> int:
        response = await self._kv.write(self._path(name), {"value": value}, cas=expected_version)
        return int(response["data"]["version"])

    async def delete(self, name: str) -> None:
        await self._kv.destroy(self._path(name))
