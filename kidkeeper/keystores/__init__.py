"""Key store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..cache import LocalCache
from ..config import KidkeeperConfig, load_config
from .base import KeyStore
from .distributed import CachedDistributedKeyStore
from .inmemory import InMemoryKeyStore
from .vault import VaultKeyStore


def get_key_store(
    backend: Optional[str] = None, config: Optional[KidkeeperConfig] = None
) -> KeyStore:
    """Factory function to get the configured key store.

    Call :meth:`KeyStore.start` (or use the store as an async context
    manager) before use; shared stores create their first key there.
    """

    config = config or load_config()
    store_config = config.keystore
    backend = (
        backend
        or os.getenv("KIDKEEPER_KEYSTORE")
        or store_config.backend
    ).lower()

    cache = LocalCache(
        ttl=store_config.cache.ttl_seconds,
        sliding=store_config.cache.sliding_seconds,
    )

    if backend == "inmemory":
        return InMemoryKeyStore(key_size=store_config.key_size)
    elif backend in ("distributed", "redis"):
        if backend == "redis":
            from ..backends.redis import RedisKeyMetadataBackend

            redis_conf = store_config.redis
            metadata_backend = RedisKeyMetadataBackend(
                host=redis_conf.host,
                port=redis_conf.port,
                db=redis_conf.db,
                password=redis_conf.password,
                prefix=redis_conf.prefix,
                socket_timeout=store_config.remote_timeout_seconds,
                key_passphrase=store_config.key_passphrase,
            )
        else:
            # single-host only: the "shared" state lives in this process
            from ..backends.inmemory import InMemoryKeyMetadataBackend

            metadata_backend = InMemoryKeyMetadataBackend()
        return CachedDistributedKeyStore(
            metadata_backend,
            cache=cache,
            rotation=store_config.rotation,
            key_size=store_config.key_size,
            remote_timeout=store_config.remote_timeout_seconds,
        )
    elif backend == "vault":
        from ..backends.hashicorp import (
            HvacConfigurationStore,
            HvacSecretVault,
            build_hvac_client,
        )

        vault_conf = store_config.vault
        client = build_hvac_client(vault_conf, timeout=store_config.remote_timeout_seconds)
        return VaultKeyStore(
            HvacSecretVault(client, mount_point=vault_conf.mount_point),
            HvacConfigurationStore(
                client, mount_point=vault_conf.mount_point, prefix=vault_conf.config_prefix
            ),
            cache=cache,
            rotation=store_config.rotation,
            key_size=store_config.key_size,
            secret_prefix=vault_conf.secret_prefix,
            key_passphrase=store_config.key_passphrase,
            remote_timeout=store_config.remote_timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported key store backend: {backend}")


__all__ = [
    "KeyStore",
    "InMemoryKeyStore",
    "CachedDistributedKeyStore",
    "VaultKeyStore",
    "get_key_store",
]
