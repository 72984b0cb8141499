from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class CacheConfig(BaseModel):
    """Local cache settings. ``ttl_seconds=0`` disables caching."""

    ttl_seconds: float = 300.0
    sliding_seconds: float = 60.0


class RotationConfig(BaseModel):
    """Rotation contention settings."""

    lock_name: str = "key-rotation"
    lock_timeout_seconds: float = 10.0
    lock_ttl_seconds: float = 30.0
    max_attempts: int = 3
    backoff_base_seconds: float = 0.1


class RedisConfig(BaseModel):
    """Configuration for the Redis metadata backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "jwt:"


class VaultConfig(BaseModel):
    """Configuration for the HashiCorp Vault backed store."""

    url: str = "http://127.0.0.1:8200"
    token: Optional[str] = None
    namespace: Optional[str] = None
    mount_point: str = "secret"
    secret_prefix: str = "jwt-signing-key-"
    config_prefix: str = "jwt"


class JwtConfig(BaseModel):
    """Issuer/audience and lifetime settings for download tokens."""

    issuer: str = "kidkeeper"
    audience: str = "kidkeeper-downloads"
    algorithm: str = "RS256"
    leeway_seconds: int = 30
    default_ttl_minutes: int = 60


class KeyStoreConfig(BaseModel):
    """Key store selection and key generation settings."""

    backend: Literal["inmemory", "distributed", "redis", "vault"] = "inmemory"
    key_size: int = 2048
    key_passphrase: Optional[str] = None
    remote_timeout_seconds: float = 5.0
    cache: CacheConfig = CacheConfig()
    rotation: RotationConfig = RotationConfig()
    redis: RedisConfig = RedisConfig()
    vault: VaultConfig = VaultConfig()


class KidkeeperConfig(BaseModel):
    """Top-level configuration model."""

    keystore: KeyStoreConfig = KeyStoreConfig()
    jwt: JwtConfig = JwtConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> KidkeeperConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to KIDKEEPER_CONFIG env
            variable or 'kidkeeper.yaml' in the current directory.
    """

    config_path = path or os.getenv("KIDKEEPER_CONFIG", "kidkeeper.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = KidkeeperConfig(**data)
    else:
        config = KidkeeperConfig()

    backend = os.getenv("KIDKEEPER_KEYSTORE")
    if backend:
        config.keystore.backend = backend.lower()
    redis_host = os.getenv("KIDKEEPER_REDIS_HOST")
    if redis_host:
        config.keystore.redis.host = redis_host
    vault_url = os.getenv("KIDKEEPER_VAULT_URL")
    if vault_url:
        config.keystore.vault.url = vault_url
    vault_token = os.getenv("KIDKEEPER_VAULT_TOKEN") or os.getenv("VAULT_TOKEN")
    if vault_token:
        config.keystore.vault.token = vault_token
    return config
