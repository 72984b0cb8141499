"""Remote services backing the shared key stores."""

from .base import ConfigurationStore, KeyMetadataBackend, SecretVault, VersionedValue
from .inmemory import (
    InMemoryConfigurationStore,
    InMemoryKeyMetadataBackend,
    InMemorySecretVault,
)

__all__ = [
    "ConfigurationStore",
    "KeyMetadataBackend",
    "SecretVault",
    "VersionedValue",
    "InMemoryConfigurationStore",
    "InMemoryKeyMetadataBackend",
    "InMemorySecretVault",
]
