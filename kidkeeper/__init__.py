"""kidkeeper: rotating asymmetric signing keys for short-lived download tokens."""

from .errors import (
    KeyStoreError,
    NoActiveKey,
    RotationConflict,
    RotationInProgress,
    Unauthorized,
)
from .jwks import build_jwks, publish_jwks
from .keystores import (
    CachedDistributedKeyStore,
    InMemoryKeyStore,
    KeyStore,
    VaultKeyStore,
    get_key_store,
)
from .models import KeyRecord, ValidatedToken
from .tokens import KeyResolver, TokenIssuer, TokenValidator

__version__ = "0.1.0"
__all__ = [
    "KeyRecord",
    "ValidatedToken",
    "KeyStore",
    "InMemoryKeyStore",
    "CachedDistributedKeyStore",
    "VaultKeyStore",
    "get_key_store",
    "TokenIssuer",
    "TokenValidator",
    "KeyResolver",
    "build_jwks",
    "publish_jwks",
    "KeyStoreError",
    "NoActiveKey",
    "RotationConflict",
    "RotationInProgress",
    "Unauthorized",
]
