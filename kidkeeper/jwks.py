"""JSON Web Key Set publication of verification keys."""

from __future__ import annotations

from typing import Any, Dict, Iterable

from .crypto import public_jwk
from .keystores.base import KeyStore
from .models import KeyRecord


def build_jwks(records: Iterable[KeyRecord], algorithm: str = "RS256") -> Dict[str, Any]:
    """Return a JWKS document with the public half of every record."""
    return {"keys": [public_jwk(r.public_key, r.kid, algorithm) for r in records]}


async def publish_jwks(key_store: KeyStore, algorithm: str = "RS256") -> Dict[str, Any]:
    """Build the JWKS for every key currently known to ``key_store``."""
    return build_jwks(await key_store.get_all_keys(), algorithm)
