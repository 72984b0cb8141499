"""RSA key material helpers: generation, PEM encoding and JWK export."""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .models import KeyRecord

DEFAULT_KEY_SIZE = 2048


def new_kid() -> str:
    """Return a fresh opaque key identifier."""
    return uuid.uuid4().hex


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_key_record(key_size: int = DEFAULT_KEY_SIZE) -> KeyRecord:
    """Generate a new active key record with a fresh ``kid``."""
    return KeyRecord(kid=new_kid(), private_key=generate_private_key(key_size))


def private_key_to_pem(key: RSAPrivateKey, passphrase: Optional[str] = None) -> str:
    encryption: serialization.KeySerializationEncryption
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode())
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    ).decode("ascii")


def private_key_from_pem(pem: str, passphrase: Optional[str] = None) -> RSAPrivateKey:
    key = serialization.load_pem_private_key(
        pem.encode("ascii"),
        password=passphrase.encode() if passphrase else None,
    )
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("Only RSA signing keys are supported")
    return key


def public_jwk(
    public_key: RSAPublicKey, kid: str, algorithm: str = "RS256"
) -> Dict[str, Any]:
    """Export ``public_key`` as a JWK dict tagged with ``kid``."""
    jwk_dict = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(public_key))
    jwk_dict["kid"] = kid
    jwk_dict["use"] = "sig"
    jwk_dict["alg"] = algorithm
    return jwk_dict


def dump_record(record: KeyRecord, passphrase: Optional[str] = None) -> str:
    """Serialize ``record`` including private material to JSON."""
    data = record.describe()
    data["private_key"] = private_key_to_pem(record.private_key, passphrase)
    return json.dumps(data)


def load_record(data: str, passphrase: Optional[str] = None) -> KeyRecord:
    """Inverse of :func:`dump_record`."""
    raw = json.loads(data)
    return KeyRecord(
        kid=raw["kid"],
        private_key=private_key_from_pem(raw["private_key"], passphrase),
        created_at=raw["created_at"],
        active=raw["active"],
    )
