"""Token issuance and verification against a key store.

Verification resolves the public key strictly by the ``kid`` in the token
header. Tokens are never tried against other keys, so any number of
historical keys can coexist and retiring a key revokes its tokens as soon
as the kid disappears from the store's listing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from .config import JwtConfig
from .errors import (
    InvalidSignature,
    MalformedToken,
    TokenExpired,
    Unauthorized,
    UnknownSigningKey,
)
from .keystores.base import KeyStore
from .models import ValidatedToken

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Signs tokens with the store's active key."""

    def __init__(self, key_store: KeyStore, config: Optional[JwtConfig] = None) -> None:
        self._key_store = key_store
        self.config = config or JwtConfig()

    async def issue(
        self, claims: Mapping[str, Any], ttl: Optional[timedelta] = None
    ) -> str:
        """Sign ``claims`` with the active key and stamp its ``kid`` in the header."""
        active = await self._key_store.get_active_key()
        now = datetime.now(timezone.utc)
        ttl = ttl or timedelta(minutes=self.config.default_ttl_minutes)
        payload = {
            **claims,
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
        }
        return jwt.encode(
            payload,
            active.private_key,
            algorithm=self.config.algorithm,
            headers={"kid": active.kid},
        )

    async def issue_download_token(
        self, email: str, file_path: str, ttl: Optional[timedelta] = None
    ) -> str:
        """Issue a token allowing ``email`` to download ``file_path``."""
        if not email or not email.strip() or not file_path or not file_path.strip():
            raise ValueError("Email and file path are required")
        return await self.issue({"email": email, "file": file_path}, ttl=ttl)


class KeyResolver:
    """Maps a token's ``kid`` to exactly one verification key."""

    def __init__(self, key_store: KeyStore) -> None:
        self._key_store = key_store

    async def snapshot(self) -> Dict[str, RSAPublicKey]:
        """Build a kid -> public key table from the store's current listing."""
        return {record.kid: record.public_key for record in await self._key_store.get_all_keys()}

    async def resolve(
        self, kid: Optional[str], snapshot: Optional[Dict[str, RSAPublicKey]] = None
    ) -> Optional[RSAPublicKey]:
        """Return the key named ``kid`` or ``None``.

        Pass ``snapshot`` to reuse one table across several tokens.
        """
        if not kid:
            return None
        if snapshot is None:
            snapshot = await self.snapshot()
        return snapshot.get(kid)


class TokenValidator:
    """Validates tokens issued by :class:`TokenIssuer`.

    Every failure raises a subclass of :class:`Unauthorized`; callers should
    catch the base class and must not report the reason to clients.
    """

    def __init__(
        self,
        key_store: KeyStore,
        config: Optional[JwtConfig] = None,
        resolver: Optional[KeyResolver] = None,
    ) -> None:
        self.config = config or JwtConfig()
        self.resolver = resolver or KeyResolver(key_store)

    async def validate(
        self, token: str, snapshot: Optional[Dict[str, RSAPublicKey]] = None
    ) -> ValidatedToken:
        try:
            return await self._validate(token, snapshot)
        except Unauthorized as exc:
            logger.debug(f"Token rejected: {exc.reason}")
            raise

    async def _validate(
        self, token: str, snapshot: Optional[Dict[str, RSAPublicKey]]
    ) -> ValidatedToken:
        if not token or not token.strip():
            raise MalformedToken("empty token")
        try:
            header = jwt.get_unverified_header(token)
        except jwt.exceptions.InvalidTokenError as exc:
            raise MalformedToken(f"unreadable header: {exc}") from exc

        kid = header.get("kid")
        key = await self.resolver.resolve(kid, snapshot)
        if key is None:
            raise UnknownSigningKey(f"no key for kid {kid!r}")

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
                leeway=self.config.leeway_seconds,
                options={"require": ["exp", "iat"]},
            )
        except jwt.exceptions.ExpiredSignatureError as exc:
            raise TokenExpired(f"token signed by {kid} expired") from exc
        except jwt.exceptions.InvalidSignatureError as exc:
            raise InvalidSignature(f"signature does not match key {kid}") from exc
        except jwt.exceptions.InvalidTokenError as exc:
            raise MalformedToken(str(exc)) from exc

        return ValidatedToken(kid=kid, claims=claims)
