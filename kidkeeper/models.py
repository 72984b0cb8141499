"""Data models shared by key stores and token services."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from pydantic import BaseModel, ConfigDict, Field


class KeyRecord(BaseModel):
    """A signing key pair identified by its ``kid``.

    Records are immutable; rotation produces an updated copy with
    ``active=False`` rather than mutating the stored instance.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kid: str
    private_key: RSAPrivateKey
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    active: bool = True

    @property
    def public_key(self) -> RSAPublicKey:
        return self.private_key.public_key()

    def deactivated(self) -> "KeyRecord":
        """Return a copy of this record marked inactive."""
        return self.model_copy(update={"active": False})

    def describe(self) -> Dict[str, Any]:
        """Public metadata only; never includes key material."""
        return {
            "kid": self.kid,
            "created_at": self.created_at.isoformat(),
            "active": self.active,
        }


class ValidatedToken(BaseModel):
    """Result of a successful token validation."""

    kid: str
    claims: Dict[str, Any] = Field(default_factory=dict)

    @property
    def email(self) -> Optional[str]:
        return self.claims.get("email")

    @property
    def file_path(self) -> Optional[str]:
        return self.claims.get("file")

    @property
    def expires_at(self) -> Optional[datetime]:
        exp = self.claims.get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(exp, tz=timezone.utc)
