"""Exception taxonomy for key lifecycle and token verification failures."""

from __future__ import annotations


class KeyStoreError(Exception):
    """Base class for key store failures."""


class NoActiveKey(KeyStoreError):
    """The store has no active key; indicates corrupted or uninitialised state."""


class KeyNotFound(KeyStoreError):
    """A lookup by ``kid`` found nothing."""

    def __init__(self, kid: str) -> None:
        super().__init__(f"Key {kid} not found")
        self.kid = kid


class RotationInProgress(KeyStoreError):
    """Another process holds the rotation lock. Retry later with backoff."""


class RotationConflict(KeyStoreError):
    """Optimistic rotation lost every attempt to a concurrent writer."""


class ActiveKeyRetirement(KeyStoreError):
    """Retiring the active key is refused; rotate first."""

    def __init__(self, kid: str) -> None:
        super().__init__(f"Key {kid} is active; rotate before retiring it")
        self.kid = kid


class BackendUnavailable(KeyStoreError):
    """A remote backend call failed or exceeded its timeout."""


class VersionConflict(KeyStoreError):
    """A conditional write was rejected because the stored version moved on."""

    def __init__(self, name: str, expected: int | None = None) -> None:
        super().__init__(f"Version conflict writing {name} (expected {expected})")
        self.name = name
        self.expected = expected


class Unauthorized(Exception):
    """Token verification failed.

    Subclasses record the reason for logging, but all of them render the
    same message so callers cannot tell the failure modes apart.
    """

    def __init__(self, reason: str = "unauthorized") -> None:
        super().__init__("unauthorized")
        self.reason = reason


class TokenExpired(Unauthorized):
    pass


class InvalidSignature(Unauthorized):
    pass


class UnknownSigningKey(Unauthorized):
    pass


class MalformedToken(Unauthorized):
    pass
