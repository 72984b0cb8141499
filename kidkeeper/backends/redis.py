"""Redis metadata backend for key stores shared across processes."""

from __future__ import annotations

import contextlib
import logging
import uuid
from typing import Any, Dict, Iterator, Optional

try:
    import redis.asyncio as redis
    from redis.exceptions import LockError, RedisError
except ImportError:
    redis = None

from ..crypto import dump_record, load_record
from ..errors import BackendUnavailable
from ..models import KeyRecord
from .base import KeyMetadataBackend

logger = logging.getLogger(__name__)


class RedisKeyMetadataBackend(KeyMetadataBackend):
    """Stores each record as a JSON string and tracks kids in a Redis set.

    Layout (with the default ``jwt:`` prefix)::

        jwt:key:<kid>     serialized record
        jwt:keys:set      set of known kids
        jwt:active:kid    active kid
        jwt:lock:<name>   rotation lock
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "jwt:",
        socket_timeout: Optional[float] = 5.0,
        key_passphrase: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisKeyMetadataBackend")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self.socket_timeout = socket_timeout
        self._passphrase = key_passphrase
        self._redis: Optional[Any] = None
        self._locks: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Key layout
    def _key_name(self, kid: str) -> str:
        return f"{self.prefix}key:{kid}"

    @property
    def _kid_set_name(self) -> str:
        return f"{self.prefix}keys:set"

    @property
    def _active_kid_name(self) -> str:
        return f"{self.prefix}active:kid"

    def _lock_name(self, name: str) -> str:
        return f"{self.prefix}lock:{name}"

    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _translate_errors(self, op: str) -> Iterator[None]:
        try:
            yield
        except RedisError as exc:
            raise BackendUnavailable(f"Redis {op} failed: {exc}") from exc

    def _load(self, data: str) -> KeyRecord:
        try:
            return load_record(data, self._passphrase)
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendUnavailable(f"Redis key record could not be decoded: {exc}") from exc

    async def _client(self) -> Any:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
            decode_responses=True,
        )
        with self._translate_errors("ping"):
            await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    async def get_key(self, kid: str) -> Optional[KeyRecord]:
        client = await self._client()
        with self._translate_errors("get_key"):
            data = await client.get(self._key_name(kid))
        if not data:
            return None
        return self._load(data)

    async def get_all_keys(self) -> list[KeyRecord]:
        client = await self._client()
        with self._translate_errors("get_all_keys"):
            kids = sorted(await client.smembers(self._kid_set_name))
            if not kids:
                return []
            values = await client.mget([self._key_name(kid) for kid in kids])
        # a kid whose record vanished between the two reads is simply skipped
        return [self._load(value) for value in values if value]

    async def get_active_kid(self) -> Optional[str]:
        client = await self._client()
        with self._translate_errors("get_active_kid"):
            return await client.get(self._active_kid_name)

    async def save_key(self, record: KeyRecord) -> None:
        client = await self._client()
        payload = dump_record(record, self._passphrase)
        with self._translate_errors("save_key"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(self._key_name(record.kid), payload)
                pipe.sadd(self._kid_set_name, record.kid)
                await pipe.execute()

    async def set_active_kid(self, kid: str) -> None:
        client = await self._client()
        with self._translate_errors("set_active_kid"):
            await client.set(self._active_kid_name, kid)

    async def delete_key(self, kid: str) -> None:
        client = await self._client()
        with self._translate_errors("delete_key"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(self._key_name(kid))
                pipe.srem(self._kid_set_name, kid)
                await pipe.execute()

    # ------------------------------------------------------------------
    async def acquire_lock(self, name: str, ttl: float, wait: float) -> Optional[str]:
        client = await self._client()
        lock = client.lock(
            self._lock_name(name),
            timeout=ttl,
            blocking=wait > 0,
            blocking_timeout=wait,
            thread_local=False,
        )
        token = uuid.uuid4().hex
        with self._translate_errors("acquire_lock"):
            acquired = await lock.acquire(token=token)
        if not acquired:
            return None
        self._locks[token] = lock
        return token

    async def release_lock(self, name: str, token: str) -> None:
        lock = self._locks.pop(token, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockError as exc:
            # expired and possibly re-acquired by someone else; nothing to undo
            logger.warning(f"Lock {name} was no longer held at release: {exc}")
        except RedisError as exc:
            raise BackendUnavailable(f"Redis release_lock failed: {exc}") from exc
