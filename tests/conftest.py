"""Shared test helpers."""

from types import SimpleNamespace

import pytest
from hvac.exceptions import InvalidPath, InvalidRequest

from kidkeeper.backends.inmemory import (
    InMemoryConfigurationStore,
    InMemoryKeyMetadataBackend,
    InMemorySecretVault,
)
from kidkeeper.cache import LocalCache
from kidkeeper.config import RotationConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeKV2:
    """Mimics the subset of ``hvac`` KV v2 calls used by the vault backends."""

    def __init__(self) -> None:
        self.paths: dict[str, list] = {}

    def read_secret_version(self, path, mount_point="secret", raise_on_deleted_version=None):
        versions = self.paths.get(path)
        if not versions or versions[-1] is None:
            raise InvalidPath(f"no secret at {path}")
        return {
            "data": {
                "data": dict(versions[-1]),
                "metadata": {"version": len(versions)},
            }
        }

    def create_or_update_secret(self, path, secret, cas=None, mount_point="secret"):
        current = len(self.paths.get(path, []))
        if cas is not None and cas != current:
            raise InvalidRequest("check-and-set parameter did not match the current version")
        versions = self.paths.setdefault(path, [])
        versions.append(dict(secret))
        return {"data": {"version": len(versions)}}

    def delete_latest_version_of_secret(self, path, mount_point="secret"):
        versions = self.paths.get(path)
        if not versions:
            raise InvalidPath(f"no secret at {path}")
        versions[-1] = None

    def delete_metadata_and_all_versions(self, path, mount_point="secret"):
        if path not in self.paths:
            raise InvalidPath(f"no secret at {path}")
        del self.paths[path]


@pytest.fixture
def hvac_client() -> SimpleNamespace:
    return SimpleNamespace(secrets=SimpleNamespace(kv=SimpleNamespace(v2=FakeKV2())))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_rotation():
    return RotationConfig(lock_timeout_seconds=2.0, backoff_base_seconds=0.001)


@pytest.fixture
def metadata_backend():
    return InMemoryKeyMetadataBackend()


@pytest.fixture
def secret_vault():
    return InMemorySecretVault()


@pytest.fixture
def config_store():
    return InMemoryConfigurationStore()


@pytest.fixture
def make_cache(clock):
    def factory(ttl: float = 300.0, sliding: float = 60.0) -> LocalCache:
        return LocalCache(ttl=ttl, sliding=sliding, clock=clock)

    return factory
