"""Vault-backed key store tests."""

import asyncio

import pytest

from kidkeeper.backends.inmemory import InMemoryConfigurationStore
from kidkeeper.config import RotationConfig
from kidkeeper.errors import (
    ActiveKeyRetirement,
    BackendUnavailable,
    RotationConflict,
    VersionConflict,
)
from kidkeeper.keystores.vault import ACTIVE_KID_NAME, ALL_KEYS_NAME, VaultKeyStore


class ContendedConfigurationStore(InMemoryConfigurationStore):
    """Rejects the next ``conflicts`` conditional writes of the active kid."""

    def __init__(self, conflicts: int = 0) -> None:
        super().__init__()
        self.conflicts = conflicts
        self.rejected = 0

    async def set(self, name, value, expected_version=None):
        if name == ACTIVE_KID_NAME and expected_version is not None and self.conflicts:
            self.conflicts -= 1
            self.rejected += 1
            raise VersionConflict(name, expected_version)
        return await super().set(name, value, expected_version)


class UnreachableConfigurationStore(InMemoryConfigurationStore):
    """Configuration store that can be switched into an outage."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    async def get(self, name):
        if self.down:
            raise BackendUnavailable("config store is down")
        return await super().get(name)


def make_store(vault, config_store, make_cache, fast_rotation, **cache_kwargs):
    return VaultKeyStore(
        vault,
        config_store,
        cache=make_cache(**cache_kwargs),
        rotation=fast_rotation,
        remote_timeout=1.0,
    )


@pytest.mark.asyncio
async def test_start_publishes_initial_key(secret_vault, config_store, make_cache, fast_rotation):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()

    active = await store.get_active_key()
    assert active.active
    assert (await config_store.get(ACTIVE_KID_NAME)).value == active.kid
    assert (await config_store.get(ALL_KEYS_NAME)).value == [active.kid]
    assert store.secret_name(active.kid) in secret_vault.secrets


@pytest.mark.asyncio
async def test_start_is_idempotent(secret_vault, config_store, make_cache, fast_rotation):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    await store.start()
    assert len(await store.get_all_keys()) == 1
    assert len(secret_vault.secrets) == 1


@pytest.mark.asyncio
async def test_concurrent_start_publishes_one_key(
    secret_vault, config_store, make_cache, fast_rotation
):
    stores = [
        make_store(secret_vault, config_store, make_cache, fast_rotation) for _ in range(3)
    ]

    await asyncio.gather(*(s.start() for s in stores))

    active_kids = {(await s.get_active_key()).kid for s in stores}
    assert len(active_kids) == 1
    assert (await config_store.get(ALL_KEYS_NAME)).value == list(active_kids)
    assert len(secret_vault.secrets) == 1


@pytest.mark.asyncio
async def test_rotation_keeps_old_key_inactive(
    secret_vault, config_store, make_cache, fast_rotation
):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    old = await store.get_active_key()

    new = await store.create_and_activate_new_key()

    keys = {k.kid: k for k in await store.get_all_keys()}
    assert set(keys) == {old.kid, new.kid}
    assert keys[new.kid].active and not keys[old.kid].active
    assert (await config_store.get(f"keys/{old.kid}")).value["active"] is False
    assert (await config_store.get(f"keys/{new.kid}")).value["active"] is True
    assert keys[old.kid].created_at == old.created_at


@pytest.mark.asyncio
async def test_rotation_retries_after_conflict(secret_vault, make_cache, fast_rotation):
    config_store = ContendedConfigurationStore()
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    config_store.conflicts = 2

    new = await store.create_and_activate_new_key()

    assert config_store.rejected == 2
    keys = await store.get_all_keys()
    assert len(keys) == 2
    assert [k.kid for k in keys if k.active] == [new.kid]
    # losing attempts leave nothing behind
    assert len(secret_vault.secrets) == 2


@pytest.mark.asyncio
async def test_rotation_gives_up_after_max_attempts(secret_vault, make_cache):
    config_store = ContendedConfigurationStore()
    rotation = RotationConfig(max_attempts=3, backoff_base_seconds=0.001)
    store = make_store(secret_vault, config_store, make_cache, rotation)
    await store.start()
    initial = await store.get_active_key()
    config_store.conflicts = 3

    with pytest.raises(RotationConflict):
        await store.create_and_activate_new_key()

    assert config_store.rejected == 3
    assert (await store.get_active_key()).kid == initial.kid
    assert (await config_store.get(ALL_KEYS_NAME)).value == [initial.kid]
    assert list(secret_vault.secrets) == [store.secret_name(initial.kid)]


@pytest.mark.asyncio
async def test_concurrent_rotations_leave_one_active(
    secret_vault, config_store, make_cache, fast_rotation
):
    a = make_store(secret_vault, config_store, make_cache, fast_rotation)
    b = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await a.start()

    results = await asyncio.gather(
        a.create_and_activate_new_key(),
        b.create_and_activate_new_key(),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    assert all(isinstance(r, RotationConflict) for r in results if isinstance(r, Exception))
    keys = await b.get_all_keys()
    assert len(keys) == 1 + len(winners)
    assert sum(k.active for k in keys) == 1


@pytest.mark.asyncio
async def test_retirement_removes_metadata_and_secret(
    secret_vault, config_store, make_cache, fast_rotation
):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    old = await store.get_active_key()
    await store.create_and_activate_new_key()

    await store.retire_key(old.kid)
    await store.retire_key(old.kid)

    assert old.kid not in {k.kid for k in await store.get_all_keys()}
    assert await store.get_key(old.kid) is None
    assert await config_store.get(f"keys/{old.kid}") is None
    assert store.secret_name(old.kid) not in secret_vault.secrets


@pytest.mark.asyncio
async def test_retiring_active_key_is_refused(
    secret_vault, config_store, make_cache, fast_rotation
):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    with pytest.raises(ActiveKeyRetirement):
        await store.retire_key((await store.get_active_key()).kid)


@pytest.mark.asyncio
async def test_listing_counts_after_rotations_and_retirements(
    secret_vault, config_store, make_cache, fast_rotation
):
    store = make_store(secret_vault, config_store, make_cache, fast_rotation, ttl=0)
    await store.start()
    initial = await store.get_active_key()
    rotated = [await store.create_and_activate_new_key() for _ in range(3)]
    for kid in (initial.kid, rotated[0].kid):
        await store.retire_key(kid)

    keys = await store.get_all_keys()
    assert len(keys) == 3 + 1 - 2
    assert [k.kid for k in keys if k.active] == [rotated[-1].kid]


@pytest.mark.asyncio
async def test_passphrase_encrypts_stored_material(
    secret_vault, config_store, make_cache, fast_rotation
):
    store = VaultKeyStore(
        secret_vault,
        config_store,
        cache=make_cache(ttl=0),
        rotation=fast_rotation,
        key_passphrase="s3cret",
    )
    await store.start()
    active = await store.get_active_key()

    pem = secret_vault.secrets[store.secret_name(active.kid)]
    assert "ENCRYPTED" in pem
    assert active.public_key.public_numbers() == (
        await store.get_key(active.kid)
    ).public_key.public_numbers()


@pytest.mark.asyncio
async def test_listing_falls_back_to_stale_cache_but_issuance_does_not(
    secret_vault, make_cache, fast_rotation, clock
):
    config_store = UnreachableConfigurationStore()
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    await store.create_and_activate_new_key()
    known = await store.get_all_keys()
    await store.get_active_key()

    clock.advance(90)  # past the sliding window, inside the TTL
    config_store.down = True

    assert [k.kid for k in await store.get_all_keys()] == [k.kid for k in known]
    with pytest.raises(BackendUnavailable):
        await store.get_active_key()


@pytest.mark.asyncio
async def test_listing_outage_without_cache_raises(secret_vault, make_cache, fast_rotation):
    config_store = UnreachableConfigurationStore()
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    config_store.down = True

    with pytest.raises(BackendUnavailable):
        await store.get_all_keys()


@pytest.mark.asyncio
async def test_cached_reads_skip_config_store(secret_vault, make_cache, fast_rotation):
    config_store = UnreachableConfigurationStore()
    store = make_store(secret_vault, config_store, make_cache, fast_rotation)
    await store.start()
    await store.get_active_key()
    await store.get_all_keys()

    config_store.down = True

    for _ in range(3):
        await store.get_active_key()
        await store.get_all_keys()


@pytest.mark.asyncio
async def test_other_instance_sees_rotation_after_ttl(
    secret_vault, config_store, make_cache, fast_rotation, clock
):
    a = make_store(secret_vault, config_store, make_cache, fast_rotation, sliding=None)
    b = make_store(secret_vault, config_store, make_cache, fast_rotation, sliding=None)
    await a.start()
    first = await b.get_active_key()
    assert [k.kid for k in await b.get_all_keys()] == [first.kid]

    rotated = await a.create_and_activate_new_key()

    # b keeps serving its cached view
    assert (await b.get_active_key()).kid == first.kid
    assert [k.kid for k in await b.get_all_keys()] == [first.kid]

    clock.advance(301)
    assert (await b.get_active_key()).kid == rotated.kid
    keys = {k.kid: k.active for k in await b.get_all_keys()}
    assert keys == {first.kid: False, rotated.kid: True}
