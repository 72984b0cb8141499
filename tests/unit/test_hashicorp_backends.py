"""HashiCorp Vault backend tests against a fake hvac client."""

import pytest

from kidkeeper.backends.hashicorp import HvacConfigurationStore, HvacSecretVault
from kidkeeper.errors import VersionConflict
from kidkeeper.keystores.vault import VaultKeyStore


@pytest.mark.asyncio
async def test_secret_roundtrip_and_soft_delete(hvac_client):
    client = hvac_client
    vault = HvacSecretVault(client)

    assert await vault.get_secret("missing") is None
    await vault.set_secret("jwt-signing-key-abc", "pem-data")
    assert await vault.get_secret("jwt-signing-key-abc") == "pem-data"

    await vault.delete_secret("jwt-signing-key-abc")
    assert await vault.get_secret("jwt-signing-key-abc") is None
    # soft delete only marks the latest version deleted
    assert client.secrets.kv.v2.paths["jwt-signing-key-abc"] == [None]

    await vault.delete_secret("never-existed")


@pytest.mark.asyncio
async def test_config_store_versions_and_check_and_set(hvac_client):
    store = HvacConfigurationStore(hvac_client, prefix="jwt/")

    assert await store.get("active-kid") is None
    assert await store.set("active-kid", "k1", expected_version=0) == 1

    with pytest.raises(VersionConflict):
        await store.set("active-kid", "k2", expected_version=0)

    assert await store.set("active-kid", "k2", expected_version=1) == 2
    current = await store.get("active-kid")
    assert current.value == "k2"
    assert current.version == 2

    assert await store.set("all-keys", ["k1", "k2"]) == 1
    assert (await store.get("all-keys")).value == ["k1", "k2"]


@pytest.mark.asyncio
async def test_config_store_paths_use_prefix(hvac_client):
    client = hvac_client
    store = HvacConfigurationStore(client, prefix="jwt")
    await store.set("keys/abc", {"active": True})
    assert "jwt/keys/abc" in client.secrets.kv.v2.paths

    await store.delete("keys/abc")
    await store.delete("keys/abc")
    assert "jwt/keys/abc" not in client.secrets.kv.v2.paths


@pytest.mark.asyncio
async def test_vault_key_store_over_hvac(hvac_client, make_cache, fast_rotation):
    client = hvac_client
    store = VaultKeyStore(
        HvacSecretVault(client),
        HvacConfigurationStore(client, prefix="jwt"),
        cache=make_cache(),
        rotation=fast_rotation,
    )
    await store.start()
    first = await store.get_active_key()

    second = await store.create_and_activate_new_key()
    await store.retire_key(first.kid)

    keys = await store.get_all_keys()
    assert [k.kid for k in keys] == [second.kid]
    assert keys[0].active
    paths = client.secrets.kv.v2.paths
    assert paths[f"jwt-signing-key-{first.kid}"][-1] is None
    assert f"jwt/keys/{first.kid}" not in paths
