import json

import jwt
import pytest

from kidkeeper.jwks import build_jwks, publish_jwks
from kidkeeper.keystores.inmemory import InMemoryKeyStore
from kidkeeper.tokens import TokenIssuer


@pytest.mark.asyncio
async def test_publish_jwks_lists_every_key():
    store = InMemoryKeyStore()
    await store.create_and_activate_new_key()

    jwks = await publish_jwks(store)

    kids = {k.kid for k in await store.get_all_keys()}
    assert {entry["kid"] for entry in jwks["keys"]} == kids
    for entry in jwks["keys"]:
        assert entry["kty"] == "RSA"
        assert entry["alg"] == "RS256"
        assert "d" not in entry


@pytest.mark.asyncio
async def test_published_key_verifies_issued_token():
    store = InMemoryKeyStore()
    token = await TokenIssuer(store).issue_download_token("alice@example.com", "a.pdf")
    kid = jwt.get_unverified_header(token)["kid"]

    jwks = await publish_jwks(store)
    entry = next(k for k in jwks["keys"] if k["kid"] == kid)
    public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(entry))

    claims = jwt.decode(token, public_key, algorithms=["RS256"], audience="kidkeeper-downloads")
    assert claims["email"] == "alice@example.com"


def test_build_jwks_empty():
    assert build_jwks([]) == {"keys": []}
