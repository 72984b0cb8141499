"""Publish verification keys and check a token with only the JWKS."""

import asyncio
import json

import jwt

from kidkeeper import TokenIssuer, get_key_store, publish_jwks


async def main():
    async with get_key_store("distributed") as store:
        await store.create_and_activate_new_key()
        token = await TokenIssuer(store).issue_download_token("bob@example.com", "b.zip")
        jwks = await publish_jwks(store)

    print(json.dumps(jwks, indent=2))

    # a downstream service needs nothing but the published set
    kid = jwt.get_unverified_header(token)["kid"]
    entry = next(k for k in jwks["keys"] if k["kid"] == kid)
    public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(entry))
    claims = jwt.decode(token, public_key, algorithms=["RS256"], audience="kidkeeper-downloads")
    print(f"✅ Verified download of {claims['file']} for {claims['email']}")


if __name__ == "__main__":
    asyncio.run(main())
