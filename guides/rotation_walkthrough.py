"""Walk through issuing, rotating and retiring signing keys."""

import asyncio

from kidkeeper import TokenIssuer, TokenValidator, Unauthorized, get_key_store


async def main():
    """Issue a token, rotate, then retire the key that signed it."""
    async with get_key_store("inmemory") as store:
        issuer = TokenIssuer(store)
        validator = TokenValidator(store)

        first = await store.get_active_key()
        token = await issuer.issue_download_token("alice@example.com", "reports/q3.pdf")
        print(f"✅ Token issued with key {first.kid}")

        second = await store.create_and_activate_new_key()
        print(f"🔄 Rotated. Active key is now {second.kid}")

        validated = await validator.validate(token)
        print(f"🔓 Old token still valid for {validated.email} -> {validated.file_path}")

        await store.retire_key(first.kid)
        print(f"🗑️  Retired key {first.kid}")

        try:
            await validator.validate(token)
        except Unauthorized as exc:
            print(f"⛔ Old token rejected: {exc}")


if __name__ == "__main__":
    asyncio.run(main())
