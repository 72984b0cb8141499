"""Command line interface for managing signing keys and download tokens."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from typing import Optional

import typer

from kidkeeper.config import load_config
from kidkeeper.errors import (
    ActiveKeyRetirement,
    KeyStoreError,
    RotationConflict,
    RotationInProgress,
    Unauthorized,
)
from kidkeeper.jwks import publish_jwks
from kidkeeper.keystores import get_key_store
from kidkeeper.tokens import TokenIssuer, TokenValidator

app = typer.Typer(help="CLI for kidkeeper signing keys")

# Command groups
keys_app = typer.Typer(help="Commands for managing signing keys")
token_app = typer.Typer(help="Commands for issuing and verifying tokens")

app.add_typer(keys_app, name="keys")
app.add_typer(token_app, name="token")

_state: dict = {}

# backends whose keys live only in the current process
PROCESS_LOCAL_BACKENDS = ("inmemory", "distributed")


@app.callback()
def main(
    backend: Optional[str] = typer.Option(
        None, help="Key store backend: inmemory, distributed, redis or vault"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """kidkeeper CLI entry point."""
    config = load_config()
    if backend:
        config.keystore.backend = backend.lower()
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _state["config"] = config


def _config():
    return _state.get("config") or load_config()


async def _with_store(operation):
    config = _config()
    async with get_key_store(config=config) as store:
        return await operation(store, config)


def _warn_if_process_local() -> None:
    backend = _config().keystore.backend
    if backend in PROCESS_LOCAL_BACKENDS:
        typer.secho(
            f"Warning: the '{backend}' key store is not shared between invocations; "
            "keys from earlier commands are not visible. Use --backend redis or vault.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@keys_app.command("list")
def keys_list() -> None:
    """
    List known signing keys.

    Prints kid, creation time and whether the key is active, one per line.

    Example:
        kidkeeper keys list
        # Output: 3f2a...  2026-01-01T00:00:00+00:00  active
    """

    async def run(store, config):
        return await store.get_all_keys()

    records = asyncio.run(_with_store(run))
    if not records:
        typer.echo("No keys found")
        return
    for record in sorted(records, key=lambda r: r.created_at):
        status = "active" if record.active else "inactive"
        typer.echo(f"{record.kid}\t{record.created_at.isoformat()}\t{status}")


@keys_app.command("rotate")
def keys_rotate() -> None:
    """Create a new signing key and make it active."""

    async def run(store, config):
        return await store.create_and_activate_new_key()

    try:
        record = asyncio.run(_with_store(run))
    except (RotationInProgress, RotationConflict) as exc:
        typer.secho(str(exc), fg=typer.colors.YELLOW)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(record.describe()))


@keys_app.command("retire")
def keys_retire(kid: str) -> None:
    """Permanently remove a signing key. Tokens it signed stop validating.

    Only meaningful with a shared backend (redis or vault); the inmemory and
    distributed backends start from a fresh key set on every invocation.
    """
    _warn_if_process_local()

    async def run(store, config):
        await store.retire_key(kid)

    try:
        asyncio.run(_with_store(run))
    except ActiveKeyRetirement as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Key {kid} retired successfully")


@keys_app.command("jwks")
def keys_jwks() -> None:
    """Print the public keys as a JSON Web Key Set."""

    async def run(store, config):
        return await publish_jwks(store, config.jwt.algorithm)

    typer.echo(json.dumps(asyncio.run(_with_store(run)), indent=2))


@token_app.command("issue")
def token_issue(
    email: str,
    file_path: str,
    ttl_minutes: int = typer.Option(0, help="Token lifetime; defaults to the configured value"),
) -> None:
    """
    Issue a download token for a file.

    Example:
        kidkeeper token issue alice@example.com reports/q3.pdf --ttl-minutes 15
    """

    async def run(store, config):
        issuer = TokenIssuer(store, config.jwt)
        ttl = timedelta(minutes=ttl_minutes) if ttl_minutes > 0 else None
        return await issuer.issue_download_token(email, file_path, ttl=ttl)

    try:
        token = asyncio.run(_with_store(run))
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except KeyStoreError as exc:
        typer.secho(f"Key store error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(token)


@token_app.command("verify")
def token_verify(token: str) -> None:
    """Validate a download token and print its grant.

    Tokens issued by an earlier invocation can only be verified with a shared
    backend (redis or vault).
    """
    _warn_if_process_local()

    async def run(store, config):
        return await TokenValidator(store, config.jwt).validate(token)

    try:
        validated = asyncio.run(_with_store(run))
    except Unauthorized:
        typer.secho("unauthorized", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except KeyStoreError as exc:
        typer.secho(f"Key store error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    expires_at = validated.expires_at
    typer.echo(
        json.dumps(
            {
                "email": validated.email,
                "file": validated.file_path,
                "kid": validated.kid,
                "expires_at": expires_at.isoformat() if expires_at else None,
            }
        )
    )


if __name__ == "__main__":
    app()
