"""
Command-line interface for otcbal.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import click
import requests

from otcbal.client.client import BalanceClient
from otcbal.client.domain.entities import BalanceSet, EncryptionKeyPair, SyncState
from otcbal.client.infrastructure.config_loader import ConfigLoader
from otcbal.common.config import Config
from otcbal.common.exceptions import BalanceError
from otcbal.common.models import ClientConfig
from otcbal.server import start_server
from otcbal.server.keygen import KeyGenerator


def _format_balances(balance_set: BalanceSet) -> str:
    if not balance_set.balances:
        return "No balances"
    lines = [f"{'MINT':<46} {'AVAILABLE':>24} {'COMMITTED':>24}"]
    lines.extend(
        f"{balance.mint:<46} {balance.amount:>24} {balance.committed_amount:>24}"
        for balance in balance_set.balances
    )
    return "\n".join(lines)


def _echo_warnings(balance_set: BalanceSet) -> None:
    for warning in balance_set.warnings:
        click.echo(f"warning: {warning.kind} {warning.address}: {warning.message}", err=True)


async def _open_client(key_file: str, ledger_url: str | None) -> BalanceClient:
    key_pair = ConfigLoader.load_key_pair(key_file)
    client, loader = BalanceClient.from_config(
        ClientConfig(ledger_url=ledger_url), key_pair=key_pair
    )
    await client.network_key_provider.load(loader.network_key_source())
    await client.start()
    return client


@click.group()
def cli() -> None:
    """Confidential balance sync CLI"""


@cli.command()
@click.option(
    "--keys-dir",
    default=None,
    help="Directory to save keys (default: ./otcbal/server)",
)
def keygen(keys_dir: str | None) -> None:
    """Generate the dev network X25519 keys"""
    keygen = KeyGenerator(Path(keys_dir) if keys_dir else None)
    keygen.generate_keys()
    click.echo("Keys generated and saved")


@cli.command("user-keygen")
@click.option("--out", required=True, help="File to write the private key to")
def user_keygen(out: str) -> None:
    """Generate a user encryption key pair"""
    key_pair = EncryptionKeyPair.generate()
    path = ConfigLoader.save_key_pair(key_pair, out)
    click.echo(f"Private key saved to {path}")
    click.echo(f"Fingerprint: {key_pair.fingerprint}")


@cli.command()
@click.option("--key-file", required=True, help="User private key file")
def fingerprint(key_file: str) -> None:
    """Print the ledger fingerprint of a user key"""
    key_pair = ConfigLoader.load_key_pair(key_file)
    click.echo(key_pair.fingerprint)


@cli.command()
@click.option(
    "--keys-dir",
    default=None,
    help="Directory to load keys from (default: ./otcbal/server)",
)
@click.option(
    "--host",
    default=None,
    help="Host to bind server to (default: from OTCBAL_SERVER_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind server to (default: from OTCBAL_SERVER_PORT env or 8000)",
)
@click.option(
    "--data-file",
    default=None,
    help="JSON file to persist balance rows in",
)
def serve(
    keys_dir: str | None,
    host: str | None,
    port: int | None,
    data_file: str | None,
) -> None:
    """Start the dev ledger server"""
    if keys_dir:
        os.environ["OTCBAL_KEYS_DIR"] = keys_dir
    if host:
        os.environ["OTCBAL_SERVER_HOST"] = host
    if port:
        os.environ["OTCBAL_SERVER_PORT"] = str(port)

    config = Config()
    if not config.ADMIN_PASSWORD:
        click.echo("OTCBAL_ADMIN_PASSWORD not set: write endpoints are disabled", err=True)

    start_server(config, data_file_path=Path(data_file) if data_file else None)


@cli.command()
@click.option("--key-file", required=True, help="User private key file")
@click.option("--ledger-url", default=None, help="Ledger base URL")
def balances(key_file: str, ledger_url: str | None) -> None:
    """Fetch and decrypt balances once"""

    async def run() -> tuple[SyncState, str | None, BalanceSet]:
        client = await _open_client(key_file, ledger_url)
        try:
            state = await client.refresh()
            return state, client.error, client.balance_set
        finally:
            await client.close()
            await client.ledger.aclose()

    try:
        state, error, balance_set = asyncio.run(run())
    except (requests.RequestException, OSError, ValueError, BalanceError) as e:
        raise click.ClickException(str(e)) from e
    if state is SyncState.FAILED:
        raise click.ClickException(error or "balance sync failed")
    click.echo(_format_balances(balance_set))
    _echo_warnings(balance_set)


@cli.command()
@click.option("--key-file", required=True, help="User private key file")
@click.option("--ledger-url", default=None, help="Ledger base URL")
def watch(key_file: str, ledger_url: str | None) -> None:
    """Print balances every time the ledger changes"""

    async def run() -> None:
        client = await _open_client(key_file, ledger_url)

        def report() -> None:
            if client.error:
                click.echo(f"error: {client.error}", err=True)
            click.echo(_format_balances(client.balance_set))
            _echo_warnings(client.balance_set)

        client.runner.add_listener(report)
        try:
            await asyncio.Event().wait()
        finally:
            await client.close()
            await client.ledger.aclose()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Stopped")
    except (requests.RequestException, OSError, ValueError, BalanceError) as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    cli()
