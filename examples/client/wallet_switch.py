"""
Wallet switch example.

Runs a BalanceClient against the dev ledger, changes the key pair halfway
through and shows that the view drops the previous owner's balances at once.
The ledger must be started with OTCBAL_ADMIN_PASSWORD set.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

import requests

# Add the project root to the path to import otcbal
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from otcbal.client.client import BalanceClient
from otcbal.client.domain.entities import EncryptionKeyPair
from otcbal.common.config import Config
from otcbal.common.models import ClientConfig


def credit(config: Config, owner: EncryptionKeyPair, mint: str, amount: int) -> None:
    r = requests.post(
        f"{config.LEDGER_URL}/admin/balances",
        json={
            "owner_public_key": owner.public_key.hex(),
            "controller": "example-controller",
            "mint": mint,
            "amount": amount,
        },
        headers={"x-admin-password": os.environ["OTCBAL_ADMIN_PASSWORD"]},
        timeout=config.QUERY_TIMEOUT,
    )
    r.raise_for_status()


async def run(logger: logging.Logger) -> None:
    config = Config()
    alice = EncryptionKeyPair.generate()
    bob = EncryptionKeyPair.generate()
    credit(config, alice, "USDC", 500)
    credit(config, bob, "USDC", 700)

    client, loader = BalanceClient.from_config(ClientConfig(poll_interval=0.5), key_pair=alice)
    await client.network_key_provider.load(loader.network_key_source())
    client.runner.add_listener(
        lambda: logger.info(
            "state=%s balances=%s",
            client.state.value,
            [(b.mint, b.amount) for b in client.balances],
        )
    )

    async with client:
        await client.refresh()
        client.key_provider.set_key_pair(bob)
        logger.info("Switched wallet, balances now %s", client.balances)
        await client.refresh()

    await client.ledger.aclose()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    try:
        asyncio.run(run(logger))
        logger.info("Wallet switch example completed")
    except Exception:
        logger.exception("Error")
        sys.exit(1)


if __name__ == "__main__":
    main()
