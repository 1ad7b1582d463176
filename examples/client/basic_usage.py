"""
Basic usage example of BalanceClient.

Reads the user key from ``user.key`` (create it with ``otcbal user-keygen``),
fetches the network key from the dev ledger and prints the decrypted balances
once.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path to import otcbal
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from otcbal.client.client import BalanceClient
from otcbal.client.domain.entities import SyncState
from otcbal.client.infrastructure.config_loader import ConfigLoader


async def run(logger: logging.Logger) -> None:
    key_pair = ConfigLoader.load_key_pair("user.key")
    client, loader = BalanceClient.from_config(key_pair=key_pair)
    await client.network_key_provider.load(loader.network_key_source())

    async with client:
        state = await client.refresh()
        if state is SyncState.FAILED:
            logger.error("Balance sync failed: %s", client.error)
            return
        for balance in client.balances:
            logger.info(
                "%s: %s available, %s committed",
                balance.mint,
                balance.amount,
                balance.committed_amount,
            )
        for warning in client.warnings:
            logger.warning("Skipped %s (%s)", warning.address, warning.kind)

    await client.ledger.aclose()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    try:
        asyncio.run(run(logger))
        logger.info("Basic usage example completed")
    except Exception:
        logger.exception("Error")
        sys.exit(1)


if __name__ == "__main__":
    main()
