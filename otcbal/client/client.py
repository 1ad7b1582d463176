"""
Live view of a user's confidential balances.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from otcbal.client.application.balance_sync import BalanceSync
from otcbal.client.application.runner import SyncRunner
from otcbal.client.application.session_manager import SessionManager
from otcbal.client.domain.index import BalanceIndex
from otcbal.client.infrastructure.config_loader import ConfigLoader
from otcbal.client.infrastructure.providers import KeyMaterialProvider, NetworkKeyProvider

if TYPE_CHECKING:
    from types import TracebackType

    from otcbal.client.domain.entities import (
        Balance,
        BalanceSet,
        EncryptionKeyPair,
        SyncState,
        SyncWarning,
    )
    from otcbal.common.interfaces import (
        IKeyMaterialProvider,
        ILedgerSource,
        INetworkKeyProvider,
    )
    from otcbal.common.models import ClientConfig

logger = logging.getLogger(__name__)


class BalanceClient:
    """Keeps the decrypted balances of one user in step with the ledger.

    Fetching starts by itself once both the key pair and the network key are
    available, and drops back to an empty idle view when either goes away.
    """

    def __init__(
        self,
        ledger: ILedgerSource,
        key_provider: IKeyMaterialProvider | None = None,
        network_key_provider: INetworkKeyProvider | None = None,
        table: str = "balances",
        on_error_callback: Callable[[Exception], None] | None = None,
    ):
        self.ledger = ledger
        self.key_provider = key_provider or KeyMaterialProvider()
        self.network_key_provider = network_key_provider or NetworkKeyProvider()
        self.session_manager = SessionManager(self.key_provider, self.network_key_provider)
        self.balance_sync = BalanceSync(self.session_manager, ledger)
        self.runner = SyncRunner(self.balance_sync, ledger, table, on_error_callback)
        self.index = BalanceIndex(lambda: self.balance_sync.balance_set)
        self._started = False
        self.session_manager.subscribe(self._on_session_changed)

    @classmethod
    def from_config(
        cls,
        client_config: ClientConfig | None = None,
        key_pair: EncryptionKeyPair | None = None,
    ) -> tuple[BalanceClient, ConfigLoader]:
        """Build a client against the REST ledger described by the config."""
        loader = ConfigLoader(client_config)
        client = cls(
            loader.ledger_source(),
            key_provider=KeyMaterialProvider(key_pair),
            network_key_provider=NetworkKeyProvider(),
            table=loader.balances_table,
        )
        return client, loader

    async def start(self) -> None:
        """Follow the key providers and the ledger, and run the first sync."""
        if self._started:
            return
        self.session_manager.attach()
        self._started = True
        self.runner.start()

    async def close(self) -> None:
        """Tear down; whatever is in flight is discarded."""
        self._started = False
        self.session_manager.detach()
        self.session_manager.invalidate()
        await self.runner.stop()
        logger.info("Balance client closed")

    async def __aenter__(self) -> BalanceClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _on_session_changed(self) -> None:
        if not self._started:
            return
        # Balances decrypted under the previous session never outlive it
        self.balance_sync.reset()
        self.runner.notify()

    def refetch(self) -> None:
        """Request a fresh sync without waiting for it."""
        self.runner.notify()

    async def refresh(self) -> SyncState:
        """Request a sync and wait until the view has settled."""
        self.runner.request()
        await self.runner.wait_idle()
        return self.state

    def get_balance(self, mint: str) -> Balance | None:
        return self.index.lookup(mint)

    @property
    def balances(self) -> list[Balance]:
        return list(self.balance_sync.balances)

    @property
    def balance_set(self) -> BalanceSet:
        return self.balance_sync.balance_set

    @property
    def warnings(self) -> list[SyncWarning]:
        return list(self.balance_sync.warnings)

    @property
    def is_loading(self) -> bool:
        if self.balance_sync.is_loading:
            return True
        return self.runner.is_running and self.session_manager.session_state.is_ready

    @property
    def error(self) -> str | None:
        return self.balance_sync.error

    @property
    def state(self) -> SyncState:
        return self.balance_sync.state
