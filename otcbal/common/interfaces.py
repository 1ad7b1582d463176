"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from otcbal.client.domain.entities import EncryptionKeyPair
    from otcbal.common.models import EncryptedBalanceRow

Listener = Callable[[], None]
ChangeHandler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class IKeyMaterialProvider(Protocol):
    """Protocol for the holder of the user's derived encryption key pair."""

    @property
    def has_key_pair(self) -> bool: ...

    @property
    def key_pair(self) -> EncryptionKeyPair | None: ...

    def subscribe(self, listener: Listener) -> Unsubscribe: ...


class INetworkKeyProvider(Protocol):
    """Protocol for the holder of the network public key."""

    @property
    def network_public_key(self) -> bytes | None: ...

    def subscribe(self, listener: Listener) -> Unsubscribe: ...


class INetworkKeySource(Protocol):
    """Protocol for fetching the network public key once per session."""

    async def fetch_network_public_key(self) -> bytes: ...


class ILedgerSource(Protocol):
    """Protocol for the encrypted balance store and its change channel."""

    async def query_by_fingerprint(
        self, fingerprint: str
    ) -> list[EncryptedBalanceRow]: ...

    def on_change(self, table: str, handler: ChangeHandler) -> Unsubscribe: ...
