"""Infrastructure layer: Observable holders for key material and the network key.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from otcbal.common.crypto import KEY_LENGTH

if TYPE_CHECKING:
    from otcbal.client.domain.entities import EncryptionKeyPair
    from otcbal.common.interfaces import Listener, INetworkKeySource, Unsubscribe

logger = logging.getLogger(__name__)


class _Observable:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Key listener %r failed", listener)


class KeyMaterialProvider(_Observable):
    """Holds the user's encryption key pair once it has been derived."""

    def __init__(self, key_pair: EncryptionKeyPair | None = None):
        super().__init__()
        self._key_pair = key_pair

    @property
    def has_key_pair(self) -> bool:
        return self._key_pair is not None

    @property
    def key_pair(self) -> EncryptionKeyPair | None:
        return self._key_pair

    def set_key_pair(self, key_pair: EncryptionKeyPair) -> None:
        self._key_pair = key_pair
        logger.info("Encryption key pair available")
        self._notify()

    def clear(self) -> None:
        """Forget the key pair, e.g. on wallet disconnect."""
        if self._key_pair is None:
            return
        self._key_pair = None
        logger.info("Encryption key pair cleared")
        self._notify()


class NetworkKeyProvider(_Observable):
    """Holds the network public key, fetched once per session."""

    def __init__(self, network_public_key: bytes | None = None):
        super().__init__()
        self._network_public_key = network_public_key

    @property
    def network_public_key(self) -> bytes | None:
        return self._network_public_key

    def set_network_public_key(self, network_public_key: bytes) -> None:
        if self._network_public_key == network_public_key:
            return
        self._network_public_key = bytes(network_public_key)
        self._notify()

    async def load(self, source: INetworkKeySource) -> bytes:
        """Fetch the key from ``source`` unless it is already known."""
        if self._network_public_key is not None:
            return self._network_public_key
        key = await source.fetch_network_public_key()
        if len(key) != KEY_LENGTH:
            msg = f"network public key must be {KEY_LENGTH} bytes, got {len(key)}"
            raise ValueError(msg)
        logger.info("Network public key loaded")
        self.set_network_public_key(key)
        return key
