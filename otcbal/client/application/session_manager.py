"""
Application layer: Cipher session management.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from otcbal.client.domain.entities import SessionState
from otcbal.common.crypto import derive_cipher
from otcbal.common.exceptions import InvalidKeyMaterial

if TYPE_CHECKING:
    from otcbal.common.interfaces import (
        IKeyMaterialProvider,
        INetworkKeyProvider,
        Listener,
        Unsubscribe,
    )

logger = logging.getLogger(__name__)


class SessionManager:
    """Application service deriving the cipher for the current key material.

    Every change of inputs bumps the session generation, so work started
    under an older generation can recognise itself as stale.
    """

    def __init__(
        self,
        key_provider: IKeyMaterialProvider,
        network_key_provider: INetworkKeyProvider,
    ):
        self.key_provider = key_provider
        self.network_key_provider = network_key_provider
        self._session_state = SessionState()
        self._listeners: list[Listener] = []
        self._unsubscribes: list[Unsubscribe] = []

    def attach(self) -> None:
        """Follow both providers and derive the initial session."""
        if not self._unsubscribes:
            self._unsubscribes = [
                self.key_provider.subscribe(self.refresh),
                self.network_key_provider.subscribe(self.refresh),
            ]
        self.refresh()

    def detach(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def refresh(self) -> None:
        """Re-run derivation after a provider changed."""
        key_pair = self.key_provider.key_pair if self.key_provider.has_key_pair else None
        network_key = self.network_key_provider.network_public_key
        current = self._session_state
        if key_pair == current.key_pair and network_key == current.network_public_key:
            return

        cipher = None
        error = None
        if key_pair is not None and network_key is not None:
            try:
                cipher = derive_cipher(key_pair.private_key, network_key)
            except InvalidKeyMaterial as err:
                logger.error("Cannot derive balance cipher: %s", err)
                error = err

        self._session_state = SessionState(
            generation=current.generation + 1,
            key_pair=key_pair,
            network_public_key=network_key,
            cipher=cipher,
            error=error,
        )
        logger.debug("Session generation %s", self._session_state.generation)
        for listener in list(self._listeners):
            listener()

    def invalidate(self) -> None:
        """Drop the session entirely, as on teardown."""
        self._session_state = SessionState(
            generation=self._session_state.generation + 1
        )

    @property
    def session_state(self) -> SessionState:
        return self._session_state

    @property
    def generation(self) -> int:
        return self._session_state.generation
