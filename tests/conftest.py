import asyncio
from collections.abc import Callable

import pytest

from otcbal.client.domain.entities import EncryptionKeyPair
from otcbal.client.infrastructure.ledger import InMemoryLedger
from otcbal.common.crypto import CipherSession, CryptoUtils, derive_cipher, seal_balance
from otcbal.common.models import EncryptedBalanceRow


class GatedLedger(InMemoryLedger):
    """In-memory ledger whose queries block until the gate opens.

    The rows are captured when the query starts, like a real snapshot.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def query_by_fingerprint(self, fingerprint):
        rows = await super().query_by_fingerprint(fingerprint)
        self.entered.set()
        await self.gate.wait()
        return rows


@pytest.fixture
def user_keys() -> EncryptionKeyPair:
    return EncryptionKeyPair.generate()


@pytest.fixture
def network_keys() -> EncryptionKeyPair:
    return EncryptionKeyPair.generate()


@pytest.fixture
def cipher(user_keys: EncryptionKeyPair, network_keys: EncryptionKeyPair) -> CipherSession:
    """Cipher as the network derives it for the user."""
    return derive_cipher(network_keys.private_key, user_keys.public_key)


@pytest.fixture
def make_row(
    user_keys: EncryptionKeyPair, cipher: CipherSession
) -> Callable[..., EncryptedBalanceRow]:
    def factory(
        mint: str,
        amount: int,
        committed_amount: int = 0,
        controller: str = "controller-1",
        address: str | None = None,
        cipher_override: CipherSession | None = None,
    ) -> EncryptedBalanceRow:
        nonce = CryptoUtils.random_row_nonce()
        return EncryptedBalanceRow(
            address=address or f"{controller}:{mint}",
            controller=controller,
            mint=mint,
            fingerprint=user_keys.fingerprint,
            ciphertexts=seal_balance(
                amount,
                committed_amount,
                nonce,
                cipher_override or cipher,
                CryptoUtils.row_binding(controller, mint),
            ),
            nonce=nonce,
        )

    return factory
