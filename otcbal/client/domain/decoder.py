"""Domain layer: Decoding encrypted ledger rows into balances.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from otcbal.common.crypto import BALANCE_FIELDS, ROW_NONCE_LENGTH, CryptoUtils
from otcbal.common.exceptions import MalformedCiphertext, NonceReuse

from .entities import Balance

if TYPE_CHECKING:
    from otcbal.common.crypto import CipherSession
    from otcbal.common.models import EncryptedBalanceRow


@dataclass(frozen=True)
class DecodedBalance:
    amount: int
    committed_amount: int


def decode_balance(
    ciphertexts: Sequence[bytes],
    nonce: bytes,
    cipher: CipherSession,
    binding: str = "",
) -> DecodedBalance:
    """Decrypt the (amount, committed_amount) ciphertexts of one row.

    Raises:
        DecryptionFailed: a field failed authentication.
        MalformedCiphertext: the row shape or a decrypted width is wrong.
    """
    if len(ciphertexts) != len(BALANCE_FIELDS):
        msg = f"expected {len(BALANCE_FIELDS)} ciphertexts, got {len(ciphertexts)}"
        raise MalformedCiphertext(msg)
    if len(nonce) != ROW_NONCE_LENGTH:
        msg = f"nonce must be {ROW_NONCE_LENGTH} bytes, got {len(nonce)}"
        raise MalformedCiphertext(msg)

    amount_plain, committed_plain = cipher.open_fields(ciphertexts, nonce, binding)
    return DecodedBalance(
        amount=CryptoUtils.decode_amount(amount_plain),
        committed_amount=CryptoUtils.decode_amount(committed_plain),
    )


class BalanceDecoder:
    """Decodes the rows of one sync cycle, refusing reused nonces."""

    def __init__(self, cipher: CipherSession):
        self.cipher = cipher
        self._seen_nonces: dict[bytes, tuple[bytes, ...]] = {}

    def decode(
        self, ciphertexts: Sequence[bytes], nonce: bytes, binding: str = ""
    ) -> DecodedBalance:
        blobs = tuple(bytes(blob) for blob in ciphertexts)
        previous = self._seen_nonces.get(bytes(nonce))
        if previous is not None and previous != blobs:
            msg = "nonce reused for different ciphertexts under the same cipher"
            raise NonceReuse(msg)
        decoded = decode_balance(blobs, nonce, self.cipher, binding)
        self._seen_nonces[bytes(nonce)] = blobs
        return decoded

    def decode_row(self, row: EncryptedBalanceRow) -> Balance:
        decoded = self.decode(
            row.ciphertexts,
            row.nonce,
            CryptoUtils.row_binding(row.controller, row.mint),
        )
        return Balance(
            address=row.address,
            controller=row.controller,
            mint=row.mint,
            amount=decoded.amount,
            committed_amount=decoded.committed_amount,
        )
