"""Common cryptographic utilities.

Cipher suite v1 seals each balance field with ChaCha20-Poly1305 under a
per-row key:

- session key: HKDF-SHA256(X25519(private, peer_public), info="otcbal:balance-cipher:v1")
- row key: HKDF-SHA256(session key, salt=row nonce, info="otcbal:row")
- field nonce: row_nonce[:4] || field index (u64, big-endian)
- associated data: "<cipher suite>:<field name>:<row binding>", where the row
  binding is "<len(controller)>:<controller>:<mint>", so a row's ciphertexts
  copied under another controller or mint fail authentication

A sealed u128 is 16 plaintext bytes plus the 16 byte tag, so every blob on
the ledger is exactly 32 bytes.

Security Note:
    Never log private keys, session keys or decrypted amounts.
"""

from __future__ import annotations

import hmac
import os
from dataclasses import dataclass, field
from typing import Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from otcbal.common.exceptions import (
    DecryptionFailed,
    InvalidKeyMaterial,
    MalformedCiphertext,
)

CIPHER_SUITE = "v1:X25519-HKDF-SHA256-ChaCha20Poly1305"
KEY_LENGTH = 32
ROW_NONCE_LENGTH = 16
NONCE_PREFIX_LENGTH = 4
TAG_LENGTH = 16
AMOUNT_WIDTH = 16
MAX_AMOUNT = 2 ** (AMOUNT_WIDTH * 8) - 1
FINGERPRINT_PREFIX = "\\x"
BALANCE_FIELDS = ("amount", "committed_amount")

_SESSION_INFO = b"otcbal:balance-cipher:v1"
_ROW_INFO = b"otcbal:row"
_UNDERIVED_KEY = bytes(KEY_LENGTH)


def _as_key_bytes(value: object, label: str) -> bytes:
    if not isinstance(value, (bytes, bytearray, memoryview)):
        msg = f"{label} is missing"
        raise InvalidKeyMaterial(msg)
    raw = bytes(value)
    if len(raw) != KEY_LENGTH:
        msg = f"{label} must be {KEY_LENGTH} bytes, got {len(raw)}"
        raise InvalidKeyMaterial(msg)
    return raw


class CryptoUtils:
    """Utility class for cryptographic operations."""

    @staticmethod
    def derive_row_key(session_key: bytes, row_nonce: bytes) -> bytes:
        """Derive the per-row field key from the session key and row nonce."""
        return HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=row_nonce,
            info=_ROW_INFO,
        ).derive(session_key)

    @staticmethod
    def field_nonce(row_nonce: bytes, index: int) -> bytes:
        """Calculate the 96-bit AEAD nonce of a field within a row."""
        return row_nonce[:NONCE_PREFIX_LENGTH] + index.to_bytes(8, "big")

    @staticmethod
    def row_binding(controller: str, mint: str) -> str:
        return f"{len(controller)}:{controller}:{mint}"

    @staticmethod
    def field_aad(index: int, binding: str = "") -> bytes:
        return f"{CIPHER_SUITE}:{BALANCE_FIELDS[index]}:{binding}".encode()

    @staticmethod
    def encode_amount(value: int) -> bytes:
        if not 0 <= value <= MAX_AMOUNT:
            msg = f"amount out of u128 range: {value}"
            raise ValueError(msg)
        return value.to_bytes(AMOUNT_WIDTH, "little")

    @staticmethod
    def decode_amount(plaintext: bytes) -> int:
        if len(plaintext) != AMOUNT_WIDTH:
            msg = (
                f"decrypted field is {len(plaintext)} bytes, "
                f"expected {AMOUNT_WIDTH}"
            )
            raise MalformedCiphertext(msg)
        return int.from_bytes(plaintext, "little")

    @staticmethod
    def random_row_nonce() -> bytes:
        return os.urandom(ROW_NONCE_LENGTH)


@dataclass(frozen=True)
class CipherSession:
    """Symmetric cipher shared between a user key pair and the network key."""

    key: bytes = field(repr=False)

    def _row_aead(self, row_nonce: bytes) -> ChaCha20Poly1305:
        if len(row_nonce) != ROW_NONCE_LENGTH:
            msg = f"row nonce must be {ROW_NONCE_LENGTH} bytes, got {len(row_nonce)}"
            raise MalformedCiphertext(msg)
        return ChaCha20Poly1305(CryptoUtils.derive_row_key(self.key, row_nonce))

    def seal_fields(
        self, plaintexts: Sequence[bytes], row_nonce: bytes, binding: str = ""
    ) -> list[bytes]:
        """Encrypt raw field plaintexts in wire order."""
        aead = self._row_aead(row_nonce)
        return [
            aead.encrypt(
                CryptoUtils.field_nonce(row_nonce, index),
                plaintext,
                CryptoUtils.field_aad(index, binding),
            )
            for index, plaintext in enumerate(plaintexts)
        ]

    def open_fields(
        self, blobs: Sequence[bytes], row_nonce: bytes, binding: str = ""
    ) -> list[bytes]:
        """Decrypt and authenticate every field blob of a row independently."""
        aead = self._row_aead(row_nonce)
        plaintexts = []
        for index, blob in enumerate(blobs):
            if len(blob) < TAG_LENGTH:
                msg = f"ciphertext {index} is shorter than the authentication tag"
                raise MalformedCiphertext(msg)
            try:
                plaintexts.append(
                    aead.decrypt(
                        CryptoUtils.field_nonce(row_nonce, index),
                        bytes(blob),
                        CryptoUtils.field_aad(index, binding),
                    )
                )
            except InvalidTag as err:
                msg = f"authentication failed for {BALANCE_FIELDS[index]}"
                raise DecryptionFailed(msg) from err
        return plaintexts


def derive_cipher(private_key: bytes, network_public_key: bytes) -> CipherSession:
    """Derive the balance cipher from a private key and the peer public key.

    Works from either side of the exchange: (user private, network public) and
    (network private, user public) yield the same session.

    Raises:
        InvalidKeyMaterial: wrong length, the all-zero "not derived" sentinel,
            or a peer point rejected by X25519.
    """
    private_raw = _as_key_bytes(private_key, "private key")
    public_raw = _as_key_bytes(network_public_key, "network public key")
    if hmac.compare_digest(private_raw, _UNDERIVED_KEY):
        msg = "private key has not been derived"
        raise InvalidKeyMaterial(msg)

    try:
        shared = X25519PrivateKey.from_private_bytes(private_raw).exchange(
            X25519PublicKey.from_public_bytes(public_raw)
        )
    except ValueError as err:
        msg = "key agreement rejected the network public key"
        raise InvalidKeyMaterial(msg) from err

    key = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=_SESSION_INFO,
    ).derive(shared)
    return CipherSession(key=key)


def seal_balance(
    amount: int,
    committed_amount: int,
    nonce: bytes,
    cipher: CipherSession,
    binding: str = "",
) -> list[bytes]:
    """Encrypt a balance into its two wire ciphertexts (amount, committed).

    ``binding`` is the row binding of the owning controller and mint; the same
    value must be given when the row is opened.
    """
    return cipher.seal_fields(
        [CryptoUtils.encode_amount(amount), CryptoUtils.encode_amount(committed_amount)],
        nonce,
        binding,
    )


def fingerprint(public_key: bytes) -> str:
    """Encode a raw public encryption key as the ledger's index key."""
    return FINGERPRINT_PREFIX + bytes(public_key).hex()


def parse_fingerprint(value: str) -> bytes:
    """Reverse fingerprint(), rejecting anything it could not have produced."""
    if not value.startswith(FINGERPRINT_PREFIX):
        msg = f"fingerprint must start with {FINGERPRINT_PREFIX!r}"
        raise ValueError(msg)
    body = value[len(FINGERPRINT_PREFIX) :]
    if body != body.lower() or len(body) != KEY_LENGTH * 2:
        msg = "fingerprint must be 64 lowercase hex characters"
        raise ValueError(msg)
    return bytes.fromhex(body)
