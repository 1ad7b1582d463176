"""
Custom exceptions for the confidential balance engine.
"""

from __future__ import annotations


class BalanceError(Exception):
    """Base class for every failure the balance engine represents as state."""

    kind = "balance_error"


class NotReady(BalanceError):
    """Key material or the network public key is not available yet."""

    kind = "not_ready"


class QueryFailed(BalanceError):
    """The ledger was unreachable or rejected the query."""

    kind = "query_failed"


class DecryptionFailed(BalanceError):
    """A ciphertext field failed authentication."""

    kind = "decryption_failed"


class NonceReuse(DecryptionFailed):
    """Two rows carry the same nonce with different ciphertexts."""

    kind = "nonce_reuse"


class MalformedCiphertext(BalanceError):
    """A row does not have the fixed shape of an encrypted balance."""

    kind = "malformed_ciphertext"


class InvalidKeyMaterial(BalanceError):
    """A private or network key cannot be used for key agreement."""

    kind = "invalid_key_material"


class ValidationError(Exception):
    """Exception for request validation failures on the dev ledger server."""

    def __init__(self, message: str, status_code: int = 403) -> None:
        super().__init__(message)
        self.status_code = status_code
