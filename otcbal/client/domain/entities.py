"""Domain layer: Core balance entities and rules.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from otcbal.common.crypto import KEY_LENGTH, fingerprint
from otcbal.common.exceptions import InvalidKeyMaterial

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from otcbal.common.crypto import CipherSession


class SyncState(str, enum.Enum):
    """Lifecycle of the balance view."""

    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class EncryptionKeyPair:
    """Domain entity representing the user's X25519 encryption keys."""

    private_key: bytes = field(repr=False)
    public_key: bytes

    @classmethod
    def from_private_bytes(cls, private_key: bytes) -> EncryptionKeyPair:
        if len(private_key) != KEY_LENGTH:
            msg = f"private key must be {KEY_LENGTH} bytes, got {len(private_key)}"
            raise InvalidKeyMaterial(msg)
        public_key = (
            X25519PrivateKey.from_private_bytes(private_key)
            .public_key()
            .public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        )
        return cls(private_key=bytes(private_key), public_key=public_key)

    @classmethod
    def generate(cls) -> EncryptionKeyPair:
        private = X25519PrivateKey.generate()
        return cls.from_private_bytes(
            private.private_bytes(
                serialization.Encoding.Raw,
                serialization.PrivateFormat.Raw,
                serialization.NoEncryption(),
            )
        )

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.public_key)


@dataclass(frozen=True)
class SessionState:
    """Domain entity representing the inputs of one decryption session."""

    generation: int = 0
    key_pair: EncryptionKeyPair | None = None
    network_public_key: bytes | None = None
    cipher: CipherSession | None = field(default=None, repr=False)
    error: InvalidKeyMaterial | None = None

    @property
    def is_ready(self) -> bool:
        return self.cipher is not None


@dataclass(frozen=True)
class Balance:
    """A decrypted balance. Amounts are raw integer units."""

    address: str
    controller: str
    mint: str
    amount: int
    committed_amount: int

    @property
    def key(self) -> tuple[str, str]:
        return (self.controller, self.mint)


@dataclass(frozen=True)
class SyncWarning:
    """A non-fatal problem recorded while building a balance set."""

    kind: str
    address: str
    message: str


@dataclass(frozen=True)
class BalanceSet:
    """Immutable snapshot of every balance decrypted in one sync cycle."""

    balances: tuple[Balance, ...] = ()
    warnings: tuple[SyncWarning, ...] = ()
    fetched_at: float | None = None
    by_mint: Mapping[str, Balance] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    @classmethod
    def build(
        cls,
        decoded: Iterable[Balance],
        warnings: Iterable[SyncWarning] = (),
    ) -> BalanceSet:
        """Build a set with at most one balance per (controller, mint).

        A later balance for the same key replaces the earlier one in place and
        the conflict is recorded as a ``duplicate`` warning.
        """
        collected = list(warnings)
        unique: dict[tuple[str, str], Balance] = {}
        for balance in decoded:
            previous = unique.get(balance.key)
            if previous is not None:
                collected.append(
                    SyncWarning(
                        kind="duplicate",
                        address=balance.address,
                        message=(
                            f"row {balance.address} replaces {previous.address} "
                            f"for controller {balance.controller} mint {balance.mint}"
                        ),
                    )
                )
            unique[balance.key] = balance

        balances = tuple(unique.values())
        by_mint: dict[str, Balance] = {}
        for balance in balances:
            by_mint.setdefault(balance.mint, balance)
        return cls(
            balances=balances,
            warnings=tuple(collected),
            fetched_at=time.time(),
            by_mint=MappingProxyType(by_mint),
        )

    def __len__(self) -> int:
        return len(self.balances)


EMPTY_BALANCE_SET = BalanceSet()
