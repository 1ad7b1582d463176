# Confidential OTC balance sync

from otcbal.client.client import BalanceClient
from otcbal.client.domain.entities import Balance, BalanceSet, EncryptionKeyPair, SyncState
from otcbal.client.infrastructure.ledger import InMemoryLedger, RestLedgerSource
from otcbal.client.infrastructure.providers import KeyMaterialProvider, NetworkKeyProvider

__all__ = [
    "Balance",
    "BalanceClient",
    "BalanceSet",
    "EncryptionKeyPair",
    "InMemoryLedger",
    "KeyMaterialProvider",
    "NetworkKeyProvider",
    "RestLedgerSource",
    "SyncState",
]
