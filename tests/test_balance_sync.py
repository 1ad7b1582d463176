import asyncio

import pytest
from conftest import GatedLedger

from otcbal.client.application.balance_sync import BalanceSync
from otcbal.client.application.session_manager import SessionManager
from otcbal.client.domain.entities import EncryptionKeyPair, SyncState
from otcbal.client.infrastructure.ledger import InMemoryLedger
from otcbal.client.infrastructure.providers import KeyMaterialProvider, NetworkKeyProvider
from otcbal.common.crypto import CryptoUtils, derive_cipher, seal_balance
from otcbal.common.exceptions import QueryFailed


class FailingLedger(InMemoryLedger):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = False

    async def query_by_fingerprint(self, fingerprint):
        if self.failing:
            self.queries += 1
            msg = "connection reset"
            raise QueryFailed(msg)
        return await super().query_by_fingerprint(fingerprint)


def make_sync(ledger, user_keys=None, network_keys=None):
    key_provider = KeyMaterialProvider(user_keys)
    network_provider = NetworkKeyProvider(network_keys.public_key if network_keys else None)
    manager = SessionManager(key_provider, network_provider)
    manager.attach()
    return BalanceSync(manager, ledger), key_provider, network_provider


@pytest.mark.asyncio
async def test_idle_without_key_material(make_row, network_keys) -> None:
    ledger = InMemoryLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, None, network_keys)

    state = await sync.sync()

    assert state is SyncState.IDLE
    assert sync.balances == ()
    assert sync.error is None
    assert ledger.queries == 0


@pytest.mark.asyncio
async def test_idle_without_network_key(make_row, user_keys) -> None:
    ledger = InMemoryLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, user_keys, None)

    assert await sync.sync() is SyncState.IDLE
    assert ledger.queries == 0


@pytest.mark.asyncio
async def test_ready_with_decoded_balances(make_row, user_keys, network_keys) -> None:
    ledger = InMemoryLedger([make_row("USDC", 500, 50), make_row("SOL", 7)])
    sync, _, _ = make_sync(ledger, user_keys, network_keys)

    assert await sync.sync() is SyncState.READY

    assert {(b.mint, b.amount, b.committed_amount) for b in sync.balances} == {
        ("USDC", 500, 50),
        ("SOL", 7, 0),
    }
    assert sync.warnings == ()
    assert sync.balance_set.fetched_at is not None
    assert not sync.is_loading


@pytest.mark.asyncio
async def test_only_rows_for_own_fingerprint_are_returned(
    make_row, user_keys, network_keys
) -> None:
    other = EncryptionKeyPair.generate()
    foreign = make_row("USDC", 900).model_copy(
        update={"fingerprint": other.fingerprint, "address": "foreign"}
    )
    ledger = InMemoryLedger([make_row("USDC", 500), foreign])
    sync, _, _ = make_sync(ledger, user_keys, network_keys)

    await sync.sync()

    assert [b.address for b in sync.balances] == ["controller-1:USDC"]


@pytest.mark.asyncio
async def test_undecryptable_row_is_skipped_with_warning(
    make_row, user_keys, network_keys
) -> None:
    stranger = derive_cipher(EncryptionKeyPair.generate().private_key, network_keys.public_key)
    rows = [
        make_row("USDC", 500),
        make_row("SOL", 7),
        make_row("BONK", 1, cipher_override=stranger),
    ]
    sync, _, _ = make_sync(InMemoryLedger(rows), user_keys, network_keys)

    assert await sync.sync() is SyncState.READY

    assert len(sync.balances) == 2  # noqa: PLR2004
    assert [(w.kind, w.address) for w in sync.warnings] == [
        ("decryption_failed", "controller-1:BONK")
    ]


@pytest.mark.asyncio
async def test_malformed_row_is_skipped_with_warning(make_row, user_keys, network_keys) -> None:
    broken = make_row("SOL", 7)
    broken = broken.model_copy(update={"ciphertexts": broken.ciphertexts[:1]})
    sync, _, _ = make_sync(
        InMemoryLedger([make_row("USDC", 500), broken]), user_keys, network_keys
    )

    await sync.sync()

    assert [b.mint for b in sync.balances] == ["USDC"]
    assert [w.kind for w in sync.warnings] == ["malformed_ciphertext"]


@pytest.mark.asyncio
async def test_reused_nonce_row_is_rejected(make_row, cipher, user_keys, network_keys) -> None:
    first = make_row("USDC", 500)
    reused = first.model_copy(
        update={
            "address": "controller-2:USDC",
            "controller": "controller-2",
            "ciphertexts": seal_balance(900, 0, first.nonce, cipher),
        }
    )
    sync, _, _ = make_sync(InMemoryLedger([first, reused]), user_keys, network_keys)

    await sync.sync()

    assert [b.amount for b in sync.balances] == [500]
    assert [w.kind for w in sync.warnings] == ["nonce_reuse"]


@pytest.mark.asyncio
async def test_duplicate_controller_mint_keeps_later_row(
    make_row, user_keys, network_keys
) -> None:
    rows = [
        make_row("USDC", 500, address="a"),
        make_row("SOL", 7, address="b"),
        make_row("USDC", 800, address="c"),
    ]
    sync, _, _ = make_sync(InMemoryLedger(rows), user_keys, network_keys)

    await sync.sync()

    assert [(b.address, b.amount) for b in sync.balances] == [("c", 800), ("b", 7)]
    assert [(w.kind, w.address) for w in sync.warnings] == [("duplicate", "c")]


@pytest.mark.asyncio
async def test_same_mint_under_two_controllers(make_row, user_keys, network_keys) -> None:
    rows = [
        make_row("USDC", 500, controller="controller-1"),
        make_row("USDC", 800, controller="controller-2"),
    ]
    sync, _, _ = make_sync(InMemoryLedger(rows), user_keys, network_keys)

    await sync.sync()

    assert len(sync.balances) == 2  # noqa: PLR2004
    assert sync.warnings == ()
    assert sync.balance_set.by_mint["USDC"].amount == 500  # noqa: PLR2004


@pytest.mark.asyncio
async def test_query_failure_keeps_previous_balances(make_row, user_keys, network_keys) -> None:
    ledger = FailingLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, user_keys, network_keys)
    await sync.sync()
    published = sync.balance_set

    ledger.failing = True
    state = await sync.sync()

    assert state is SyncState.FAILED
    assert "connection reset" in sync.error
    assert sync.balance_set is published

    ledger.failing = False
    assert await sync.sync() is SyncState.READY
    assert sync.error is None


@pytest.mark.asyncio
async def test_unexpected_query_error_becomes_query_failed(user_keys, network_keys) -> None:
    class BrokenLedger(InMemoryLedger):
        async def query_by_fingerprint(self, fingerprint):
            msg = "boom"
            raise RuntimeError(msg)

    sync, _, _ = make_sync(BrokenLedger(), user_keys, network_keys)

    assert await sync.sync() is SyncState.FAILED
    assert sync.error == "boom"


@pytest.mark.asyncio
async def test_underived_key_fails_without_query(make_row, network_keys) -> None:
    underived = EncryptionKeyPair.from_private_bytes(bytes(32))
    ledger = InMemoryLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, underived, network_keys)

    assert await sync.sync() is SyncState.FAILED
    assert "not been derived" in sync.error
    assert sync.balances == ()
    assert ledger.queries == 0


@pytest.mark.asyncio
async def test_key_loss_clears_balances(make_row, user_keys, network_keys) -> None:
    sync, key_provider, _ = make_sync(
        InMemoryLedger([make_row("USDC", 500)]), user_keys, network_keys
    )
    await sync.sync()

    key_provider.clear()

    assert await sync.sync() is SyncState.IDLE
    assert sync.balances == ()


@pytest.mark.asyncio
async def test_teardown_discards_in_flight_result(make_row, user_keys, network_keys) -> None:
    ledger = GatedLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, user_keys, network_keys)

    task = asyncio.create_task(sync.sync())
    await ledger.entered.wait()
    assert sync.is_loading
    sync.teardown()
    ledger.gate.set()
    await task

    assert sync.state is SyncState.IDLE
    assert sync.balances == ()
    assert await sync.sync() is SyncState.IDLE
    assert ledger.queries == 1


@pytest.mark.asyncio
async def test_key_change_discards_in_flight_result(make_row, user_keys, network_keys) -> None:
    ledger = GatedLedger([make_row("USDC", 500)])
    ledger.gate.set()
    sync, key_provider, _ = make_sync(ledger, user_keys, network_keys)
    await sync.sync()
    assert [b.mint for b in sync.balances] == ["USDC"]

    ledger.gate.clear()
    ledger.entered.clear()
    task = asyncio.create_task(sync.sync())
    await ledger.entered.wait()
    key_provider.set_key_pair(EncryptionKeyPair.generate())
    ledger.gate.set()
    await task

    assert sync.state is SyncState.IDLE
    assert sync.balances == ()
    assert not sync.is_loading

    await sync.sync()
    assert sync.state is SyncState.READY
    assert sync.balances == ()


@pytest.mark.asyncio
async def test_key_clear_during_query_goes_idle(make_row, user_keys, network_keys) -> None:
    ledger = GatedLedger([make_row("USDC", 500)])
    ledger.gate.set()
    sync, key_provider, _ = make_sync(ledger, user_keys, network_keys)
    await sync.sync()
    assert sync.state is SyncState.READY

    ledger.gate.clear()
    ledger.entered.clear()
    task = asyncio.create_task(sync.sync())
    await ledger.entered.wait()
    key_provider.clear()
    ledger.gate.set()

    assert await task is SyncState.IDLE
    assert sync.balances == ()
    assert not sync.is_loading


@pytest.mark.asyncio
async def test_error_clears_when_fetch_starts(make_row, user_keys, network_keys) -> None:
    class FlakyGatedLedger(GatedLedger):
        failing = True

        async def query_by_fingerprint(self, fingerprint):
            if self.failing:
                msg = "connection reset"
                raise QueryFailed(msg)
            return await super().query_by_fingerprint(fingerprint)

    ledger = FlakyGatedLedger([make_row("USDC", 500)])
    sync, _, _ = make_sync(ledger, user_keys, network_keys)
    assert await sync.sync() is SyncState.FAILED
    assert sync.error is not None

    ledger.failing = False
    task = asyncio.create_task(sync.sync())
    await ledger.entered.wait()

    assert sync.state is SyncState.FETCHING
    assert sync.error is None

    ledger.gate.set()
    assert await task is SyncState.READY


@pytest.mark.asyncio
async def test_row_copied_under_other_mint_is_rejected(make_row, user_keys, network_keys) -> None:
    usdc = make_row("USDC", 500)
    copied = usdc.model_copy(update={"address": "controller-1:SOL", "mint": "SOL"})
    sync, _, _ = make_sync(InMemoryLedger([usdc, copied]), user_keys, network_keys)

    await sync.sync()

    assert [(b.mint, b.amount) for b in sync.balances] == [("USDC", 500)]
    assert [(w.kind, w.address) for w in sync.warnings] == [
        ("decryption_failed", "controller-1:SOL")
    ]


@pytest.mark.asyncio
async def test_row_nonce_of_wrong_length_is_malformed(user_keys, network_keys, make_row) -> None:
    row = make_row("USDC", 500)
    row = row.model_copy(update={"nonce": CryptoUtils.random_row_nonce()[:12]})
    sync, _, _ = make_sync(InMemoryLedger([row]), user_keys, network_keys)

    await sync.sync()

    assert sync.balances == ()
    assert [w.kind for w in sync.warnings] == ["malformed_ciphertext"]
