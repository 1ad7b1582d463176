"""
Application layer: Fetch, decrypt and publish the user's balances.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from otcbal.client.domain.decoder import BalanceDecoder
from otcbal.client.domain.entities import (
    EMPTY_BALANCE_SET,
    BalanceSet,
    SyncState,
    SyncWarning,
)
from otcbal.common.exceptions import DecryptionFailed, MalformedCiphertext, QueryFailed

if TYPE_CHECKING:
    from collections.abc import Sequence

    from otcbal.client.application.session_manager import SessionManager
    from otcbal.client.domain.entities import Balance, SessionState
    from otcbal.common.crypto import CipherSession
    from otcbal.common.interfaces import ILedgerSource
    from otcbal.common.models import EncryptedBalanceRow

logger = logging.getLogger(__name__)


class BalanceSync:
    """Rebuilds the balance set from the ledger on every run.

    States: idle -> fetching -> ready | failed. A failed query keeps the last
    published set; missing inputs and teardown clear it. A run whose session
    changed while it was querying discards its result and clears the view.
    """

    def __init__(self, session_manager: SessionManager, ledger: ILedgerSource):
        self.session_manager = session_manager
        self.ledger = ledger
        self._balance_set: BalanceSet = EMPTY_BALANCE_SET
        self._state = SyncState.IDLE
        self._error: str | None = None
        self._closed = False
        self.runs = 0

    @property
    def balance_set(self) -> BalanceSet:
        return self._balance_set

    @property
    def balances(self) -> tuple[Balance, ...]:
        return self._balance_set.balances

    @property
    def warnings(self) -> tuple[SyncWarning, ...]:
        return self._balance_set.warnings

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._state is SyncState.FETCHING

    def reset(self) -> None:
        """Return to idle and drop every decrypted balance."""
        self._balance_set = EMPTY_BALANCE_SET
        self._state = SyncState.IDLE
        self._error = None

    def teardown(self) -> None:
        """End the session; in-flight runs will not publish."""
        self._closed = True
        self.reset()

    async def sync(self) -> SyncState:
        """Run one query -> decode -> publish cycle."""
        if self._closed:
            return self._state

        session = self.session_manager.session_state
        if session.error is not None:
            self._balance_set = EMPTY_BALANCE_SET
            self._state = SyncState.FAILED
            self._error = str(session.error)
            return self._state
        if not session.is_ready:
            logger.debug("Balances not ready: key material or network key missing")
            self.reset()
            return self._state

        assert session.key_pair is not None
        assert session.cipher is not None

        self._state = SyncState.FETCHING
        self._error = None
        self.runs += 1
        try:
            rows = await self.ledger.query_by_fingerprint(session.key_pair.fingerprint)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            if self._is_stale(session):
                logger.debug("Discarding failed query from a previous session")
                return self._discard()
            failure = err if isinstance(err, QueryFailed) else QueryFailed(str(err))
            logger.warning("Balance query failed: %s", failure)
            self._state = SyncState.FAILED
            self._error = str(failure) or "Failed to fetch balances"
            return self._state

        if self._is_stale(session):
            logger.debug("Discarding balances fetched for a previous session")
            return self._discard()

        self._balance_set = self._build_set(rows, session.cipher)
        self._state = SyncState.READY
        self._error = None
        return self._state

    def _is_stale(self, session: SessionState) -> bool:
        return self._closed or session.generation != self.session_manager.generation

    def _discard(self) -> SyncState:
        # The published set belongs to a session that no longer exists
        self.reset()
        return self._state

    def _build_set(
        self, rows: Sequence[EncryptedBalanceRow], cipher: CipherSession
    ) -> BalanceSet:
        decoder = BalanceDecoder(cipher)
        decoded = []
        warnings = []
        for row in rows:
            try:
                decoded.append(decoder.decode_row(row))
            except (DecryptionFailed, MalformedCiphertext) as err:
                logger.warning("Skipping balance row %s: %s", row.address, err)
                warnings.append(
                    SyncWarning(kind=err.kind, address=row.address, message=str(err))
                )

        balance_set = BalanceSet.build(decoded, warnings)
        if balance_set.warnings:
            logger.warning(
                "Balance sync finished with %s warning(s) over %s row(s)",
                len(balance_set.warnings),
                len(rows),
            )
        logger.info("Published %s balance(s)", len(balance_set))
        return balance_set
