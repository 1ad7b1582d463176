"""Infrastructure layer: Ledger sources and the network key source.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import requests
from pydantic import ValidationError

from otcbal.common.crypto import CIPHER_SUITE
from otcbal.common.exceptions import QueryFailed
from otcbal.common.models import (
    ChangeFeedResponse,
    EncryptedBalanceRow,
    NetworkKeyResponse,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from otcbal.common.interfaces import ChangeHandler, Unsubscribe

logger = logging.getLogger(__name__)


class _HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, list[ChangeHandler]] = {}

    def add(self, table: str, handler: ChangeHandler) -> Unsubscribe:
        self._handlers.setdefault(table, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(table, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def has_handlers(self, table: str) -> bool:
        return bool(self._handlers.get(table))

    def fire(self, table: str, payload: Any) -> None:
        for handler in list(self._handlers.get(table, [])):
            handler(payload)


class InMemoryLedger:
    """Process-local balance store with synchronous change notifications."""

    def __init__(
        self,
        rows: Iterable[EncryptedBalanceRow] = (),
        table: str = "balances",
    ):
        self.table = table
        self._rows: dict[str, EncryptedBalanceRow] = {row.address: row for row in rows}
        self._registry = _HandlerRegistry()
        self.queries = 0

    async def query_by_fingerprint(self, fingerprint: str) -> list[EncryptedBalanceRow]:
        self.queries += 1
        return [row for row in self._rows.values() if row.fingerprint == fingerprint]

    def on_change(self, table: str, handler: ChangeHandler) -> Unsubscribe:
        return self._registry.add(table, handler)

    def upsert(self, row: EncryptedBalanceRow) -> None:
        event = "UPDATE" if row.address in self._rows else "INSERT"
        self._rows[row.address] = row
        self.notify({"event": event, "address": row.address})

    def delete(self, address: str) -> None:
        if self._rows.pop(address, None) is not None:
            self.notify({"event": "DELETE", "address": address})

    def notify(self, payload: Any = None) -> None:
        self._registry.fire(self.table, payload)

    @property
    def rows(self) -> list[EncryptedBalanceRow]:
        return list(self._rows.values())


class RestLedgerSource:
    """Ledger reached over a PostgREST-style HTTP API.

    Changes are detected by polling the table's revision counter; the first
    poll always triggers, so nothing written before the poller started is
    missed.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        table: str = "balances",
        timeout: float = 10.0,
        poll_interval: float = 2.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._registry = _HandlerRegistry()
        self._pollers: dict[str, asyncio.Task[None]] = {}

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        r = requests.get(
            f"{self.base_url}{path}",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json()

    async def query_by_fingerprint(self, fingerprint: str) -> list[EncryptedBalanceRow]:
        try:
            data = await asyncio.to_thread(
                self._get,
                f"/rest/v1/{self.table}",
                {"select": "*", "encryption_key": f"eq.{fingerprint}"},
            )
        except (requests.RequestException, ValueError) as err:
            msg = f"ledger query failed: {err}"
            raise QueryFailed(msg) from err

        if not isinstance(data, list):
            msg = "ledger returned a non-list response"
            raise QueryFailed(msg)

        rows = []
        for item in data:
            try:
                rows.append(EncryptedBalanceRow.model_validate(item))
            except ValidationError as err:
                logger.warning("Ignoring unparseable ledger row: %s", err)
        return rows

    def on_change(self, table: str, handler: ChangeHandler) -> Unsubscribe:
        unsubscribe = self._registry.add(table, handler)
        if table not in self._pollers:
            self._pollers[table] = asyncio.get_running_loop().create_task(
                self._poll(table)
            )

        def unsubscribe_and_stop() -> None:
            unsubscribe()
            if not self._registry.has_handlers(table):
                poller = self._pollers.pop(table, None)
                if poller is not None:
                    poller.cancel()

        return unsubscribe_and_stop

    async def fetch_revision(self, table: str) -> int:
        data = await asyncio.to_thread(self._get, f"/changes/{table}")
        return ChangeFeedResponse.model_validate(data).revision

    async def _poll(self, table: str) -> None:
        last_revision: int | None = None
        while True:
            try:
                revision = await self.fetch_revision(table)
            except (requests.RequestException, ValueError) as err:
                logger.warning("Change feed poll for %s failed: %s", table, err)
            else:
                if revision != last_revision:
                    last_revision = revision
                    self._registry.fire(table, {"table": table, "revision": revision})
            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        pollers = list(self._pollers.values())
        self._pollers.clear()
        for poller in pollers:
            poller.cancel()
        for poller in pollers:
            with contextlib.suppress(asyncio.CancelledError):
                await poller


class RestNetworkKeySource:
    """Fetches the confidential-compute network's public key over HTTP."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _fetch(self) -> NetworkKeyResponse:
        r = requests.get(f"{self.base_url}/mxe/public-key", timeout=self.timeout)
        r.raise_for_status()
        return NetworkKeyResponse.model_validate(r.json())

    async def fetch_network_public_key(self) -> bytes:
        resp = await asyncio.to_thread(self._fetch)
        if resp.cipher_suite != CIPHER_SUITE:
            msg = "Cipher suite mismatch"
            raise ValueError(msg)
        return bytes.fromhex(resp.public_key)
