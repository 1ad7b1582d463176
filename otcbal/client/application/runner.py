"""
Application layer: Push-to-pull bridge between ledger notifications and syncs.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from otcbal.client.application.balance_sync import BalanceSync
    from otcbal.common.interfaces import ILedgerSource, Unsubscribe


class SyncRunner:
    """Application service scheduling coalesced balance syncs.

    A notification carries no usable payload; it only asks for a full sync.
    Requests arriving while a sync is in flight collapse into a single
    follow-up run, which starts after the current one with a fresh query.
    """

    def __init__(
        self,
        balance_sync: BalanceSync,
        ledger: ILedgerSource,
        table: str,
        on_error_callback: Callable[[Exception], None] | None = None,
    ):
        self.balance_sync = balance_sync
        self.ledger = ledger
        self.table = table
        self.on_error_callback = on_error_callback
        self.logger = logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending = False
        self._stopped = False
        self._unsubscribe: Unsubscribe | None = None
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` after every completed sync run."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Subscribe to ledger changes and schedule the first sync."""
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        if self._unsubscribe is None:
            self._unsubscribe = self.ledger.on_change(self.table, self.notify)
        self.logger.info("Watching ledger table %s", self.table)
        self.request()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self) -> None:
        """Ask for a sync; coalesces with one that is already running.

        Ignored until ``start()`` has bound the runner to an event loop.
        """
        if self._stopped or self._loop is None:
            return
        if self.is_running:
            self._pending = True
            return
        self._pending = False
        self._task = self._loop.create_task(self._run())

    def notify(self, payload: Any = None) -> None:
        """Thread-safe trigger; any payload is advisory and ignored."""
        self.logger.debug("Change notification for %s", self.table)
        if self._loop is None or self._stopped:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self.request()
        else:
            self._loop.call_soon_threadsafe(self.request)

    async def _run(self) -> None:
        while True:
            self._pending = False
            try:
                await self.balance_sync.sync()
            except Exception as e:
                self.logger.exception("Balance sync crashed")
                if self.on_error_callback:
                    self.on_error_callback(e)
            for listener in list(self._listeners):
                listener()
            if self._stopped or not self._pending:
                break

    async def wait_idle(self) -> None:
        """Wait until no sync is running or pending."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def stop(self) -> None:
        """Unsubscribe, cancel any in-flight sync and clear the balances."""
        self._stopped = True
        self._pending = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.balance_sync.teardown()
        self.logger.info("Stopped watching ledger table %s", self.table)
