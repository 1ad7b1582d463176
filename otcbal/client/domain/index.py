"""Domain layer: Read access to the published balance set.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .entities import Balance, BalanceSet


class BalanceIndex:
    """Mint lookups over whatever balance set is currently published.

    Lookups never fetch; they read the snapshot returned by ``source``.
    """

    def __init__(self, source: Callable[[], BalanceSet]):
        self._source = source

    def lookup(self, mint: str) -> Balance | None:
        return self._source().by_mint.get(mint)

    def mints(self) -> list[str]:
        return list(self._source().by_mint)

    def __contains__(self, mint: object) -> bool:
        return mint in self._source().by_mint

    def __len__(self) -> int:
        return len(self._source().balances)
