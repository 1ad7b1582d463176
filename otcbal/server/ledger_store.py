"""
Balance row storage for the dev ledger server.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .persistence import DataPersistence

if TYPE_CHECKING:
    from pathlib import Path

    from otcbal.common.models import EncryptedBalanceRow


class LedgerStore:
    """Keeps rows keyed by address and a revision counter per write."""

    def __init__(self, data_file_path: Path | None = None):
        self.data_file_path = data_file_path
        self.rows: dict[str, EncryptedBalanceRow] = {}
        if data_file_path is not None:
            self.rows = {
                row.address: row for row in DataPersistence.load_rows(data_file_path)
            }
        self.revision = 0

    def find_by_fingerprint(self, fingerprint: str) -> list[EncryptedBalanceRow]:
        """Exact-match lookup on the encryption key column."""
        return [row for row in self.rows.values() if row.fingerprint == fingerprint]

    def upsert(self, row: EncryptedBalanceRow) -> None:
        self.rows[row.address] = row
        self._committed()

    def delete(self, address: str) -> bool:
        if self.rows.pop(address, None) is None:
            return False
        self._committed()
        return True

    def _committed(self) -> None:
        self.revision += 1
        if self.data_file_path is not None:
            DataPersistence.save_rows(self.data_file_path, list(self.rows.values()))
