"""
Data persistence utilities.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path  # noqa: TC003

from pydantic import ValidationError

from otcbal.common.models import EncryptedBalanceRow

logger = logging.getLogger(__name__)


class DataPersistence:
    """Handles loading and saving the dev ledger's balance rows."""

    @staticmethod
    def load_rows(file_path: Path) -> list[EncryptedBalanceRow]:
        """Load balance rows from file."""
        try:
            with file_path.open() as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt balances file %s", file_path)
            return []

        rows = []
        for item in data:
            try:
                rows.append(EncryptedBalanceRow.model_validate(item))
            except ValidationError as err:
                logger.warning("Skipping invalid stored row: %s", err)
        return rows

    @staticmethod
    def save_rows(file_path: Path, rows: list[EncryptedBalanceRow]) -> None:
        """Save balance rows to file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with file_path.open("w") as f:
            json.dump([row.model_dump(mode="json", by_alias=True) for row in rows], f)
