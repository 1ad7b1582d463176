"""Infrastructure layer: Configuration loading and file operations.
"""

from __future__ import annotations

import logging
from pathlib import Path

from otcbal.client.domain.entities import EncryptionKeyPair
from otcbal.client.infrastructure.ledger import RestLedgerSource, RestNetworkKeySource
from otcbal.common import Configurable, setup_logger
from otcbal.common.config import Config
from otcbal.common.models import ClientConfig

CLIENT_SETTINGS = [
    "ledger_url",
    "ledger_api_key",
    "network_url",
    "balances_table",
    "query_timeout",
    "poll_interval",
    "log_level",
]


class ConfigLoader(Configurable):
    """Resolves client settings and loads key files."""

    ledger_url: str
    ledger_api_key: str | None
    network_url: str
    balances_table: str
    query_timeout: float
    poll_interval: float
    log_level: int

    def __init__(self, client_config: ClientConfig | None = None):
        self.config: Config = Config()
        overrides = (client_config or ClientConfig()).model_dump()
        self.apply_overrides(overrides, self.config, CLIENT_SETTINGS)
        # The network key is served by the ledger unless pointed elsewhere
        if overrides.get("ledger_url") and not overrides.get("network_url"):
            self.network_url = self.ledger_url

        # Setup logging
        self.logger = logging.getLogger("otcbal")
        setup_logger(self.logger, self.log_level)

    @staticmethod
    def load_key_pair(key_file: str | Path) -> EncryptionKeyPair:
        """Load a user key pair from a file holding the raw private key as hex."""
        key_path = Path(key_file)
        if not key_path.exists():
            msg = f"Key file not found: {key_path}"
            raise FileNotFoundError(msg)
        content = key_path.read_text().strip()
        try:
            private_key = bytes.fromhex(content)
        except ValueError as e:
            msg = f"Invalid key file format in {key_path}: {e}"
            raise ValueError(msg) from e
        return EncryptionKeyPair.from_private_bytes(private_key)

    @staticmethod
    def save_key_pair(key_pair: EncryptionKeyPair, key_file: str | Path) -> Path:
        key_path = Path(key_file)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_text(key_pair.private_key.hex() + "\n")
        key_path.chmod(0o600)
        return key_path

    def ledger_source(self) -> RestLedgerSource:
        return RestLedgerSource(
            self.ledger_url,
            api_key=self.ledger_api_key,
            table=self.balances_table,
            timeout=self.query_timeout,
            poll_interval=self.poll_interval,
        )

    def network_key_source(self) -> RestNetworkKeySource:
        return RestNetworkKeySource(self.network_url, timeout=self.query_timeout)
