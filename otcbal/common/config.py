"""
Configuration settings for the confidential balance client and dev ledger.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, cast

from cryptography.hazmat.primitives import serialization

from otcbal.common.crypto import (
    CIPHER_SUITE,
    FINGERPRINT_PREFIX,
    KEY_LENGTH,
    ROW_NONCE_LENGTH,
)

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.x25519 import (
        X25519PrivateKey,
        X25519PublicKey,
    )


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Ledger access
        self.LEDGER_URL: str = os.getenv("OTCBAL_LEDGER_URL", "http://127.0.0.1:8000")
        self.LEDGER_API_KEY: str | None = os.getenv("OTCBAL_LEDGER_API_KEY")
        self.NETWORK_URL: str = os.getenv("OTCBAL_NETWORK_URL", self.LEDGER_URL)
        self.BALANCES_TABLE: str = "balances"
        self.QUERY_TIMEOUT: float = 10.0  # Seconds per ledger request
        self.POLL_INTERVAL: float = 2.0  # Seconds between change-feed polls

        # Server settings
        self.ADMIN_PASSWORD: str | None = os.getenv("OTCBAL_ADMIN_PASSWORD")
        self.SERVER_HOST: str = os.getenv("OTCBAL_SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT: int = int(os.getenv("OTCBAL_SERVER_PORT", "8000"))
        self.SERVER_URL: str = f"http://{self.SERVER_HOST}:{self.SERVER_PORT}"

        # File paths
        self.BASE_DIR: Path = Path(__file__).parent.parent
        self.DATA_DIR: Path = self.BASE_DIR / "data"
        self.KEYS_DIR: Path = Path(
            os.getenv("OTCBAL_KEYS_DIR", str(self.BASE_DIR / "server"))
        )
        self.NETWORK_PUBLIC_KEY_PATH: Path = self.KEYS_DIR / "mxe_public.key"
        self.NETWORK_PRIVATE_KEY_PATH: Path = self.KEYS_DIR / "mxe_private.key"
        self.BALANCES_FILE_PATH: Path = self.DATA_DIR / "balances.json"

        # Protocol constants
        self.PROTOCOL_VERSION: int = 1
        self.CIPHER_SUITE: str = CIPHER_SUITE
        self.KEY_LENGTH: int = KEY_LENGTH
        self.ROW_NONCE_LENGTH: int = ROW_NONCE_LENGTH
        self.FINGERPRINT_PREFIX: str = FINGERPRINT_PREFIX

        # Logging
        self.LOG_LEVEL: int = getattr(
            logging, os.getenv("OTCBAL_LOG_LEVEL", "INFO").upper(), logging.INFO
        )

    def get_network_keys(
        self, keys_dir: Path | None = None
    ) -> tuple[X25519PublicKey, X25519PrivateKey]:
        """Load the network (MXE) key pair from files."""
        public_path = self.NETWORK_PUBLIC_KEY_PATH
        private_path = self.NETWORK_PRIVATE_KEY_PATH
        if keys_dir is not None:
            public_path = keys_dir / public_path.name
            private_path = keys_dir / private_path.name
        try:
            with public_path.open("rb") as f:
                network_pub = cast(
                    "X25519PublicKey", serialization.load_pem_public_key(f.read())
                )
            with private_path.open("rb") as f:
                network_priv = cast(
                    "X25519PrivateKey",
                    serialization.load_pem_private_key(f.read(), None),
                )
        except FileNotFoundError as err:
            msg = (
                f"Network keys not found at {public_path} and "
                f"{private_path}. Run 'otcbal keygen' to generate them."
            )
            raise ValueError(msg) from err

        return network_pub, network_priv
