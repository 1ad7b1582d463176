"""
Key generator for the dev network's X25519 key pair.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from otcbal.common.config import Config

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class KeyGenerator:
    """Key generator for creating the network (MXE) encryption keys."""

    def __init__(self, keys_dir: Path | None = None):
        config = Config()
        self.keys_dir = keys_dir or config.KEYS_DIR

    def generate_keys(self) -> None:
        """Generate and save network public/private keys."""
        logger.info("Generating X25519 network keys...")

        private_key = X25519PrivateKey.generate()
        public_key = private_key.public_key()

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

        private_path = self.keys_dir / "mxe_private.key"
        public_path = self.keys_dir / "mxe_public.key"
        self.keys_dir.mkdir(parents=True, exist_ok=True)

        with private_path.open("wb") as f:
            f.write(private_pem)
        private_path.chmod(0o600)

        with public_path.open("wb") as f:
            f.write(public_pem)

        logger.info("Keys generated and saved:")
        logger.info("  Private: %s", private_path)
        logger.info("  Public: %s", public_path)
        logger.info("Keep the private key secure!")
