"""
Development ledger server using FastAPI.

Plays both external roles on localnet: the confidential-compute network that
owns the network key and seals balances for users, and the indexed ledger
that stores the encrypted rows and announces changes.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from pathlib import Path
from typing import Annotated, Any

from cryptography.hazmat.primitives import serialization
from fastapi import FastAPI, Header, HTTPException

from otcbal.common import setup_logger
from otcbal.common.config import Config
from otcbal.common.crypto import (
    CIPHER_SUITE,
    CryptoUtils,
    derive_cipher,
    fingerprint,
    seal_balance,
)
from otcbal.common.exceptions import InvalidKeyMaterial, ValidationError
from otcbal.common.models import (
    ChangeFeedResponse,
    CreditBalanceRequest,
    EncryptedBalanceRow,
    NetworkKeyResponse,
)

from .ledger_store import LedgerStore

EQ_PREFIX = "eq."


class LedgerServer:
    """Dev ledger: network key holder, balance sealer and row store."""

    def __init__(
        self,
        config: Config | None = None,
        log_level: int | None = None,
        admin_password: str | None = None,
        server_host: str | None = None,
        server_port: int | None = None,
        keys_dir: Path | None = None,
        data_file_path: Path | None = None,
        table: str | None = None,
    ):
        config = config or Config()
        self.logger = logging.getLogger(__name__)
        setup_logger(self.logger, log_level if log_level is not None else config.LOG_LEVEL)
        self.admin_password = admin_password or config.ADMIN_PASSWORD
        self.server_host = server_host or config.SERVER_HOST
        self.server_port = server_port or config.SERVER_PORT
        self.keys_dir = keys_dir or config.KEYS_DIR
        self.table = table or config.BALANCES_TABLE
        self.network_pub, self.network_priv = config.get_network_keys(self.keys_dir)
        self.store = LedgerStore(data_file_path)
        self.app = FastAPI()

        self._setup_routes()

        self.logger.info(
            "Ledger server ready for http://%s:%s", self.server_host, self.server_port
        )
        if not self.admin_password:
            self.logger.warning("No admin password set; write endpoints disabled")

    def _setup_routes(self) -> None:
        """Setup API routes."""

        @self.app.get("/health")
        def health() -> dict[str, Any]:
            return {"status": "ok", "timestamp": int(time.time())}

        self.app.get("/mxe/public-key")(self.network_public_key)
        self.app.get("/rest/v1/{table}")(self.query_rows)
        self.app.get("/changes/{table}")(self.changes)
        if self.admin_password:
            self.app.post("/admin/balances")(self.credit_balance)
            self.app.delete("/admin/balances/{address}")(self.delete_balance)

    @property
    def network_public_bytes(self) -> bytes:
        return self.network_pub.public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )

    def _check_table(self, table: str) -> None:
        if table != self.table:
            raise HTTPException(404, f"unknown table: {table}")

    def _check_admin(self, password: str | None) -> None:
        if not password or not hmac.compare_digest(
            password.encode(), str(self.admin_password).encode()
        ):
            msg = "invalid admin password"
            raise ValidationError(msg, 403)

    async def network_public_key(self) -> NetworkKeyResponse:
        """Handle /mxe/public-key endpoint."""
        return NetworkKeyResponse(
            public_key=self.network_public_bytes.hex(), cipher_suite=CIPHER_SUITE
        )

    async def query_rows(
        self, table: str, encryption_key: str | None = None
    ) -> list[dict[str, Any]]:
        """Handle /rest/v1/{table}: exact match on the encryption key only."""
        self._check_table(table)
        if not encryption_key or not encryption_key.startswith(EQ_PREFIX):
            raise HTTPException(400, "an encryption_key=eq.<fingerprint> filter is required")
        rows = self.store.find_by_fingerprint(encryption_key[len(EQ_PREFIX) :])
        return [row.model_dump(mode="json", by_alias=True) for row in rows]

    async def changes(self, table: str) -> ChangeFeedResponse:
        """Handle /changes/{table} endpoint."""
        self._check_table(table)
        return ChangeFeedResponse(table=table, revision=self.store.revision)

    def seal_row(self, req: CreditBalanceRequest) -> EncryptedBalanceRow:
        """Encrypt a plaintext balance for its owner under a fresh nonce."""
        try:
            owner_key = bytes.fromhex(req.owner_public_key.replace("\\x", "", 1))
        except ValueError as err:
            msg = "owner_public_key must be hex"
            raise ValidationError(msg, 400) from err
        network_priv_raw = self.network_priv.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        try:
            cipher = derive_cipher(network_priv_raw, owner_key)
        except InvalidKeyMaterial as err:
            raise ValidationError(str(err), 400) from err

        owner_fingerprint = fingerprint(owner_key)
        nonce = CryptoUtils.random_row_nonce()
        address = req.address or hashlib.sha256(
            f"{owner_fingerprint}:{req.controller}:{req.mint}".encode()
        ).hexdigest()
        return EncryptedBalanceRow(
            address=address,
            controller=req.controller,
            mint=req.mint,
            fingerprint=owner_fingerprint,
            ciphertexts=seal_balance(
                req.amount,
                req.committed_amount,
                nonce,
                cipher,
                CryptoUtils.row_binding(req.controller, req.mint),
            ),
            nonce=nonce,
        )

    async def credit_balance(
        self,
        req: CreditBalanceRequest,
        x_admin_password: Annotated[str | None, Header()] = None,
    ) -> dict[str, Any]:
        """Handle /admin/balances endpoint."""
        try:
            self._check_admin(x_admin_password)
            row = self.seal_row(req)
        except ValidationError as e:
            raise HTTPException(e.status_code, str(e)) from e
        self.store.upsert(row)
        self.logger.info("Stored balance row %s (%s)", row.address, row.mint)
        return {"address": row.address, "revision": self.store.revision}

    async def delete_balance(
        self,
        address: str,
        x_admin_password: Annotated[str | None, Header()] = None,
    ) -> dict[str, Any]:
        """Handle DELETE /admin/balances/{address} endpoint."""
        try:
            self._check_admin(x_admin_password)
        except ValidationError as e:
            raise HTTPException(e.status_code, str(e)) from e
        if not self.store.delete(address):
            raise HTTPException(404, "balance not found")
        return {"address": address, "revision": self.store.revision}
