"""
Pydantic models for ledger rows and request/response validation.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
)

from otcbal.common.crypto import FINGERPRINT_PREFIX, MAX_AMOUNT


def _coerce_bytes(value: Any) -> bytes:
    """Accept raw bytes, ``\\x``-prefixed or bare hex, or an integer array."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value[len(FINGERPRINT_PREFIX) :] if value.startswith(FINGERPRINT_PREFIX) else value
        return bytes.fromhex(text)
    if isinstance(value, list) and all(isinstance(item, int) for item in value):
        return bytes(value)
    msg = f"cannot interpret {type(value).__name__} as bytes"
    raise ValueError(msg)


def _hex_bytes(value: bytes) -> str:
    return FINGERPRINT_PREFIX + value.hex()


HexBytes = Annotated[
    bytes,
    BeforeValidator(_coerce_bytes),
    PlainSerializer(_hex_bytes, return_type=str, when_used="json"),
]


class EncryptedBalanceRow(BaseModel):
    """A balance row exactly as the ledger stores it."""

    model_config = ConfigDict(populate_by_name=True)

    address: str
    controller: str
    mint: str
    fingerprint: str = Field(alias="encryption_key")
    ciphertexts: list[HexBytes]
    nonce: HexBytes


class NetworkKeyResponse(BaseModel):
    public_key: str
    cipher_suite: str


class ChangeFeedResponse(BaseModel):
    table: str
    revision: int


class CreditBalanceRequest(BaseModel):
    owner_public_key: str
    controller: str
    mint: str
    amount: int = Field(ge=0, le=MAX_AMOUNT)
    committed_amount: int = Field(default=0, ge=0, le=MAX_AMOUNT)
    address: str | None = None


class ClientConfig(BaseModel):
    ledger_url: str | None = None
    ledger_api_key: str | None = None
    network_url: str | None = None
    balances_table: str | None = None
    query_timeout: float | None = None
    poll_interval: float | None = None
    log_level: int | None = None
