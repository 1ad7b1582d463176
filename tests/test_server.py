from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from fastapi.testclient import TestClient

from otcbal.client.domain.decoder import BalanceDecoder
from otcbal.client.domain.entities import EncryptionKeyPair
from otcbal.common.config import Config
from otcbal.common.crypto import CIPHER_SUITE, derive_cipher
from otcbal.common.models import EncryptedBalanceRow
from otcbal.server.core import LedgerServer
from otcbal.server.keygen import KeyGenerator

ADMIN = {"x-admin-password": "testpassword"}


@pytest.fixture
def temp_keys_dir(tmp_path: Path) -> Path:
    """Create temporary keys directory with network keys."""
    keys_dir = tmp_path / "keys"
    KeyGenerator(keys_dir).generate_keys()
    return keys_dir


@pytest.fixture
def server(temp_keys_dir: Path, tmp_path: Path) -> LedgerServer:
    return LedgerServer(
        keys_dir=temp_keys_dir,
        admin_password="testpassword",
        data_file_path=tmp_path / "balances.json",
    )


@pytest.fixture
def client(server: LedgerServer) -> TestClient:
    return TestClient(server.app)


def credit(client: TestClient, owner: EncryptionKeyPair, mint: str, amount: int, **extra):
    body = {
        "owner_public_key": owner.public_key.hex(),
        "controller": "controller-1",
        "mint": mint,
        "amount": amount,
        **extra,
    }
    return client.post("/admin/balances", json=body, headers=ADMIN)


def query(client: TestClient, owner: EncryptionKeyPair):
    return client.get(
        "/rest/v1/balances",
        params={"select": "*", "encryption_key": f"eq.{owner.fingerprint}"},
    )


def test_server_initialization(temp_keys_dir: Path) -> None:
    server = LedgerServer(keys_dir=temp_keys_dir)
    config = Config()
    assert server.table == config.BALANCES_TABLE
    assert server.server_port == config.SERVER_PORT
    assert server.store.revision == 0


def test_server_requires_keys(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="otcbal keygen"):
        LedgerServer(keys_dir=tmp_path / "missing")


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200  # noqa: PLR2004
    assert response.json()["status"] == "ok"


def test_network_public_key(client: TestClient, temp_keys_dir: Path) -> None:
    response = client.get("/mxe/public-key")
    data = response.json()

    public_key = serialization.load_pem_public_key(
        (temp_keys_dir / "mxe_public.key").read_bytes()
    ).public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    assert data == {"public_key": public_key.hex(), "cipher_suite": CIPHER_SUITE}


def test_credit_then_query_decodes(client: TestClient, server: LedgerServer) -> None:
    owner = EncryptionKeyPair.generate()
    response = credit(client, owner, "USDC", 500, committed_amount=50)
    assert response.status_code == 200  # noqa: PLR2004
    assert response.json()["revision"] == 1

    rows = query(client, owner).json()
    assert len(rows) == 1
    assert rows[0]["encryption_key"] == owner.fingerprint
    assert rows[0]["nonce"].startswith("\\x")

    row = EncryptedBalanceRow.model_validate(rows[0])
    cipher = derive_cipher(owner.private_key, server.network_public_bytes)
    balance = BalanceDecoder(cipher).decode_row(row)
    assert (balance.mint, balance.amount, balance.committed_amount) == ("USDC", 500, 50)


def test_credit_same_mint_overwrites_row(client: TestClient) -> None:
    owner = EncryptionKeyPair.generate()
    first = credit(client, owner, "USDC", 500).json()
    second = credit(client, owner, "USDC", 900).json()

    assert first["address"] == second["address"]
    assert len(query(client, owner).json()) == 1


def test_query_filters_by_fingerprint(client: TestClient) -> None:
    alice = EncryptionKeyPair.generate()
    bob = EncryptionKeyPair.generate()
    credit(client, alice, "USDC", 500)
    credit(client, bob, "USDC", 700)

    rows = query(client, alice).json()
    assert [row["encryption_key"] for row in rows] == [alice.fingerprint]


def test_query_requires_eq_filter(client: TestClient) -> None:
    assert client.get("/rest/v1/balances").status_code == 400  # noqa: PLR2004
    response = client.get("/rest/v1/balances", params={"encryption_key": "like.%"})
    assert response.status_code == 400  # noqa: PLR2004


def test_unknown_table(client: TestClient) -> None:
    owner = EncryptionKeyPair.generate()
    response = client.get(
        "/rest/v1/orders", params={"encryption_key": f"eq.{owner.fingerprint}"}
    )
    assert response.status_code == 404  # noqa: PLR2004
    assert client.get("/changes/orders").status_code == 404  # noqa: PLR2004


def test_admin_password_required(client: TestClient) -> None:
    owner = EncryptionKeyPair.generate()
    body = {
        "owner_public_key": owner.public_key.hex(),
        "controller": "controller-1",
        "mint": "USDC",
        "amount": 1,
    }
    assert client.post("/admin/balances", json=body).status_code == 403  # noqa: PLR2004
    response = client.post(
        "/admin/balances", json=body, headers={"x-admin-password": "wrong"}
    )
    assert response.status_code == 403  # noqa: PLR2004


def test_admin_disabled_without_password(temp_keys_dir: Path, monkeypatch) -> None:
    monkeypatch.delenv("OTCBAL_ADMIN_PASSWORD", raising=False)
    client = TestClient(LedgerServer(keys_dir=temp_keys_dir).app)
    owner = EncryptionKeyPair.generate()

    response = credit(client, owner, "USDC", 1)
    assert response.status_code in (404, 405)


def test_credit_rejects_bad_owner_key(client: TestClient) -> None:
    body = {"owner_public_key": "nothex", "controller": "c", "mint": "USDC", "amount": 1}
    response = client.post("/admin/balances", json=body, headers=ADMIN)
    assert response.status_code == 400  # noqa: PLR2004

    body["owner_public_key"] = "00" * 32
    response = client.post("/admin/balances", json=body, headers=ADMIN)
    assert response.status_code == 400  # noqa: PLR2004


def test_credit_rejects_out_of_range_amount(client: TestClient) -> None:
    owner = EncryptionKeyPair.generate()
    assert credit(client, owner, "USDC", -1).status_code == 422  # noqa: PLR2004
    assert credit(client, owner, "USDC", 2**128).status_code == 422  # noqa: PLR2004


def test_change_feed_revision(client: TestClient) -> None:
    owner = EncryptionKeyPair.generate()
    assert client.get("/changes/balances").json() == {"table": "balances", "revision": 0}

    address = credit(client, owner, "USDC", 500).json()["address"]
    assert client.get("/changes/balances").json()["revision"] == 1

    response = client.delete(f"/admin/balances/{address}", headers=ADMIN)
    assert response.status_code == 200  # noqa: PLR2004
    assert client.get("/changes/balances").json()["revision"] == 2  # noqa: PLR2004
    assert query(client, owner).json() == []


def test_delete_unknown_address(client: TestClient) -> None:
    response = client.delete("/admin/balances/nope", headers=ADMIN)
    assert response.status_code == 404  # noqa: PLR2004


def test_rows_persist_across_restart(temp_keys_dir: Path, tmp_path: Path) -> None:
    data_file = tmp_path / "balances.json"
    owner = EncryptionKeyPair.generate()
    first = LedgerServer(
        keys_dir=temp_keys_dir, admin_password="testpassword", data_file_path=data_file
    )
    credit(TestClient(first.app), owner, "USDC", 500)

    second = LedgerServer(keys_dir=temp_keys_dir, data_file_path=data_file)
    rows = query(TestClient(second.app), owner).json()

    assert len(rows) == 1
    assert rows[0]["mint"] == "USDC"
