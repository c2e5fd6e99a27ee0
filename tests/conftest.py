"""
Pytest fixtures for Anchor Recon tests. Each test gets a fresh temporary SQLite DB.
"""

from __future__ import annotations

import itertools
from decimal import Decimal

import pytest

WALLET = "0x" + "a" * 40
COUNTERPARTY = "0x" + "b" * 40


@pytest.fixture
def recon_db(tmp_path, monkeypatch):
    """
    Point the engine at a temporary SQLite DB and create tables. Unset RECON_DB_URL and
    DATABASE_URL so we use SQLite; reset cached settings and engine around the test.
    """
    monkeypatch.delenv("RECON_DB_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DEFAULT_MIN_SCORE", raising=False)
    monkeypatch.setenv("RECON_DB_PATH", str(tmp_path / "recon.db"))

    from anchor_recon.config.settings import reset_settings_for_test
    from anchor_recon.database import init_db, reset_engine_for_test

    reset_settings_for_test()
    reset_engine_for_test()
    init_db()
    yield
    reset_engine_for_test()
    reset_settings_for_test()


@pytest.fixture
def make_anchor(recon_db):
    """Upsert an on-chain anchor (DAI, 100.0, t=1000) with optional overrides."""
    from anchor_recon.ledger.store import transaction_store

    counter = itertools.count(1)

    def make(**overrides):
        data = {
            "tx_hash": f"0xanchor{next(counter)}",
            "token_symbol": "DAI",
            "amount_gross": "100.0",
            "sender_address": WALLET,
            "receiver_address": COUNTERPARTY,
            "timestamp": 1000,
        }
        data.update(overrides)
        return transaction_store.upsert_anchor(data, actor="sync")

    return make


@pytest.fixture
def make_claim(recon_db):
    """Create an off-chain claim (DAI, 100.05, t=1015) with optional overrides."""
    from anchor_recon.ledger.store import transaction_store

    counter = itertools.count(1)

    def make(**overrides):
        data = {
            "tx_hash": f"0xclaim{next(counter)}",
            "source": "manual",
            "token_symbol": "DAI",
            "amount_gross": "100.05",
            "sender_address": WALLET,
            "receiver_address": COUNTERPARTY,
            "timestamp": 1015,
        }
        data.update(overrides)
        return transaction_store.create_claim(data, actor="user")

    return make


class FakeBalanceSource:
    """In-memory balances keyed by (wallet, token); unknown pairs read as a source failure."""

    def __init__(self) -> None:
        self.balances: dict[tuple[str, str], Decimal] = {}

    def get_balance(self, wallet, token):
        from anchor_recon.core.exceptions import ExternalSourceError

        key = (wallet.lower(), token)
        if key not in self.balances:
            raise ExternalSourceError(f"no balance for {wallet}/{token}")
        return self.balances[key]


class FakeAnchorSource:
    def __init__(self) -> None:
        self.records: dict[str, list[dict]] = {}
        self.failing: set[str] = set()

    def tokens(self):
        return sorted(set(self.records) | self.failing)

    def fetch_anchors(self, wallet, token):
        from anchor_recon.core.exceptions import ExternalSourceError

        if token in self.failing:
            raise ExternalSourceError(f"eth_getLogs failed for {token}")
        return list(self.records.get(token, []))


@pytest.fixture
def balances():
    return FakeBalanceSource()


@pytest.fixture
def anchor_source():
    return FakeAnchorSource()


@pytest.fixture
def client(recon_db, balances, anchor_source):
    """FastAPI TestClient with on-chain sources swapped for in-memory fakes."""
    from fastapi.testclient import TestClient

    from anchor_recon.api_server.dependencies import get_anchor_source, get_balance_source
    from anchor_recon.api_server.server import app

    app.dependency_overrides[get_balance_source] = lambda: balances
    app.dependency_overrides[get_anchor_source] = lambda: anchor_source
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
