"""
Tests for wallet risk scoring (risk.scorer) and the risk score cache (risk.service).
"""

from __future__ import annotations

from types import SimpleNamespace

from anchor_recon.risk.scorer import score_wallet
from anchor_recon.risk.service import risk_service

WALLET = "0x" + "a" * 40
FRIEND = "0x" + "b" * 40
STRANGER = "0x" + "c" * 40

HOUR_MS = 3_600_000
DAY_MS = 24 * HOUR_MS
# 1970-01-05 is a Monday; noon UTC
MONDAY_NOON = 4 * DAY_MS + 12 * HOUR_MS


def _tx(amount, ts, counterparty=FRIEND, token="DAI", outgoing=True, tx_id=None):
    sender, receiver = (WALLET, counterparty) if outgoing else (counterparty, WALLET)
    return SimpleNamespace(
        id=tx_id,
        amount_gross=str(amount),
        timestamp=ts,
        token_symbol=token,
        sender_address=sender,
        receiver_address=receiver,
    )


def _history(n=10):
    """n transactions of 45/55 (mean 50) at noon on consecutive days."""
    return [_tx(45 if i % 2 else 55, MONDAY_NOON + i * DAY_MS, tx_id=i + 1) for i in range(n)]


def test_large_amount_is_anomalous():
    """10 prior transactions averaging 50 +/- 5, then one of 500."""
    latest = _tx(500, MONDAY_NOON + 10 * DAY_MS, tx_id=11)
    profile = score_wallet(WALLET, _history() + [latest])
    assert profile.breakdown.amount_anomaly == 30.0
    assert profile.breakdown.new_counterparty == 0
    assert profile.breakdown.new_token == 0
    assert profile.breakdown.time_anomaly == 0
    assert profile.risk_score == 30.0
    assert profile.summary.tx_count == 11
    assert profile.summary.mean_amount == 50.0


def test_typical_amount_scores_low():
    latest = _tx(52, MONDAY_NOON + 10 * DAY_MS)
    profile = score_wallet(WALLET, _history() + [latest])
    assert profile.breakdown.amount_anomaly < 5
    assert profile.risk_score < 5


def test_new_counterparty_and_token():
    latest = _tx(50, MONDAY_NOON + 10 * DAY_MS, counterparty=STRANGER, token="USDC", outgoing=False)
    profile = score_wallet(WALLET, _history() + [latest])
    assert profile.breakdown.new_counterparty == 30
    assert profile.breakdown.new_token == 20
    assert profile.summary.unique_counterparties == 2
    assert profile.summary.unique_tokens == 2


def test_unusual_hour_with_history():
    """History covers every weekday at noon; 20:00 is more than 2 hours away."""
    latest = _tx(50, MONDAY_NOON + 10 * DAY_MS + 8 * HOUR_MS)
    profile = score_wallet(WALLET, _history() + [latest])
    assert profile.breakdown.time_anomaly == 15


def test_night_hour_with_little_history():
    night = _tx(10, 3 * HOUR_MS)
    profile = score_wallet(WALLET, [night])
    assert profile.breakdown.time_anomaly == 20
    assert profile.breakdown.new_counterparty == 0
    assert profile.risk_score == 20.0


def test_composite_is_capped():
    """History covers Monday..Saturday at noon; the latest lands on Sunday at 20:00."""
    sunday_evening = MONDAY_NOON + 6 * DAY_MS + 8 * HOUR_MS
    latest = _tx(5000, sunday_evening, counterparty=STRANGER, token="USDC")
    profile = score_wallet(WALLET, _history(6) + [latest])
    assert profile.breakdown.time_anomaly == 20
    assert profile.risk_score == 100.0


def test_no_transactions():
    profile = score_wallet(WALLET, [])
    assert profile.risk_score == 0.0
    assert profile.summary.tx_count == 0


def test_service_caches_and_recalculates(make_claim):
    for i in range(3):
        make_claim(amount_gross="50", timestamp=MONDAY_NOON + i * DAY_MS)
    first = risk_service.get(WALLET.upper().replace("0X", "0x"))
    assert first["wallet_address"] == WALLET
    assert first["summary"]["tx_count"] == 3
    assert risk_service.get(WALLET)["last_calculated"] == first["last_calculated"]

    result = risk_service.recalculate_all()
    assert result.synced == 2
    assert result.errors == []
    scores = risk_service.get_all()
    assert {s["wallet_address"] for s in scores} == {WALLET, FRIEND}
    assert scores[0]["risk_score"] >= scores[-1]["risk_score"]
