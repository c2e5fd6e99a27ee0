"""
Wallet risk scoring: behavioral anomaly of a wallet's latest transaction against its
own history.

Pure function over a list of transactions; no database access. Signals:

- new_counterparty (30): the latest counterparty never appears in history.
- amount_anomaly (0-30): |z| / 3 * 30 with z from the history's sample mean/stdev.
- new_token (20): first transaction in this token.
- time_anomaly (0-20): with >= 5 history items, 15 when the UTC hour is more than
  2 hours (circular) from every historical hour plus 5 for an unseen weekday; with
  fewer, 20 when the hour falls in 01-05 UTC.

Composite is min(100, sum). new_counterparty and new_token need at least one
historical transaction.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from anchor_recon.core.numeric import round2, to_decimal
from anchor_recon.core.timeutil import ms_to_datetime, now_ms
from anchor_recon.database.schemas import RiskBreakdown, RiskSummary

NEW_COUNTERPARTY_POINTS = 30
AMOUNT_ANOMALY_MAX = 30
AMOUNT_Z_FOR_MAX = 3
NEW_TOKEN_POINTS = 20
UNUSUAL_HOUR_POINTS = 15
UNUSUAL_WEEKDAY_POINTS = 5
NIGHT_HOUR_POINTS = 20
NIGHT_HOURS = range(1, 6)
PATTERN_MIN_HISTORY = 5
HOUR_TOLERANCE = 2
MAX_RISK = 100


@dataclass
class RiskProfile:
    wallet_address: str
    risk_score: float
    breakdown: RiskBreakdown
    summary: RiskSummary
    last_calculated: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "risk_score": self.risk_score,
            "risk_breakdown": self.breakdown.model_dump(mode="json"),
            "summary": self.summary.model_dump(mode="json"),
            "last_calculated": self.last_calculated,
        }


def counterparty(tx: Any, wallet: str) -> str | None:
    """The other side of tx from wallet's point of view, lowercased."""
    sender = (tx.sender_address or "").lower()
    receiver = (tx.receiver_address or "").lower()
    if sender == wallet:
        return receiver or None
    if receiver == wallet:
        return sender or None
    return None


def _hour_distance(a: int, b: int) -> int:
    d = abs(a - b) % 24
    return min(d, 24 - d)


def _time_anomaly(latest_ts: int, history_ts: Sequence[int]) -> int:
    latest = ms_to_datetime(latest_ts)
    if len(history_ts) >= PATTERN_MIN_HISTORY:
        seen = [ms_to_datetime(ts) for ts in history_ts]
        points = 0
        if all(_hour_distance(latest.hour, h.hour) > HOUR_TOLERANCE for h in seen):
            points += UNUSUAL_HOUR_POINTS
        if latest.weekday() not in {h.weekday() for h in seen}:
            points += UNUSUAL_WEEKDAY_POINTS
        return points
    return NIGHT_HOUR_POINTS if latest.hour in NIGHT_HOURS else 0


def _amount_anomaly(latest: Decimal, history: Sequence[Decimal]) -> tuple[Decimal, Decimal, Decimal]:
    """Return (points, mean, stdev) for the history baseline."""
    if not history:
        return Decimal(0), Decimal(0), Decimal(0)
    mean = statistics.mean(history)
    if len(history) < 2:
        return Decimal(0), mean, Decimal(0)
    stdev = statistics.stdev(history)
    if stdev == 0:
        return Decimal(0), mean, stdev
    z = abs(latest - mean) / stdev
    points = min(Decimal(AMOUNT_ANOMALY_MAX), round2(z / AMOUNT_Z_FOR_MAX * AMOUNT_ANOMALY_MAX))
    return points, mean, stdev


def score_wallet(wallet: str, transactions: Sequence[Any], calculated_at: int | None = None) -> RiskProfile:
    """
    Score wallet from its transactions (any order). The latest by timestamp is the one
    evaluated; the rest form the history. Amounts must parse as decimals.
    """
    wallet = wallet.strip().lower()
    ordered = sorted(transactions, key=lambda t: (int(t.timestamp), getattr(t, "id", None) or 0))
    calculated_at = calculated_at or now_ms()
    if not ordered:
        return RiskProfile(
            wallet_address=wallet,
            risk_score=0.0,
            breakdown=RiskBreakdown(),
            summary=RiskSummary(),
            last_calculated=calculated_at,
        )

    latest, history = ordered[-1], ordered[:-1]
    known_parties = {p for p in (counterparty(t, wallet) for t in history) if p}
    known_tokens = {t.token_symbol for t in history}
    latest_party = counterparty(latest, wallet)

    new_party = NEW_COUNTERPARTY_POINTS if history and latest_party and latest_party not in known_parties else 0
    new_token = NEW_TOKEN_POINTS if history and latest.token_symbol not in known_tokens else 0
    amount_points, mean, stdev = _amount_anomaly(
        to_decimal(latest.amount_gross),
        [to_decimal(t.amount_gross) for t in history],
    )
    time_points = _time_anomaly(int(latest.timestamp), [int(t.timestamp) for t in history])

    breakdown = RiskBreakdown(
        new_counterparty=new_party,
        amount_anomaly=float(amount_points),
        new_token=new_token,
        time_anomaly=time_points,
    )
    total = round2(Decimal(new_party) + amount_points + Decimal(new_token) + Decimal(time_points))
    all_parties = {p for p in (counterparty(t, wallet) for t in ordered) if p}
    summary = RiskSummary(
        mean_amount=float(round2(mean)),
        std_dev=float(round2(stdev)),
        tx_count=len(ordered),
        unique_counterparties=len(all_parties),
        unique_tokens=len({t.token_symbol for t in ordered}),
    )
    return RiskProfile(
        wallet_address=wallet,
        risk_score=float(min(Decimal(MAX_RISK), total)),
        breakdown=breakdown,
        summary=summary,
        last_calculated=calculated_at,
    )
