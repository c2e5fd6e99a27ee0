"""
Drift Detector: ledger balance vs on-chain balance per wallet/token.

The internal balance sums reconciled claims of type Transfer/Mint (received minus
sent); Approval moves no funds. drift = onchain - internal and
percentage = drift / internal * 100. With internal = 0 the percentage is 0 when
onchain is also 0, otherwise 100.

Alert level: critical at |pct| >= critical_percent, warning at |pct| >= alert_percent,
else none. Stored records are re-evaluated against the current thresholds on read.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from anchor_recon.audit.service import AuditAction, EntityType, audit_log
from anchor_recon.config.service import MatchingConfigService, matching_config_service
from anchor_recon.config.settings import DriftThresholds
from anchor_recon.core.exceptions import ExternalSourceError, ValidationError
from anchor_recon.core.locks import run_exclusive
from anchor_recon.core.numeric import canonical, round2, to_decimal
from anchor_recon.core.results import DriftSyncResult, ItemFailure
from anchor_recon.core.timeutil import now_ms
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import (
    RECONCILED_STATUSES,
    AlertLevel,
    Transaction,
    TxSource,
    TxType,
    WalletBalance,
)
from anchor_recon.database.schemas import DriftState
from anchor_recon.drift.balance_source import BalanceSource
from anchor_recon.recon_logging import bind_wallet, get_logger

logger = get_logger(__name__)

HUNDRED = Decimal(100)
FUND_MOVING_TYPES = (TxType.TRANSFER.value, TxType.MINT.value)


@dataclass
class DriftComputation:
    drift: Decimal
    percentage: Decimal
    alert_level: AlertLevel


def alert_level_for(percentage: Decimal | float, thresholds: DriftThresholds) -> AlertLevel:
    pct = abs(to_decimal(percentage))
    if pct >= to_decimal(thresholds.critical_percent):
        return AlertLevel.CRITICAL
    if pct >= to_decimal(thresholds.alert_percent):
        return AlertLevel.WARNING
    return AlertLevel.NONE


def compute_drift(internal: Decimal, onchain: Decimal, thresholds: DriftThresholds) -> DriftComputation:
    drift = onchain - internal
    if internal == 0:
        percentage = Decimal(0) if onchain == 0 else HUNDRED
    else:
        percentage = drift / internal * HUNDRED
    percentage = round2(percentage)
    return DriftComputation(drift=drift, percentage=percentage, alert_level=alert_level_for(percentage, thresholds))


def internal_balance(session: Session, wallet: str, token: str) -> Decimal:
    rows = (
        session.query(Transaction.sender_address, Transaction.receiver_address, Transaction.amount_gross)
        .filter(
            Transaction.source != TxSource.ONCHAIN.value,
            Transaction.status.in_(RECONCILED_STATUSES),
            Transaction.type.in_(FUND_MOVING_TYPES),
            Transaction.token_symbol == token,
            or_(
                func.lower(Transaction.sender_address) == wallet,
                func.lower(Transaction.receiver_address) == wallet,
            ),
        )
        .all()
    )
    balance = Decimal(0)
    for sender, receiver, amount in rows:
        value = to_decimal(amount)
        if (receiver or "").lower() == wallet:
            balance += value
        if (sender or "").lower() == wallet:
            balance -= value
    return balance


def _record_dict(row: WalletBalance, thresholds: DriftThresholds) -> dict[str, Any]:
    out = row.to_dict()
    out["alert_level"] = alert_level_for(row.drift_percentage, thresholds).value
    return out


class DriftDetector:
    def __init__(
        self,
        balance_source: BalanceSource,
        config_service: MatchingConfigService | None = None,
    ) -> None:
        self._source = balance_source
        self._config = config_service or matching_config_service

    def compute(
        self,
        wallet: str,
        token: str,
        actor: str = "system",
        thresholds: DriftThresholds | None = None,
    ) -> dict[str, Any]:
        """
        Read the on-chain balance, compare it to the ledger and persist the record.
        Raises ExternalSourceError when the balance cannot be read.
        """
        wallet = (wallet or "").strip().lower()
        token = (token or "").strip()
        if not wallet or not token:
            raise ValidationError("wallet and token are required")
        thresholds = thresholds or self._config.load().drift_thresholds
        onchain = self._source.get_balance(wallet, token)
        log = bind_wallet(wallet)

        with session_scope() as session:
            internal = internal_balance(session, wallet, token)
            result = compute_drift(internal, onchain, thresholds)
            row = (
                session.query(WalletBalance)
                .filter(WalletBalance.wallet_address == wallet, WalletBalance.token_symbol == token)
                .one_or_none()
            )
            if row is None:
                row = WalletBalance(wallet_address=wallet, token_symbol=token)
                session.add(row)
            row.internal_balance = canonical(internal)
            row.onchain_balance = canonical(onchain)
            row.drift = canonical(result.drift)
            row.drift_percentage = float(result.percentage)
            row.alert_level = result.alert_level.value
            row.last_updated = now_ms()
            session.flush()
            if result.alert_level is not AlertLevel.NONE:
                audit_log.log(
                    AuditAction.DRIFT_ALERT,
                    EntityType.WALLET_BALANCE,
                    row.id,
                    actor,
                    new_state=DriftState(
                        wallet_address=wallet,
                        token_symbol=token,
                        internal_balance=row.internal_balance,
                        onchain_balance=row.onchain_balance,
                        drift=row.drift,
                        drift_percentage=row.drift_percentage,
                        alert_level=row.alert_level,
                    ),
                    session=session,
                )
            out = row.to_dict()

        if result.alert_level is AlertLevel.NONE:
            log.info("drift_computed", token=token, drift=out["drift"], drift_percentage=out["drift_percentage"])
        else:
            log.warning(
                "drift_alert",
                token=token,
                drift=out["drift"],
                drift_percentage=out["drift_percentage"],
                alert_level=out["alert_level"],
            )
        return out

    def sync_all(self, actor: str = "system") -> DriftSyncResult:
        """
        Refresh every wallet/token pair the ledger knows about. A pair whose balance
        cannot be read is reported and skipped.
        """
        started = time.monotonic()
        result = DriftSyncResult()
        thresholds = self._config.load().drift_thresholds
        with run_exclusive("drift"):
            with session_scope() as session:
                pairs = _known_pairs(session)
            for index, (wallet, token) in enumerate(pairs):
                try:
                    result.items.append(self.compute(wallet, token, actor=actor, thresholds=thresholds))
                    result.synced += 1
                except (ExternalSourceError, ValueError, InvalidOperation) as e:
                    message = getattr(e, "message", str(e))
                    bind_wallet(wallet).warning("drift_balance_read_failed", token=token, error=message)
                    result.errors.append(
                        ItemFailure(
                            index=index,
                            error=message,
                            code=getattr(e, "code", None),
                            context={"wallet_address": wallet, "token_symbol": token},
                        )
                    )
        result.time_ms = int((time.monotonic() - started) * 1000)
        logger.info("drift_synced", synced=result.synced, failed=len(result.errors), time_ms=result.time_ms)
        return result

    def get_all(self) -> list[dict[str, Any]]:
        """Persisted drift records, largest absolute drift first."""
        thresholds = self._config.load().drift_thresholds
        with session_scope() as session:
            rows = session.query(WalletBalance).all()
            out = [_record_dict(r, thresholds) for r in rows]
        out.sort(key=lambda r: (-abs(to_decimal(r["drift"])), r["wallet_address"], r["token_symbol"]))
        return out

    def get_by_wallet(self, wallet: str) -> list[dict[str, Any]]:
        wallet = (wallet or "").strip().lower()
        if not wallet:
            raise ValidationError("wallet address is required")
        thresholds = self._config.load().drift_thresholds
        with session_scope() as session:
            rows = (
                session.query(WalletBalance)
                .filter(WalletBalance.wallet_address == wallet)
                .order_by(WalletBalance.token_symbol.asc())
                .all()
            )
            return [_record_dict(r, thresholds) for r in rows]


def _known_pairs(session: Session) -> list[tuple[str, str]]:
    """Distinct (wallet, token) pairs over every sender/receiver in the ledger."""
    pairs: set[tuple[str, str]] = set()
    rows = session.query(
        Transaction.sender_address, Transaction.receiver_address, Transaction.token_symbol
    ).distinct()
    for sender, receiver, token in rows:
        for address in (sender, receiver):
            if address:
                pairs.add((address.lower(), token))
    return sorted(pairs)
