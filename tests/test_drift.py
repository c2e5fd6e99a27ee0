"""
Tests for the Drift Detector: drift arithmetic, alert levels, persistence and sync.

The on-chain balance source is mocked; no network access.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from anchor_recon.audit.service import AuditFilters, audit_log
from anchor_recon.config.service import matching_config_service
from anchor_recon.config.settings import DriftThresholds
from anchor_recon.core.exceptions import ExternalSourceError
from anchor_recon.database.models import AlertLevel
from anchor_recon.drift.balance_source import JsonRpcBalanceSource
from anchor_recon.drift.detector import DriftDetector, compute_drift
from anchor_recon.matching.lifecycle import match_lifecycle

WALLET = "0x" + "a" * 40
COUNTERPARTY = "0x" + "b" * 40
THRESHOLDS = DriftThresholds(alert_percent=1, critical_percent=5)


def test_compute_drift_critical():
    """Internal 100.0, on-chain 94.0, warning 1%, critical 5%."""
    result = compute_drift(Decimal("100.0"), Decimal("94.0"), THRESHOLDS)
    assert result.drift == Decimal("-6.0")
    assert result.percentage == Decimal("-6.00")
    assert result.alert_level is AlertLevel.CRITICAL


def test_compute_drift_levels():
    assert compute_drift(Decimal(100), Decimal(98), THRESHOLDS).alert_level is AlertLevel.WARNING
    assert compute_drift(Decimal(100), Decimal("100.5"), THRESHOLDS).alert_level is AlertLevel.NONE
    assert compute_drift(Decimal(100), Decimal(105), THRESHOLDS).alert_level is AlertLevel.CRITICAL


def test_compute_drift_zero_internal():
    both_zero = compute_drift(Decimal(0), Decimal(0), THRESHOLDS)
    assert both_zero.percentage == 0
    assert both_zero.alert_level is AlertLevel.NONE
    unexpected = compute_drift(Decimal(0), Decimal(5), THRESHOLDS)
    assert unexpected.percentage == 100
    assert unexpected.alert_level is AlertLevel.CRITICAL


def _reconciled_receipt(make_anchor, make_claim, amount="100.0"):
    """One reconciled claim moving `amount` DAI into WALLET."""
    anchor = make_anchor(sender_address=COUNTERPARTY, receiver_address=WALLET, amount_gross=amount)
    claim = make_claim(sender_address=COUNTERPARTY, receiver_address=WALLET, amount_gross=amount)
    match_lifecycle.approve(anchor["id"], claim["id"], actor="ops")


def test_detector_persists_and_audits(make_anchor, make_claim):
    _reconciled_receipt(make_anchor, make_claim)
    make_claim(receiver_address=WALLET, amount_gross="999")  # pending claims do not count
    source = MagicMock()
    source.get_balance.return_value = Decimal("94.0")

    detector = DriftDetector(source)
    record = detector.compute(WALLET, "DAI", actor="monitor")
    source.get_balance.assert_called_once_with(WALLET, "DAI")
    assert record["internal_balance"] == "100.0"
    assert record["onchain_balance"] == "94.0"
    assert Decimal(record["drift"]) == Decimal("-6")
    assert record["drift_percentage"] == -6.0
    assert record["alert_level"] == "critical"

    alerts = audit_log.query(AuditFilters(action="drift_alert")).items
    assert len(alerts) == 1
    assert alerts[0]["actor"] == "monitor"
    assert alerts[0]["new_state"]["alert_level"] == "critical"

    # Recompute updates the same record
    source.get_balance.return_value = Decimal("100.0")
    again = detector.compute(WALLET, "DAI")
    assert len(detector.get_all()) == 1
    assert again["alert_level"] == "none"
    assert len(audit_log.query(AuditFilters(action="drift_alert")).items) == 1


def test_source_failure_propagates_from_compute(make_claim):
    make_claim()
    source = MagicMock()
    source.get_balance.side_effect = ExternalSourceError("eth_call failed")
    with pytest.raises(ExternalSourceError):
        DriftDetector(source).compute(WALLET, "DAI")
    assert DriftDetector(source).get_all() == []


def test_sync_all_reports_failures_and_continues(make_anchor, make_claim):
    _reconciled_receipt(make_anchor, make_claim)

    def balance(wallet, token):
        if wallet == COUNTERPARTY:
            raise ExternalSourceError("eth_call failed")
        return Decimal("100.0")

    source = MagicMock()
    source.get_balance.side_effect = balance
    result = DriftDetector(source).sync_all(actor="monitor")
    assert result.synced == 1
    assert len(result.errors) == 1
    failure = result.to_dict()["errors"][0]
    assert failure["wallet_address"] == COUNTERPARTY
    assert failure["token_symbol"] == "DAI"
    assert failure["code"] == "EXTERNAL_SOURCE_ERROR"
    assert result.items[0]["wallet_address"] == WALLET
    assert result.items[0]["alert_level"] == "none"


def test_get_all_uses_current_thresholds(make_anchor, make_claim):
    _reconciled_receipt(make_anchor, make_claim)
    source = MagicMock()
    source.get_balance.return_value = Decimal("94.0")
    detector = DriftDetector(source)
    detector.compute(WALLET, "DAI")
    assert detector.get_all()[0]["alert_level"] == "critical"

    matching_config_service.update(
        drift_thresholds={"alert_percent": 10, "critical_percent": 20},
        actor="admin",
    )
    assert detector.get_all()[0]["alert_level"] == "none"
    assert detector.get_by_wallet(WALLET)[0]["token_symbol"] == "DAI"


def test_json_rpc_balance_source_scales_units():
    rpc = MagicMock()
    rpc.call.return_value = hex(94 * 10**6)
    registry = {"USDC": {"address": "0x" + "1" * 40, "decimals": 6}}
    source = JsonRpcBalanceSource(rpc, registry)
    assert source.get_balance(WALLET, "USDC") == Decimal("94")
    method, params = rpc.call.call_args.args
    assert method == "eth_call"
    assert params[0]["data"].startswith("0x70a08231")

    with pytest.raises(ExternalSourceError):
        source.get_balance(WALLET, "DAI")
