"""
Tests for MatchingConfig validation and the persisted config service.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from anchor_recon.audit.service import AuditFilters, audit_log
from anchor_recon.config.service import matching_config_service
from anchor_recon.config.settings import DriftThresholds, MatchingConfig, ScoreWeights
from anchor_recon.core.exceptions import ValidationError


def test_defaults():
    config = MatchingConfig()
    assert config.weights.amount + config.weights.address + config.weights.time + config.weights.token == 100
    assert config.tolerances.amount_percent == 0.01
    assert config.tolerances.time_window_ms == 3_600_000
    assert config.drift_thresholds.critical_percent > config.drift_thresholds.alert_percent


def test_weights_must_sum_to_100():
    with pytest.raises(PydanticValidationError, match="sum to 100"):
        ScoreWeights(amount=50, address=30, time=20, token=10)


def test_critical_must_exceed_alert():
    with pytest.raises(PydanticValidationError):
        DriftThresholds(alert_percent=5, critical_percent=5)


def test_service_loads_defaults(recon_db):
    assert matching_config_service.load() == MatchingConfig()


def test_update_rejects_bad_weights_without_writing(recon_db):
    with pytest.raises(ValidationError, match="sum to 100"):
        matching_config_service.update(
            weights={"amount": 50, "address": 30, "time": 20, "token": 10},
            actor="admin",
        )
    with pytest.raises(ValidationError):
        matching_config_service.update(drift_thresholds={"critical_percent": 0.5}, actor="admin")
    with pytest.raises(ValidationError):
        matching_config_service.update(actor="admin")
    assert matching_config_service.load() == MatchingConfig()
    assert audit_log.query().total == 0


def test_update_merges_and_audits_changed_sections(recon_db):
    updated = matching_config_service.update(
        tolerances={"amount_percent": 0.02},
        weights={"amount": 40, "address": 30, "time": 20, "token": 10},
        actor="admin",
    )
    assert updated.tolerances.amount_percent == 0.02
    assert updated.tolerances.time_window_ms == 3_600_000
    assert matching_config_service.load() == updated

    entries = audit_log.query(AuditFilters(action="update_config")).items
    # weights were unchanged, so only tolerances is recorded
    assert len(entries) == 1
    assert entries[0]["entity_id"] == "tolerances"
    assert entries[0]["previous_state"]["value"]["amount_percent"] == 0.01
    assert entries[0]["new_state"]["value"]["amount_percent"] == 0.02
    assert entries[0]["actor"] == "admin"
