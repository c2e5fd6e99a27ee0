"""
Application settings and the matching configuration value object.

Settings is process-wide (env driven). MatchingConfig is the tunable, persisted
configuration that every candidate, scoring and drift call receives explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from anchor_recon.config import env

WEIGHTS_TOTAL = 100


class ScoreWeights(BaseModel):
    """Per-factor weights; each factor's sub-score is bounded by its weight."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    amount: float = Field(40, ge=0, le=100)
    address: float = Field(30, ge=0, le=100)
    time: float = Field(20, ge=0, le=100)
    token: float = Field(10, ge=0, le=100)

    @model_validator(mode="after")
    def _sum_to_100(self) -> "ScoreWeights":
        total = self.amount + self.address + self.time + self.token
        if abs(total - WEIGHTS_TOTAL) > 1e-9:
            raise ValueError(f"weights must sum to {WEIGHTS_TOTAL}, got {total:g}")
        return self


class MatchTolerances(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    amount_percent: float = Field(0.01, ge=0, le=1)
    """Fraction of the anchor amount (0.01 = 1%)."""
    time_window_ms: int = Field(3_600_000, ge=0)
    block_window: int = Field(100, ge=0)
    """Tracked only; off-chain claims carry no block number."""


class DriftThresholds(BaseModel):
    """Percent thresholds; critical must be strictly above alert."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    alert_percent: float = Field(1.0, ge=0, le=100)
    critical_percent: float = Field(5.0, ge=0, le=100)

    @model_validator(mode="after")
    def _critical_above_alert(self) -> "DriftThresholds":
        if self.critical_percent <= self.alert_percent:
            raise ValueError(
                f"critical_percent ({self.critical_percent:g}) must be greater than "
                f"alert_percent ({self.alert_percent:g})"
            )
        return self


class MatchingConfig(BaseModel):
    """Weights, tolerances and drift thresholds as one validated value."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    tolerances: MatchTolerances = Field(default_factory=MatchTolerances)
    drift_thresholds: DriftThresholds = Field(default_factory=DriftThresholds)

    SECTIONS: ClassVar[tuple[str, ...]] = ("weights", "tolerances", "drift_thresholds")

    def section(self, key: str) -> dict[str, Any]:
        return getattr(self, key).model_dump()

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


DEFAULT_MATCHING_CONFIG = MatchingConfig()


@dataclass
class Settings:
    """Process-wide settings read from the environment."""

    database_url: str
    rpc_url: str
    rpc_timeout_sec: float
    default_min_score: float
    token_registry: dict[str, dict[str, Any]] = field(default_factory=dict)
    api_host: str = "0.0.0.0"
    api_port: int = 8000


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return cached settings, built from env on first call."""
    global _settings
    if _settings is None:
        env.load_recon_env()
        _settings = Settings(
            database_url=env.get_database_url(),
            rpc_url=env.get_rpc_url(),
            rpc_timeout_sec=env.get_rpc_timeout_sec(),
            default_min_score=env.get_default_min_score(),
            token_registry=env.get_token_registry(),
            api_host=(os.getenv("API_HOST") or "0.0.0.0").strip(),
            api_port=int((os.getenv("API_PORT") or "8000").strip() or "8000"),
        )
    return _settings


def reset_settings_for_test() -> None:
    """Drop cached settings so the next get_settings() re-reads env."""
    global _settings
    _settings = None
