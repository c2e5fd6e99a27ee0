"""
Configuration management for Anchor Recon.

Environment-driven Settings plus the MatchingConfig value object (weights,
tolerances, drift thresholds). Persistence of MatchingConfig lives in
anchor_recon.config.service so this package stays import-cycle free.
"""

from anchor_recon.config.settings import (  # noqa: F401
    DEFAULT_MATCHING_CONFIG,
    DriftThresholds,
    MatchingConfig,
    MatchTolerances,
    ScoreWeights,
    Settings,
    get_settings,
    reset_settings_for_test,
)

__all__ = [
    "DEFAULT_MATCHING_CONFIG",
    "DriftThresholds",
    "MatchingConfig",
    "MatchTolerances",
    "ScoreWeights",
    "Settings",
    "get_settings",
    "reset_settings_for_test",
]
