"""Result types for scoring and matching runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from anchor_recon.database.schemas import ScoreBreakdown


@dataclass
class MatchScore:
    """
    Composite 0-100 confidence for one (anchor, claim) pair.

    breakdown holds the four per-factor sub-scores; it is persisted with every
    suggestion and reconciled claim so an operator can see why a pair scored as it did.
    """

    total: float
    breakdown: ScoreBreakdown

    def breakdown_dict(self) -> dict[str, Any]:
        return self.breakdown.model_dump(mode="json")

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "breakdown": self.breakdown_dict()}


@dataclass
class MatchRunResult:
    new_suggestions: int
    time_ms: int
    anchors_processed: int = 0
    skipped_pairs: int = 0
    """Pairs that scored above threshold but lost a race or already had a suggestion."""
    suggestions: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_suggestions": self.new_suggestions,
            "time_ms": self.time_ms,
            "anchors_processed": self.anchors_processed,
            "skipped_pairs": self.skipped_pairs,
        }
