"""
Partial-failure batch results.

Batch verbs (claim import, batch reconcile, drift sync, anchor sync) return one of these
instead of raising per item: a success list plus failures indexed to the input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ItemFailure:
    index: int
    """Position of the failed item in the caller's input (or iteration order for syncs)."""
    error: str
    code: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    """Identifies the item (anchor_id/claim_id, wallet/token) so callers can retry it."""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"index": self.index, "error": self.error}
        if self.code:
            out["code"] = self.code
        out.update(self.context)
        return out


@dataclass
class ImportResult:
    imported: list[dict[str, Any]] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "failed": [f.to_dict() for f in self.failed],
        }


@dataclass
class BatchReconcileResult:
    succeeded: int = 0
    failed: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    """One entry per applied pair, in input order."""
    errors: list[ItemFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": self.results,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class SyncResult:
    """Outcome of a drift or anchor sync: records refreshed plus per-item source failures."""

    synced: int = 0
    items: list[dict[str, Any]] = field(default_factory=list)
    errors: list[ItemFailure] = field(default_factory=list)
    time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "items": self.items,
            "errors": [e.to_dict() for e in self.errors],
            "time_ms": self.time_ms,
        }


DriftSyncResult = SyncResult
AnchorSyncResult = SyncResult
