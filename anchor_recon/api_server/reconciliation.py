"""
FastAPI routers: /reconciliation (suggestions and operator decisions) and
/config/matching.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from anchor_recon.api_server.dependencies import get_actor, get_pagination
from anchor_recon.config.service import matching_config_service
from anchor_recon.core.pagination import Pagination
from anchor_recon.matching.lifecycle import match_lifecycle

router = APIRouter()
config_router = APIRouter()

MAX_BATCH_PAIRS = 500


class RunMatchingRequest(BaseModel):
    token: str | None = Field(None, max_length=20)
    min_score: float | None = Field(None, ge=0, le=100)


class PairRequest(BaseModel):
    anchor_id: int
    claim_id: int


class ReconcileRequest(PairRequest):
    force: bool = False
    min_score: float | None = Field(None, ge=0, le=100)


class RejectRequest(PairRequest):
    reason: str | None = Field(None, max_length=1000)


class BatchReconcileRequest(BaseModel):
    pairs: list[dict[str, Any]] = Field(..., min_length=1, max_length=MAX_BATCH_PAIRS)
    force: bool = False


class MatchingConfigUpdate(BaseModel):
    weights: dict[str, Any] | None = None
    tolerances: dict[str, Any] | None = None
    drift_thresholds: dict[str, Any] | None = None


@router.get("/suggestions")
def list_suggestions(
    status: str | None = None,
    min_score: float | None = Query(None, ge=0, le=100),
    token: str | None = None,
    pagination: Pagination = Depends(get_pagination),
) -> dict[str, Any]:
    return match_lifecycle.list_suggestions(status, min_score, token, pagination).to_dict()


@router.post("/run-matching")
def run_matching(body: RunMatchingRequest, actor: str = Depends(get_actor)) -> dict[str, Any]:
    return match_lifecycle.run_matching(body.token, body.min_score, actor=actor).to_dict()


@router.post("/reconcile")
def reconcile(body: ReconcileRequest, actor: str = Depends(get_actor)) -> dict[str, Any]:
    """Approve a pair; force=true reconciles regardless of score or prior rejection."""
    return match_lifecycle.approve(
        body.anchor_id, body.claim_id, actor, force=body.force, min_score=body.min_score
    )


@router.post("/reject")
def reject(body: RejectRequest, actor: str = Depends(get_actor)) -> dict[str, Any]:
    return match_lifecycle.reject(body.anchor_id, body.claim_id, actor, reason=body.reason)


@router.post("/batch-reconcile")
def batch_reconcile(body: BatchReconcileRequest, actor: str = Depends(get_actor)) -> dict[str, Any]:
    return match_lifecycle.batch_reconcile(body.pairs, actor, force=body.force).to_dict()


@config_router.get("")
def get_matching_config() -> dict[str, Any]:
    return matching_config_service.load().to_dict()


@config_router.put("")
def update_matching_config(body: MatchingConfigUpdate, actor: str = Depends(get_actor)) -> dict[str, Any]:
    """Rejects weights not summing to 100 and critical_percent <= alert_percent."""
    return matching_config_service.update(
        weights=body.weights,
        tolerances=body.tolerances,
        drift_thresholds=body.drift_thresholds,
        actor=actor,
    ).to_dict()
