"""
FastAPI routers: /risk (wallet risk scores), /drift (balance drift), /audit (trail).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from anchor_recon.api_server.dependencies import get_actor, get_drift_detector, get_pagination
from anchor_recon.audit.service import AuditFilters, audit_log
from anchor_recon.core.exceptions import parse_model
from anchor_recon.core.pagination import Pagination
from anchor_recon.drift.detector import DriftDetector
from anchor_recon.risk.service import risk_service

risk_router = APIRouter()
drift_router = APIRouter()
audit_router = APIRouter()


@risk_router.get("")
def list_risk_scores() -> dict[str, Any]:
    items = risk_service.get_all()
    return {"items": items, "total": len(items)}


@risk_router.post("/recalculate")
def recalculate_risk_scores() -> dict[str, Any]:
    return risk_service.recalculate_all().to_dict()


@risk_router.get("/{wallet}")
def get_risk_score(wallet: str) -> dict[str, Any]:
    """Cached score; computed on first request."""
    return risk_service.get(wallet)


@drift_router.get("")
def list_drift(detector: DriftDetector = Depends(get_drift_detector)) -> dict[str, Any]:
    items = detector.get_all()
    return {"items": items, "total": len(items)}


@drift_router.post("/sync")
def sync_drift(
    actor: str = Depends(get_actor),
    detector: DriftDetector = Depends(get_drift_detector),
) -> dict[str, Any]:
    return detector.sync_all(actor=actor).to_dict()


@drift_router.get("/{wallet}")
def get_drift(wallet: str, detector: DriftDetector = Depends(get_drift_detector)) -> dict[str, Any]:
    items = detector.get_by_wallet(wallet)
    return {"items": items, "total": len(items)}


@audit_router.get("")
def query_audit_log(
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor: str | None = None,
    from_date: int | None = Query(None, ge=0),
    to_date: int | None = Query(None, ge=0),
    pagination: Pagination = Depends(get_pagination),
) -> dict[str, Any]:
    """Audit entries, newest first."""
    filters = parse_model(
        AuditFilters,
        {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "actor": actor,
            "start_ms": from_date,
            "end_ms": to_date,
        },
    )
    return audit_log.query(filters, pagination).to_dict()
