"""
FastAPI routers: /transactions (claims, queries, stats) and /anchors (on-chain sync).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from anchor_recon.api_server.dependencies import get_actor, get_anchor_sync, get_pagination
from anchor_recon.core.exceptions import parse_model
from anchor_recon.core.pagination import Pagination
from anchor_recon.ledger.schemas import TransactionFilters
from anchor_recon.ledger.store import transaction_store
from anchor_recon.ledger.sync import AnchorSyncService

router = APIRouter()
anchors_router = APIRouter()

MAX_IMPORT_BATCH = 500


class ImportClaimsRequest(BaseModel):
    """POST /transactions/import body. Rows are validated one by one by the store."""

    claims: list[dict[str, Any]] = Field(..., min_length=1, max_length=MAX_IMPORT_BATCH)


class SyncAnchorsRequest(BaseModel):
    wallet: str = Field(..., min_length=42, max_length=42, description="EVM wallet address")


@router.get("")
def list_transactions(
    source: str | None = None,
    status: str | None = None,
    token: str | None = None,
    from_date: int | None = Query(None, ge=0),
    to_date: int | None = Query(None, ge=0),
    sender: str | None = None,
    receiver: str | None = None,
    pagination: Pagination = Depends(get_pagination),
) -> dict[str, Any]:
    filters = parse_model(
        TransactionFilters,
        {
            k: v
            for k, v in {
                "source": source,
                "status": status,
                "token": token,
                "from_date": from_date,
                "to_date": to_date,
                "sender": sender,
                "receiver": receiver,
            }.items()
            if v is not None
        },
    )
    return transaction_store.query(filters, pagination).to_dict()


@router.get("/stats")
def stats() -> dict[str, Any]:
    return transaction_store.get_stats()


@router.get("/{tx_id}")
def get_transaction(tx_id: int) -> dict[str, Any]:
    return transaction_store.get_by_id(tx_id)


@router.post("")
def create_claim(body: dict[str, Any], actor: str = Depends(get_actor)) -> JSONResponse:
    """Create one claim (status pending). Validation errors return 400."""
    row = transaction_store.create_claim(body, actor=actor)
    return JSONResponse(status_code=201, content=row)


@router.post("/import")
def import_claims(body: ImportClaimsRequest, actor: str = Depends(get_actor)) -> dict[str, Any]:
    """Partial-failure import: successes plus failures indexed to the input."""
    return transaction_store.import_claims(body.claims, actor=actor).to_dict()


@anchors_router.post("")
def upsert_anchor(body: dict[str, Any], actor: str = Depends(get_actor)) -> dict[str, Any]:
    return transaction_store.upsert_anchor(body, actor=actor)


@anchors_router.post("/sync")
def sync_anchors(
    body: SyncAnchorsRequest,
    actor: str = Depends(get_actor),
    service: AnchorSyncService = Depends(get_anchor_sync),
) -> dict[str, Any]:
    return service.sync(body.wallet, actor=actor).to_dict()
