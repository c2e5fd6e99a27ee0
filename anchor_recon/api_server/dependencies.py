"""
FastAPI dependencies: caller identity, pagination, and on-chain sources.

The on-chain sources are built from Settings once and can be swapped in tests with
app.dependency_overrides.
"""

from __future__ import annotations

import functools

from fastapi import Depends, Header, Query

from anchor_recon.chain.rpc import JsonRpcClient
from anchor_recon.config.settings import get_settings
from anchor_recon.core.pagination import DEFAULT_LIMIT, MAX_LIMIT, Pagination
from anchor_recon.drift.balance_source import BalanceSource, JsonRpcBalanceSource
from anchor_recon.drift.detector import DriftDetector
from anchor_recon.ledger.sync import AnchorSource, AnchorSyncService, JsonRpcAnchorSource

DEFAULT_ACTOR = "api"


def get_actor(x_actor: str | None = Header(None, max_length=128)) -> str:
    """Caller identity from the X-Actor header; opaque to the core."""
    return (x_actor or "").strip() or DEFAULT_ACTOR


def get_pagination(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
) -> Pagination:
    return Pagination(page=page, limit=limit)


@functools.lru_cache(maxsize=1)
def _rpc_client() -> JsonRpcClient:
    settings = get_settings()
    return JsonRpcClient(settings.rpc_url, settings.rpc_timeout_sec)


def get_balance_source() -> BalanceSource:
    return JsonRpcBalanceSource(_rpc_client(), get_settings().token_registry)


def get_anchor_source() -> AnchorSource:
    return JsonRpcAnchorSource(_rpc_client(), get_settings().token_registry)


def get_drift_detector(source: BalanceSource = Depends(get_balance_source)) -> DriftDetector:
    return DriftDetector(source)


def get_anchor_sync(source: AnchorSource = Depends(get_anchor_source)) -> AnchorSyncService:
    return AnchorSyncService(source)
