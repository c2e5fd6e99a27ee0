"""
Environment variable loading for Anchor Recon.

- RECON_DB_URL / DATABASE_URL: SQLAlchemy URL (PostgreSQL or SQLite)
- RECON_DB_PATH: SQLite file used when no URL is set (default: anchor_recon.db)
- RPC_URL: EVM JSON-RPC endpoint for on-chain balance reads
- TOKEN_REGISTRY: JSON {symbol: {"address": ..., "decimals": ...}}
- Loads .env from project root when available.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# Project root: config is anchor_recon/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_SQLITE_PATH = "anchor_recon.db"
DEFAULT_RPC_URL = "https://ethereum-sepolia-rpc.publicnode.com"
DEFAULT_RPC_TIMEOUT_SEC = 10.0
DEFAULT_MIN_SCORE = 70.0

# Sepolia test tokens used by the reference deployment
DEFAULT_TOKEN_REGISTRY: dict[str, dict[str, Any]] = {
    "DAI": {"address": "0x1D70D57ccD2798323232B2dD027B3aBcA5C00091", "decimals": 18},
    "USDC": {"address": "0xC891481A0AaC630F4D89744ccD2C7D2C4215FD47", "decimals": 6},
}


def load_recon_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def get_database_url() -> str:
    """RECON_DB_URL, then DATABASE_URL; else SQLite from RECON_DB_PATH or default."""
    load_recon_env()
    url = (os.getenv("RECON_DB_URL") or os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("RECON_DB_PATH") or "").strip() or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"


def get_rpc_url() -> str:
    load_recon_env()
    return (os.getenv("RPC_URL") or "").strip() or DEFAULT_RPC_URL


def get_rpc_timeout_sec() -> float:
    load_recon_env()
    raw = (os.getenv("RPC_TIMEOUT_SEC") or "").strip()
    try:
        return float(raw) if raw else DEFAULT_RPC_TIMEOUT_SEC
    except ValueError:
        return DEFAULT_RPC_TIMEOUT_SEC


def get_default_min_score() -> float:
    load_recon_env()
    raw = (os.getenv("DEFAULT_MIN_SCORE") or "").strip()
    if not raw:
        return DEFAULT_MIN_SCORE
    value = float(raw)
    if not 0 <= value <= 100:
        raise ValueError(f"DEFAULT_MIN_SCORE must be within 0..100, got {value}")
    return value


def get_token_registry() -> dict[str, dict[str, Any]]:
    """
    Token symbol -> {"address", "decimals"}.
    TOKEN_REGISTRY env overrides the default Sepolia registry entirely.
    """
    load_recon_env()
    raw = (os.getenv("TOKEN_REGISTRY") or "").strip()
    if not raw:
        return {k: dict(v) for k, v in DEFAULT_TOKEN_REGISTRY.items()}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("TOKEN_REGISTRY must be a JSON object")
    registry: dict[str, dict[str, Any]] = {}
    for symbol, info in parsed.items():
        if not isinstance(info, dict) or "address" not in info:
            raise ValueError(f"TOKEN_REGISTRY entry for {symbol} needs an address")
        registry[str(symbol)] = {
            "address": str(info["address"]),
            "decimals": int(info.get("decimals", 18)),
        }
    return registry
