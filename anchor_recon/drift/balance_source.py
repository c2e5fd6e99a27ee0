"""On-chain balance readings for the drift detector."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol

from anchor_recon.chain.erc20 import balance_of_data, hex_to_int, is_address, scale_units
from anchor_recon.chain.rpc import JsonRpcClient
from anchor_recon.config.settings import Settings
from anchor_recon.core.exceptions import ExternalSourceError


class BalanceSource(Protocol):
    def get_balance(self, wallet: str, token: str) -> Decimal:
        """Token balance of wallet in whole units. Raises ExternalSourceError on read failure."""
        ...


class JsonRpcBalanceSource:
    """ERC-20 balanceOf via eth_call, scaled by the registry's decimals."""

    def __init__(self, rpc: JsonRpcClient, token_registry: dict[str, dict[str, Any]]) -> None:
        self._rpc = rpc
        self._registry = token_registry

    @classmethod
    def from_settings(cls, settings: Settings) -> "JsonRpcBalanceSource":
        return cls(JsonRpcClient(settings.rpc_url, settings.rpc_timeout_sec), settings.token_registry)

    def get_balance(self, wallet: str, token: str) -> Decimal:
        info = self._registry.get(token)
        if not info:
            raise ExternalSourceError(f"token {token} not in registry")
        if not is_address(wallet):
            raise ExternalSourceError(f"{wallet} is not an EVM address")
        raw = self._rpc.call(
            "eth_call",
            [{"to": info["address"], "data": balance_of_data(wallet)}, "latest"],
        )
        try:
            units = hex_to_int(raw)
        except (TypeError, ValueError) as e:
            raise ExternalSourceError(f"balanceOf returned {raw!r} for {wallet}/{token}") from e
        return Decimal(scale_units(units, int(info.get("decimals", 18))))
