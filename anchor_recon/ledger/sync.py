"""
Anchor sync: pull on-chain transfers for a wallet and upsert them as anchors.

The source is injected. JsonRpcAnchorSource reads ERC-20 Transfer/Approval logs for
every registered token over a recent block range. A source failure is reported in the
result per token and does not abort the rest of the sync.
"""

from __future__ import annotations

import time
from typing import Any, Iterable, Protocol

from anchor_recon.audit.service import AuditAction, EntityType, audit_log
from anchor_recon.chain.erc20 import (
    APPROVAL_TOPIC,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    address_topic,
    hex_to_int,
    is_address,
    scale_units,
    topic_address,
)
from anchor_recon.chain.rpc import JsonRpcClient
from anchor_recon.core.exceptions import ExternalSourceError, ReconError, ValidationError
from anchor_recon.core.locks import run_exclusive
from anchor_recon.core.results import ItemFailure, SyncResult
from anchor_recon.database.models import TxType
from anchor_recon.database.schemas import RunState
from anchor_recon.ledger.store import TransactionStore, transaction_store
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)

DEFAULT_BLOCK_LOOKBACK = 50_000


class AnchorSource(Protocol):
    """Supplies anchor records (AnchorUpsert-shaped dicts) per token for a wallet."""

    def tokens(self) -> Iterable[str]: ...

    def fetch_anchors(self, wallet: str, token: str) -> list[dict[str, Any]]:
        """Raise ExternalSourceError when the chain cannot be read."""
        ...


class JsonRpcAnchorSource:
    """ERC-20 Transfer and Approval logs from an EVM node."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        token_registry: dict[str, dict[str, Any]],
        block_lookback: int = DEFAULT_BLOCK_LOOKBACK,
    ) -> None:
        self._rpc = rpc
        self._registry = token_registry
        self._lookback = block_lookback
        self._block_ts: dict[int, int] = {}

    def tokens(self) -> list[str]:
        return list(self._registry)

    def _block_timestamp_ms(self, block_number: int) -> int:
        ts = self._block_ts.get(block_number)
        if ts is None:
            block = self._rpc.call("eth_getBlockByNumber", [hex(block_number), False]) or {}
            if not block.get("timestamp"):
                raise ExternalSourceError(f"block {block_number} has no timestamp")
            ts = hex_to_int(block["timestamp"]) * 1000
            self._block_ts[block_number] = ts
        return ts

    def _logs(self, token_address: str, topics: list[Any], from_block: int) -> list[dict[str, Any]]:
        result = self._rpc.call(
            "eth_getLogs",
            [{
                "address": token_address,
                "topics": topics,
                "fromBlock": hex(from_block),
                "toBlock": "latest",
            }],
        )
        return result or []

    def fetch_anchors(self, wallet: str, token: str) -> list[dict[str, Any]]:
        info = self._registry.get(token)
        if not info:
            raise ExternalSourceError(f"token {token} not in registry")
        address, decimals = info["address"], int(info.get("decimals", 18))
        head = hex_to_int(self._rpc.call("eth_blockNumber", []))
        from_block = max(0, head - self._lookback)
        me = address_topic(wallet)
        outgoing = self._logs(address, [TRANSFER_TOPIC, me], from_block)
        incoming = self._logs(address, [TRANSFER_TOPIC, None, me], from_block)
        approvals = self._logs(address, [APPROVAL_TOPIC, me], from_block)

        anchors: list[dict[str, Any]] = []
        tagged = [(entry, False) for entry in outgoing + incoming] + [(entry, True) for entry in approvals]
        for log, is_approval in tagged:
            topics = log.get("topics") or []
            if len(topics) < 3:
                continue
            sender, receiver = topic_address(topics[1]), topic_address(topics[2])
            block_number = hex_to_int(log.get("blockNumber"))
            if is_approval:
                tx_type = TxType.APPROVAL.value
            elif sender == ZERO_ADDRESS:
                tx_type = TxType.MINT.value
            else:
                tx_type = TxType.TRANSFER.value
            anchors.append({
                "tx_hash": log["transactionHash"],
                "type": tx_type,
                "token_symbol": token,
                "token_address": address,
                "amount_gross": scale_units(hex_to_int(log.get("data")), decimals),
                "sender_address": sender,
                "receiver_address": receiver,
                "timestamp": self._block_timestamp_ms(block_number),
                "block_number": block_number,
            })
        return anchors


class AnchorSyncService:
    def __init__(self, source: AnchorSource, store: TransactionStore | None = None) -> None:
        self._source = source
        self._store = store or transaction_store

    def sync(self, wallet: str, actor: str = "system") -> SyncResult:
        """
        Upsert every anchor the source reports for wallet. Source failures and rejected
        rows land in result.errors; one sync_anchors audit entry summarizes the run.
        """
        if not is_address(wallet):
            raise ValidationError(f"invalid wallet address: {wallet}")
        wallet = wallet.lower()
        started = time.monotonic()
        result = SyncResult()
        index = 0
        with run_exclusive(f"anchors:{wallet}"):
            for token in self._source.tokens():
                try:
                    records = self._source.fetch_anchors(wallet, token)
                except ExternalSourceError as e:
                    logger.warning("anchor_source_failed", wallet_id=wallet, token=token, error=e.message)
                    result.errors.append(
                        ItemFailure(index=index, error=e.message, code=e.code, context={"token": token})
                    )
                    index += 1
                    continue
                for record in records:
                    try:
                        row = self._store.upsert_anchor(record, actor=actor)
                        result.synced += 1
                        result.items.append({"id": row["id"], "tx_hash": row["tx_hash"], "type": row["type"]})
                    except ReconError as e:
                        logger.warning(
                            "anchor_upsert_failed",
                            wallet_id=wallet,
                            tx_hash=record.get("tx_hash"),
                            error=e.message,
                        )
                        result.errors.append(
                            ItemFailure(
                                index=index,
                                error=e.message,
                                code=e.code,
                                context={"token": token, "tx_hash": record.get("tx_hash")},
                            )
                        )
                    index += 1
            result.time_ms = int((time.monotonic() - started) * 1000)
            audit_log.log(
                AuditAction.SYNC_ANCHORS,
                EntityType.SYSTEM,
                wallet,
                actor,
                new_state=RunState(
                    run="sync_anchors",
                    counts={"anchors_synced": result.synced, "failed": len(result.errors)},
                    params={"wallet": wallet},
                ),
            )
        logger.info(
            "anchors_synced",
            wallet_id=wallet,
            synced=result.synced,
            failed=len(result.errors),
            time_ms=result.time_ms,
        )
        return result
