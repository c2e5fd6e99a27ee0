"""
Input models for the Transaction Store.

Amounts arrive as strings or numbers and leave as canonical, non-negative decimal
strings. Nothing reaches the database without passing through one of these models.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from anchor_recon.core.numeric import canonical, to_decimal
from anchor_recon.database.models import TxSource, TxStatus, TxType

Scalar = Union[str, int, float, bool, None]


def _amount(value: Any, name: str) -> str:
    d = to_decimal(value)
    if d < 0:
        raise ValueError(f"{name} must be a non-negative decimal")
    return canonical(d)


def _address(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class _TxBase(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    tx_hash: str = Field(min_length=1, max_length=128)
    type: TxType = TxType.TRANSFER
    token_symbol: str = Field(min_length=1, max_length=20)
    token_address: str | None = Field(None, max_length=42)
    amount_gross: str
    amount_net: str | None = None
    gas_used: str | None = None
    sender_address: str | None = Field(None, max_length=42)
    receiver_address: str | None = Field(None, max_length=42)
    timestamp: int = Field(gt=0)
    """Epoch milliseconds."""
    block_number: int | None = Field(None, ge=0)

    @field_validator("amount_gross", mode="before")
    @classmethod
    def _gross(cls, v: Any) -> str:
        return _amount(v, "amount_gross")

    @field_validator("amount_net", "gas_used", mode="before")
    @classmethod
    def _optional_amount(cls, v: Any, info: Any) -> str | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return _amount(v, info.field_name)

    @field_validator("sender_address", "receiver_address", "token_address", mode="before")
    @classmethod
    def _addr(cls, v: Any) -> str | None:
        return _address(v)


class ClaimCreate(_TxBase):
    """Off-chain claim: CSV row, local record or manual entry."""

    source: Literal["local", "csv", "manual"] = "manual"
    notes: str | None = None
    metadata: dict[str, Scalar] | None = None


class AnchorUpsert(_TxBase):
    """On-chain anchor keyed by (tx_hash, type)."""


class TransactionFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: TxSource | None = None
    status: TxStatus | None = None
    token: str | None = None
    from_date: int | None = Field(None, ge=0)
    to_date: int | None = Field(None, ge=0)
    sender: str | None = None
    receiver: str | None = None

    @model_validator(mode="after")
    def _range(self) -> "TransactionFilters":
        if self.from_date is not None and self.to_date is not None and self.from_date > self.to_date:
            raise ValueError("from_date must not be after to_date")
        return self
