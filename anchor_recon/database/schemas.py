"""
Versioned shapes for every JSON column.

score_breakdown, audit previous_state/new_state/metadata, transaction metadata and
the risk cache columns are validated against these models before they are written.
Bump SCHEMA_VERSION when a shape changes; readers can branch on schema_version.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from anchor_recon.core.exceptions import ValidationError, from_pydantic

SCHEMA_VERSION = 1

Scalar = Union[str, int, float, bool, None]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = SCHEMA_VERSION


class ScoreBreakdown(_Payload):
    """Per-factor sub-scores; each bounded by its configured weight."""

    amount: float = Field(ge=0, le=100)
    address: float = Field(ge=0, le=100)
    time: float = Field(ge=0, le=100)
    token: float = Field(ge=0, le=100)


class TransactionState(_Payload):
    """Audit snapshot of a transaction's reconciliation fields."""

    id: int
    source: str
    status: str
    token_symbol: str
    amount_gross: str
    matched_tx_id: int | None = None
    match_score: float | None = None
    force_reconciled: bool = False
    reconciled_by: str | None = None
    reconciled_at: int | None = None


class SuggestionState(_Payload):
    id: int | None = None
    anchor_id: int
    claim_id: int
    score: float | None = None
    status: str
    reviewed_by: str | None = None
    reason: str | None = None


class ConfigState(_Payload):
    section: str
    value: dict[str, float | int]


class RunState(_Payload):
    """Outcome of a run (matching, anchor sync); counts plus the parameters used."""

    run: str
    counts: dict[str, int] = Field(default_factory=dict)
    params: dict[str, Scalar] = Field(default_factory=dict)


class DriftState(_Payload):
    wallet_address: str
    token_symbol: str
    internal_balance: str
    onchain_balance: str
    drift: str
    drift_percentage: float
    alert_level: str


class RiskBreakdown(_Payload):
    new_counterparty: float = Field(0, ge=0)
    amount_anomaly: float = Field(0, ge=0)
    new_token: float = Field(0, ge=0)
    time_anomaly: float = Field(0, ge=0)


class RiskSummary(_Payload):
    """mean_amount/std_dev describe the history baseline; counts cover every transaction."""

    mean_amount: float = 0.0
    std_dev: float = 0.0
    tx_count: int = Field(0, ge=0)
    unique_counterparties: int = Field(0, ge=0)
    unique_tokens: int = Field(0, ge=0)


class FlatMetadata(BaseModel):
    """Flat map of JSON scalars (transaction and audit metadata)."""

    model_config = ConfigDict(extra="forbid")

    values: dict[str, Scalar] = Field(default_factory=dict)


def dump_payload(model: type[BaseModel], data: Any) -> dict[str, Any]:
    """Validate data against model and return the JSON-ready dict. Raises ValidationError."""
    try:
        if isinstance(data, model):
            obj = data
        else:
            obj = model.model_validate(data)
    except PydanticValidationError as e:
        raise from_pydantic(e, prefix=f"{model.__name__}: ") from e
    return obj.model_dump(mode="json")


def dump_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Validate a flat scalar map; None becomes {}."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("metadata must be an object")
    return dump_payload(FlatMetadata, {"values": data})["values"]
