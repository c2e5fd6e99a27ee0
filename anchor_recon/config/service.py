"""
MatchingConfigService: load / validate / save lifecycle for MatchingConfig.

Each section is one JSON row in matching_config. Updates are validated as a whole
(merged over the current config) before anything is written, and every changed
section gets its own update_config audit entry in the same transaction.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from anchor_recon.audit.service import AuditAction, EntityType, audit_log
from anchor_recon.config.settings import DEFAULT_MATCHING_CONFIG, MatchingConfig
from anchor_recon.core.exceptions import ValidationError, from_pydantic
from anchor_recon.core.timeutil import now_ms
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import MatchingConfigRow
from anchor_recon.database.schemas import ConfigState
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)


def _section_value(key: str, value: Any) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return dict(value)


class MatchingConfigService:
    """Persisted MatchingConfig. Stored sections override defaults."""

    def _load(self, session: Session) -> MatchingConfig:
        data = DEFAULT_MATCHING_CONFIG.to_dict()
        for row in session.query(MatchingConfigRow).all():
            if row.key in MatchingConfig.SECTIONS and isinstance(row.value, dict):
                data[row.key] = {**data[row.key], **row.value}
        try:
            return MatchingConfig.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic(e, prefix="stored matching config invalid: ") from e

    def load(self) -> MatchingConfig:
        with session_scope() as session:
            return self._load(session)

    def update(
        self,
        *,
        weights: dict[str, Any] | BaseModel | None = None,
        tolerances: dict[str, Any] | BaseModel | None = None,
        drift_thresholds: dict[str, Any] | BaseModel | None = None,
        actor: str,
    ) -> MatchingConfig:
        """
        Merge the supplied sections over the current config, validate, then persist.

        Raises ValidationError (nothing written) when no section is given, weights do not
        sum to 100, or critical_percent <= alert_percent.
        """
        supplied = {
            k: v
            for k, v in (
                ("weights", weights),
                ("tolerances", tolerances),
                ("drift_thresholds", drift_thresholds),
            )
            if v is not None
        }
        if not supplied:
            raise ValidationError("at least one of weights, tolerances, drift_thresholds is required")
        if not (actor or "").strip():
            raise ValidationError("actor is required")

        with session_scope() as session:
            current = self._load(session)
            merged = current.to_dict()
            for key, value in supplied.items():
                merged[key] = {**merged[key], **_section_value(key, value)}
            try:
                new_config = MatchingConfig.model_validate(merged)
            except PydanticValidationError as e:
                err = from_pydantic(e)
                logger.warning("matching_config_rejected", actor=actor, error=err.message)
                raise err from e

            changed = [k for k in supplied if new_config.section(k) != current.section(k)]
            for key in changed:
                row = session.get(MatchingConfigRow, key)
                if row is None:
                    row = MatchingConfigRow(key=key)
                    session.add(row)
                row.value = new_config.section(key)
                row.updated_at = now_ms()
                row.updated_by = actor
                audit_log.log(
                    AuditAction.UPDATE_CONFIG,
                    EntityType.CONFIG,
                    key,
                    actor,
                    previous_state=ConfigState(section=key, value=current.section(key)),
                    new_state=ConfigState(section=key, value=new_config.section(key)),
                    session=session,
                )
        logger.info("matching_config_updated", actor=actor, sections=changed)
        return new_config


matching_config_service = MatchingConfigService()
