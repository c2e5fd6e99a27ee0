"""
Application-level exceptions.

Every error carries a stable code and the HTTP status the API layer maps it to.
Batch verbs never raise these per item; they return structured results instead.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class ReconError(Exception):
    """Base error for the reconciliation core."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details is not None:
            out["details"] = self.details
        return out


class ValidationError(ReconError):
    """Malformed input; raised before any mutation."""

    code = "INVALID_INPUT"
    http_status = 400


class NotFoundError(ReconError):
    """Unknown transaction, suggestion or wallet id."""

    code = "NOT_FOUND"
    http_status = 404


class ConflictError(ReconError):
    """Transition on an already-terminal record or a uniqueness violation."""

    code = "CONFLICT"
    http_status = 409


class ExternalSourceError(ReconError):
    """On-chain read failed (balance or anchor source)."""

    code = "EXTERNAL_SOURCE_ERROR"
    http_status = 502


def from_pydantic(exc: Exception, prefix: str = "") -> ValidationError:
    """Flatten a pydantic ValidationError into a single-line ValidationError."""
    errors = getattr(exc, "errors", None)
    if not callable(errors):
        return ValidationError(f"{prefix}{exc}")
    parts = []
    for err in errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return ValidationError(prefix + "; ".join(parts), details=parts)


def parse_model(model: type[Any], data: Any) -> Any:
    """Validate data (an object/dict) into a pydantic model; errors become ValidationError."""
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"{model.__name__} must be an object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise from_pydantic(e) from e
