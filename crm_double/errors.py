"""
Error kinds surfaced by the record engine.

Three recoverable kinds are raised by the component that detects them and
reach the caller unchanged. Anything else (sqlite3 failures, encoding
errors) propagates as-is and is treated upstream as an internal failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ErrorDetail:
    """Single offence attached to an error, e.g. one bad property value."""

    message: str
    code: Optional[str] = None
    context: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.code:
            payload["code"] = self.code
        if self.context:
            payload["context"] = self.context
        return payload


class CrmError(Exception):
    """Base class for the engine's recoverable errors."""

    category: str = "INTERNAL_ERROR"

    def __init__(self, message: str, errors: Optional[List[ErrorDetail]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors: List[ErrorDetail] = list(errors or [])

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": "error",
            "message": self.message,
            "category": self.category,
        }
        if self.errors:
            payload["errors"] = [detail.to_dict() for detail in self.errors]
        return payload


class NotFoundError(CrmError):
    """Unresolved type, missing or archived record, missing association label."""

    category = "OBJECT_NOT_FOUND"


class ValidationError(CrmError):
    """Malformed filter, oversized batch, type-mismatched value, bad operator."""

    category = "VALIDATION_ERROR"


class ConflictError(CrmError):
    """Duplicate type, property, group or label name."""

    category = "CONFLICT"


def from_pydantic(exc: Any, message: str = "Invalid input") -> ValidationError:
    """
    Convert a pydantic ValidationError into the engine's ValidationError.
    """
    details = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        details.append(
            ErrorDetail(
                message=f"{location}: {err.get('msg', 'invalid value')}" if location else err.get("msg", ""),
                code=err.get("type"),
            )
        )
    return ValidationError(message, details)


__all__ = [
    "ErrorDetail",
    "CrmError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "from_pydantic",
]
