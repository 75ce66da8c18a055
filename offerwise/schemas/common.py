"""Common schema module."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    """Uniform result envelope returned by every public operation."""

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> OperationResult:
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, error_code: str = "internal_error", **metadata: Any) -> OperationResult:
        return cls(success=False, error=error, error_code=error_code, metadata=metadata)


class ErrorEnvelope(BaseModel):
    status: str = "error"
    error_code: str
    detail: str
