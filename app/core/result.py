"""
Service result envelope.

Every public workflow / alert / board operation returns a ``ServiceResult``
instead of raising across the service boundary:

    result = execute_transition(shift_id, "assigned", "mgr-1")
    if not result.success:
        return result_response(result)   # app.utils.errors

``warnings`` carries failures of non-critical side effects (alert
auto-resolution, notification dispatch, audit writes) that did not fail
the primary operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ServiceError:
    code: str
    message: str
    details: dict | None = None

    def to_dict(self) -> dict:
        d = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class ServiceResult(Generic[T]):
    success: bool
    data: T | None = None
    error: ServiceError | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: T | None = None, warnings: list[str] | None = None) -> ServiceResult[T]:
        return cls(success=True, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(cls, code: str, message: str, details: dict | None = None) -> ServiceResult[T]:
        return cls(success=False, error=ServiceError(code, message, details))

    def to_dict(self, serialize: Any = None) -> dict:
        """JSON-ready envelope; ``serialize`` converts ``data`` when given."""
        data = self.data
        if serialize is not None and data is not None:
            data = serialize(data)
        body: dict = {"success": self.success, "data": data}
        if self.error is not None:
            body["error"] = self.error.to_dict()
        if self.warnings:
            body["warnings"] = list(self.warnings)
        return body
