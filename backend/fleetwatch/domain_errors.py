"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class ValidationError(DomainError):
    """Malformed input; nothing was mutated."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=422, message=message, details=details)


class PermissionDenied(DomainError):
    """Caller is not entitled to view or mutate the resource."""

    def __init__(self, code: str, message: str, reason: str | None = None):
        super().__init__(
            code=code,
            http_status=403,
            message=message,
            details={"reason": reason} if reason else None,
        )

    @property
    def reason(self) -> str | None:
        return (self.details or {}).get("reason")


class NotFound(DomainError):
    """Resource id does not resolve (or is soft-deleted)."""

    def __init__(self, code: str, message: str):
        super().__init__(code=code, http_status=404, message=message)
