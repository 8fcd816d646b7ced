from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class NotFoundError(CatalogError):
    code = "NOT_FOUND"


class ConflictError(CatalogError):
    code = "CONFLICT"


class AmbiguousMatchError(CatalogError):
    """A lookup by a key expected to be unique matched more than one row."""

    code = "AMBIGUOUS_MATCH"


class TransientStoreError(CatalogError):
    code = "STORE_UNAVAILABLE"
    retryable = True


class ValidationError(CatalogError):
    code = "VALIDATION_ERROR"


class DeletePublishedGranuleError(ValidationError):
    code = "GRANULE_PUBLISHED"


def rolled_back_steps(exc: BaseException) -> tuple[str, ...]:
    """Names of the saga steps compensated before ``exc`` was re-raised."""
    return tuple(getattr(exc, "rolled_back_steps", ()))
