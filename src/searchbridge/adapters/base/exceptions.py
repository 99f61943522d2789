"""Adapter-specific exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from searchbridge.models.result import BulkResult


class AdapterError(Exception):
    """Base exception for adapter errors."""


class ConfigurationError(AdapterError):
    """Raised when adapter configuration is missing or invalid, before any network call."""


class NotFoundError(AdapterError):
    """Raised when an index, alias or document does not exist."""


class BackendError(AdapterError):
    """Raised when the search backend rejects or fails a request.

    Args:
        message: Human-readable summary.
        status_code: HTTP status reported by the backend, when known.
        detail: Backend-provided error body, preserved as-is.
    """

    def __init__(self, message: str, status_code: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class TranslationError(AdapterError):
    """Raised when an option cannot be expressed in the target backend's syntax."""


class BulkOperationError(AdapterError):
    """Raised when a bulk request reached the backend but some items were rejected."""

    def __init__(self, message: str, result: BulkResult) -> None:
        super().__init__(message)
        self.result = result


class SwapNotSupportedError(AdapterError):
    """Raised when an atomic swap is requested on a backend without a swap primitive."""


class SwapError(AdapterError):
    """Raised when staging a swap index fails; production is left untouched."""
