"""
Error taxonomy for the conversion gateway.

Every error carries the HTTP status it maps to, a human summary and an
optional diagnostic passed through from the provider. The HTTP layer turns
any ``GatewayError`` into a JSON ``{"error": ..., "details": ...}`` payload.
"""

from __future__ import annotations

from typing import Any, Optional


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ClientInputError(GatewayError):
    """Missing file, wrong type, empty or oversized file, missing prompt."""

    status_code = 400


class AssetNotFound(GatewayError):
    """The asset host has no object under the requested id."""

    status_code = 404


class RemoteUploadError(GatewayError):
    """The asset host rejected a push or could not be reached."""

    status_code = 502


class ProviderUnavailable(GatewayError):
    """The processing provider could not allocate a task."""

    status_code = 503


class ProcessingFailed(GatewayError):
    """The processing provider rejected an input or the option combination."""

    status_code = 500


class DownloadFailed(GatewayError):
    """Result bytes could not be retrieved from a provider."""

    status_code = 502


class QuotaExceeded(GatewayError):
    """The generation provider reported exhausted credits or rate limits."""

    status_code = 402

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "message": self.message}


class GenerationFailed(GatewayError):
    """Generation request failed or produced no asset."""

    status_code = 500

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, **super().to_payload()}


class TaskStateError(GatewayError):
    """A processing task was driven out of order."""

    status_code = 500
