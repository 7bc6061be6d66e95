"""Error taxonomy shared by the gateway components.

Every error carries the HTTP status it maps to and optional detail fields
(``file_id``, ``session_id``, ``file_type`` ...) that are merged into the JSON
error payload returned to clients.
"""

from __future__ import annotations

from typing import Any, Dict


class GatewayError(Exception):
    """Base class for errors surfaced to HTTP clients."""

    status_code: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "status": self.status_code}
        payload.update(self.details)
        return payload


class ModelNotLoadedError(GatewayError):
    """No model is loaded or the requested model failed to load."""

    status_code = 503


class InvalidRequestError(GatewayError):
    status_code = 400


class UnknownModelError(InvalidRequestError):
    def __init__(self, model_name: str) -> None:
        super().__init__(f"Unknown model: {model_name}", model_name=model_name)


class UnsupportedFileTypeError(InvalidRequestError):
    def __init__(self, file_type: str) -> None:
        super().__init__(f"Unsupported file type: {file_type or '(none)'}", file_type=file_type)


class DocumentParseError(InvalidRequestError):
    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Failed to parse {filename}: {reason}", filename=filename)


class GenerationFailedError(GatewayError):
    status_code = 500


class TokenizationError(GatewayError):
    status_code = 400


class NotFoundError(GatewayError):
    # Existing clients expect 400 for a missing id rather than 404.
    status_code = 400


__all__ = [
    "DocumentParseError",
    "GatewayError",
    "GenerationFailedError",
    "InvalidRequestError",
    "ModelNotLoadedError",
    "NotFoundError",
    "TokenizationError",
    "UnknownModelError",
    "UnsupportedFileTypeError",
]
