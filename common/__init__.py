"""Shared building blocks: error taxonomy, locking, and logging setup."""

from .errors import (
    DocumentParseError,
    GatewayError,
    GenerationFailedError,
    InvalidRequestError,
    ModelNotLoadedError,
    NotFoundError,
    TokenizationError,
    UnknownModelError,
    UnsupportedFileTypeError,
)
from .locks import ReadWriteLock
from .utils import setup_logging

__all__ = [
    "DocumentParseError",
    "GatewayError",
    "GenerationFailedError",
    "InvalidRequestError",
    "ModelNotLoadedError",
    "NotFoundError",
    "ReadWriteLock",
    "TokenizationError",
    "UnknownModelError",
    "UnsupportedFileTypeError",
    "setup_logging",
]
