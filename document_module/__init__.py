"""Uploaded-document handling: allow-listing, parsing, and the drain-once cache."""

from .cache import DocumentCache, DocumentCacheEntry, UploadResult
from .formats import FileKind, extension_of, kind_for
from .parsers import parse_document

__all__ = [
    "DocumentCache",
    "DocumentCacheEntry",
    "FileKind",
    "UploadResult",
    "extension_of",
    "kind_for",
    "parse_document",
]
