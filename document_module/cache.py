"""Cache of parsed uploads waiting to be injected into the next generation.

Uploads are validated against the extension allow-list, parsed to text and
kept under a generated file id. The first generation request that drains the
cache consumes every pending entry at once; nothing is ever served twice.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from common.errors import UnsupportedFileTypeError
from common.locks import ReadWriteLock

from .formats import CONTEXT_INSTRUCTION, extension_of, kind_for, render_entry
from .parsers import parse_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentCacheEntry:
    filename: str
    extension: str
    content: str
    file_size: int = 0


@dataclass(frozen=True)
class UploadResult:
    file_id: str
    filename: str
    file_size: int

    def to_dict(self) -> Dict[str, object]:
        return {"file_id": self.file_id, "filename": self.filename, "file_size": self.file_size}


class DocumentCache:
    """Keyed store of parsed upload text, drained once per generation."""

    def __init__(self, parser: Callable[[str, str, bytes], str] = parse_document) -> None:
        self._entries: Dict[str, DocumentCacheEntry] = {}
        self._lock = ReadWriteLock()
        self._parser = parser

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def upload(self, filename: str, data: bytes) -> UploadResult:
        """Validate, parse and cache an upload.

        Raises :class:`UnsupportedFileTypeError` before any parsing when the
        extension is not allowed, and :class:`DocumentParseError` when the
        bytes cannot be turned into text.
        """
        extension = extension_of(filename)
        if kind_for(extension) is None:
            logger.warning("Rejected upload %s: unsupported extension %r", filename, extension)
            raise UnsupportedFileTypeError(extension)

        start_time = time.perf_counter()
        content = self._parser(filename, extension, data)
        elapsed = time.perf_counter() - start_time

        file_id = str(uuid.uuid4())
        entry = DocumentCacheEntry(
            filename=filename,
            extension=extension,
            content=content,
            file_size=len(data),
        )
        with self._lock.write():
            self._entries[file_id] = entry
            pending = len(self._entries)
        logger.info(
            "Cached %s as %s (%d bytes, %d chars, parsed in %.2fs, pending=%d)",
            filename,
            file_id,
            len(data),
            len(content),
            elapsed,
            pending,
        )
        return UploadResult(file_id=file_id, filename=filename, file_size=len(data))

    def remove(self, file_id: str) -> bool:
        with self._lock.write():
            entry = self._entries.pop(file_id, None)
        if entry is None:
            return False
        logger.info("Removed cached file %s (%s)", file_id, entry.filename)
        return True

    def pending_files(self) -> List[Dict[str, object]]:
        with self._lock.read():
            items = list(self._entries.items())
        return [
            {
                "file_id": file_id,
                "filename": entry.filename,
                "extension": entry.extension,
                "file_size": entry.file_size,
            }
            for file_id, entry in items
        ]

    def drain_as_context(self) -> Optional[str]:
        """Take every pending entry and render it as one context message.

        Returns ``None`` when nothing is pending. The cache is empty afterwards.
        """
        with self._lock.write():
            if not self._entries:
                return None
            entries = list(self._entries.values())
            self._entries.clear()

        sections = [render_entry(e.filename, e.extension, e.content) for e in entries]
        sections.append(CONTEXT_INSTRUCTION)
        logger.info("Drained %d cached file(s) into context", len(entries))
        return "\n\n".join(sections)
