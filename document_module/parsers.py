"""Byte-to-text extraction, one strategy per file kind."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Callable, Dict, List

from common.errors import DocumentParseError

from .formats import FileKind, kind_for

logger = logging.getLogger(__name__)

Parser = Callable[[bytes], str]


def parse_text(data: bytes) -> str:
    return data.decode("utf-8-sig")


def parse_pdf(data: bytes) -> str:
    """Extract page text with pypdf; blank lines are dropped."""
    from pypdf import PdfReader  # type: ignore

    reader = PdfReader(BytesIO(data))
    lines: List[str] = []
    for page in reader.pages:
        text = page.extract_text() or ""
        lines.extend(line.strip() for line in text.splitlines() if line.strip())
    return "\n".join(lines)


def parse_docx(data: bytes) -> str:
    """Paragraph text followed by tables, cells separated by tabs."""
    from docx import Document  # type: ignore

    doc = Document(BytesIO(data))
    parts: List[str] = [p.text.rstrip() for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            parts.append("\t".join(cell.text.strip() for cell in row.cells))
        parts.append("")
    return "\n".join(parts).strip()


def parse_pptx(data: bytes) -> str:
    from pptx import Presentation  # type: ignore

    prs = Presentation(BytesIO(data))
    slides: List[str] = []
    for idx, slide in enumerate(prs.slides, start=1):
        texts: List[str] = []
        for shape in slide.shapes:
            if not getattr(shape, "has_text_frame", False):
                continue
            text = (shape.text_frame.text or "").strip()
            if text:
                texts.append(text)
        if texts:
            slides.append(f"Slide {idx}:\n" + "\n".join(texts))
    return "\n\n".join(slides)


def parse_xlsx(data: bytes) -> str:
    import openpyxl  # type: ignore

    workbook = openpyxl.load_workbook(BytesIO(data), read_only=True, data_only=True)
    try:
        sheets: List[str] = []
        for sheet in workbook.worksheets:
            rows = []
            for row in sheet.iter_rows(values_only=True):
                cells = ["" if value is None else str(value) for value in row]
                if any(cells):
                    rows.append("\t".join(cells))
            sheets.append(f"Sheet: {sheet.title}\n" + "\n".join(rows))
        return "\n\n".join(sheets)
    finally:
        workbook.close()


PARSERS: Dict[FileKind, Parser] = {
    FileKind.PDF: parse_pdf,
    FileKind.WORD: parse_docx,
    FileKind.POWERPOINT: parse_pptx,
    FileKind.EXCEL: parse_xlsx,
    FileKind.TEXT: parse_text,
    FileKind.MARKDOWN: parse_text,
    FileKind.CODE: parse_text,
    FileKind.CONFIG: parse_text,
}


def parse_document(filename: str, extension: str, data: bytes) -> str:
    """Return the text content of an upload or raise :class:`DocumentParseError`."""
    kind = kind_for(extension)
    if kind is None:
        raise DocumentParseError(filename, f"no parser for .{extension}")
    try:
        return PARSERS[kind](data)
    except UnicodeDecodeError as exc:
        raise DocumentParseError(filename, "file is not valid UTF-8 text") from exc
    except ImportError:
        raise
    except Exception as exc:
        logger.warning("Parser for %s failed on %s: %s", kind.name, filename, exc)
        raise DocumentParseError(filename, str(exc) or exc.__class__.__name__) from exc


def _check_complete() -> None:
    missing = [kind.name for kind in FileKind if kind not in PARSERS]
    if missing:
        raise RuntimeError(f"No parser registered for file kind(s): {', '.join(missing)}")


_check_complete()
