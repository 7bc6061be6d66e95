"""Allowed upload extensions, their file kinds, and context headers."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class FileKind(Enum):
    PDF = "pdf"
    WORD = "word"
    POWERPOINT = "powerpoint"
    EXCEL = "excel"
    TEXT = "text"
    MARKDOWN = "markdown"
    CODE = "code"
    CONFIG = "config"


# extension -> (kind, human label)
EXTENSIONS: Dict[str, tuple] = {
    "pdf": (FileKind.PDF, "PDF"),
    "docx": (FileKind.WORD, "Word Document"),
    "pptx": (FileKind.POWERPOINT, "PowerPoint"),
    "xlsx": (FileKind.EXCEL, "Excel Spreadsheet"),
    "txt": (FileKind.TEXT, "Text File"),
    "log": (FileKind.TEXT, "Log File"),
    "csv": (FileKind.TEXT, "CSV"),
    "md": (FileKind.MARKDOWN, "Markdown"),
    "markdown": (FileKind.MARKDOWN, "Markdown"),
    "py": (FileKind.CODE, "Python"),
    "js": (FileKind.CODE, "JavaScript"),
    "ts": (FileKind.CODE, "TypeScript"),
    "jsx": (FileKind.CODE, "React JSX"),
    "tsx": (FileKind.CODE, "React TSX"),
    "vue": (FileKind.CODE, "Vue Component"),
    "svelte": (FileKind.CODE, "Svelte"),
    "rs": (FileKind.CODE, "Rust"),
    "go": (FileKind.CODE, "Go"),
    "java": (FileKind.CODE, "Java"),
    "kt": (FileKind.CODE, "Kotlin"),
    "scala": (FileKind.CODE, "Scala"),
    "c": (FileKind.CODE, "C"),
    "cpp": (FileKind.CODE, "C++"),
    "h": (FileKind.CODE, "C Header"),
    "hpp": (FileKind.CODE, "C++ Header"),
    "cs": (FileKind.CODE, "C#"),
    "fs": (FileKind.CODE, "F#"),
    "rb": (FileKind.CODE, "Ruby"),
    "php": (FileKind.CODE, "PHP"),
    "swift": (FileKind.CODE, "Swift"),
    "sh": (FileKind.CODE, "Shell Script"),
    "bash": (FileKind.CODE, "Bash Script"),
    "ps1": (FileKind.CODE, "PowerShell"),
    "sql": (FileKind.CODE, "SQL"),
    "graphql": (FileKind.CODE, "GraphQL"),
    "html": (FileKind.CODE, "HTML"),
    "css": (FileKind.CODE, "CSS"),
    "scss": (FileKind.CODE, "SCSS"),
    "json": (FileKind.CONFIG, "JSON"),
    "yaml": (FileKind.CONFIG, "YAML"),
    "yml": (FileKind.CONFIG, "YAML"),
    "toml": (FileKind.CONFIG, "TOML"),
    "xml": (FileKind.CONFIG, "XML"),
    "ini": (FileKind.CONFIG, "INI Config"),
    "env": (FileKind.CONFIG, "Environment"),
    "dockerfile": (FileKind.CONFIG, "Dockerfile"),
}

HEADERS: Dict[FileKind, str] = {
    FileKind.PDF: "=== PDF Document: {filename} ===\n{content}",
    FileKind.WORD: "=== Word Document: {filename} ===\n{content}",
    FileKind.POWERPOINT: "=== PowerPoint Presentation: {filename} ===\n{content}",
    FileKind.EXCEL: "=== Excel Spreadsheet: {filename} ===\n{content}",
    FileKind.TEXT: "=== File: {filename} ===\n{content}",
    FileKind.MARKDOWN: "=== Markdown Document: {filename} ===\n{content}",
    FileKind.CODE: "=== Source Code ({label}): {filename} ===\n```{extension}\n{content}\n```",
    FileKind.CONFIG: "=== Configuration File ({label}): {filename} ===\n```{extension}\n{content}\n```",
}

CONTEXT_INSTRUCTION = (
    "Use the content of the files above as context when answering the question that follows."
)


def extension_of(filename: str) -> str:
    """Text after the last dot, lower-cased; ``Dockerfile`` yields ``dockerfile``."""
    name = (filename or "").strip().replace("\\", "/").rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if name else ""


def kind_for(extension: str) -> Optional[FileKind]:
    entry = EXTENSIONS.get(extension.lower())
    return entry[0] if entry else None


def label_for(extension: str) -> str:
    entry = EXTENSIONS.get(extension.lower())
    return entry[1] if entry else extension.upper()


def render_entry(filename: str, extension: str, content: str) -> str:
    kind = kind_for(extension)
    if kind is None:
        return f"=== File: {filename} ===\n{content}"
    return HEADERS[kind].format(
        filename=filename,
        extension=extension,
        label=label_for(extension),
        content=content.rstrip("\n"),
    )


def _check_complete() -> None:
    missing = [kind.name for kind in FileKind if kind not in HEADERS]
    if missing:
        raise RuntimeError(f"No context header registered for file kind(s): {', '.join(missing)}")


_check_complete()
