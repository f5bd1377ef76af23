"""Plain-text extraction from stored PDF and HTML invoices."""

import asyncio
import html
import logging
import re
from pathlib import Path

import pdfplumber

from invoice_pipeline.models.batch_file import FileType
from invoice_pipeline.services.errors import DocumentReadError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def _page_text(page: pdfplumber.page.Page) -> str:  # type: ignore[name-defined]
    """Extract text from a pdfplumber page using word-level joining to preserve spaces."""
    words = page.extract_words(x_tolerance=3, y_tolerance=3, keep_blank_chars=False)
    if not words:
        return ""
    lines: list[str] = []
    current_line: list[str] = []
    prev_bottom: float = words[0]["bottom"]
    for word in words:
        if abs(word["bottom"] - prev_bottom) > 5:
            lines.append(" ".join(current_line))
            current_line = []
        current_line.append(word["text"])
        prev_bottom = word["bottom"]
    if current_line:
        lines.append(" ".join(current_line))
    return "\n".join(lines)


def read_pdf_text(file_path: str) -> str:
    """Return the text of every page of the PDF at *file_path*."""
    with pdfplumber.open(file_path) as pdf:
        return "\n\n".join(_page_text(p) for p in pdf.pages)


def html_to_text(markup: str) -> str:
    """Strip tags, scripts and styles from *markup* and collapse whitespace."""
    text = _SCRIPT_STYLE_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", html.unescape(text)).strip()


def read_html_text(file_path: str) -> str:
    return html_to_text(Path(file_path).read_text(encoding="utf-8", errors="replace"))


class TextExtractor:
    """Converts a stored document into plain text without blocking the event loop."""

    async def extract_text(self, file_path: str, file_type: str) -> str:
        """Return the plain text of the document at *file_path*.

        Raises UnsupportedFileTypeError for anything but PDF or HTML, and
        DocumentReadError if the file cannot be opened or parsed.
        """
        kind = (file_type or "").upper()
        if kind == FileType.PDF:
            reader = read_pdf_text
        elif kind == FileType.HTML:
            reader = read_html_text
        else:
            raise UnsupportedFileTypeError(f"unsupported file type {file_type!r}")

        try:
            # pdfplumber is synchronous and CPU-bound; keep it off the event loop.
            text = await asyncio.to_thread(reader, file_path)
        except Exception as exc:
            raise DocumentReadError(f"{Path(file_path).name}: {exc}") from exc
        logger.info("extracted %d chars of text from %s (%s)", len(text), file_path, kind)
        return text
