"""Text extractors: turn a file on disk into plain text for chunking.

Dispatch is by extension:
  .pdf                                      → PdfExtractor (pypdf)
  .txt .md .markdown .rst .log .csv + code  → TextExtractor

Every extractor raises ExtractionError on failure so the indexer can record
the file and move on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

import pypdf
from pypdf.errors import PyPdfError

from quarry.exceptions import ExtractionError

logger = logging.getLogger(__name__)


@runtime_checkable
class Extractor(Protocol):
    """Anything that can pull plain text out of a file."""

    def supports(self, path: Path) -> bool: ...

    def extract(self, path: Path) -> str: ...


class TextExtractor:
    """UTF-8 text, markup, data and source files read verbatim."""

    EXTENSIONS: frozenset[str] = frozenset(
        [
            ".txt", ".text", ".md", ".markdown", ".rst", ".log", ".csv",
            ".swift", ".py", ".js", ".ts", ".java", ".cpp", ".c", ".h",
            ".json", ".xml", ".yml", ".yaml",
            ".html", ".css", ".scss",
            ".sh", ".bash", ".zsh",
        ]
    )

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() in self.EXTENSIONS

    def extract(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExtractionError(f"Failed to read text file: {exc}") from exc


class PdfExtractor:
    """Page-by-page text extraction via pypdf.

    Pages are joined with a ``--- Page N ---`` separator; pages without a
    text layer (scans) contribute nothing.
    """

    def supports(self, path: Path) -> bool:
        return path.suffix.lower() == ".pdf"

    def extract(self, path: Path) -> str:
        try:
            reader = pypdf.PdfReader(path)
            pages = list(reader.pages)
        except (OSError, ValueError, PyPdfError) as exc:
            raise ExtractionError(f"Failed to extract text from PDF: {exc}") from exc
        if not pages:
            raise ExtractionError("Failed to extract text from PDF: document has no pages")

        parts: list[str] = []
        extracted = 0
        for number, page in enumerate(pages, start=1):
            try:
                page_text = page.extract_text() or ""
            except (ValueError, PyPdfError) as exc:
                logger.warning("Skipping unreadable page %d of %s: %s", number, path.name, exc)
                continue
            if not page_text.strip():
                continue
            if parts:
                parts.append(f"\n\n--- Page {number} ---\n\n")
            parts.append(page_text)
            extracted += 1
        logger.debug("Extracted %d/%d pages from %s", extracted, len(pages), path.name)
        return "".join(parts)


class CompositeExtractor:
    """Route each file to the first registered extractor that supports it."""

    def __init__(self, extractors: list[Extractor] | None = None) -> None:
        self._extractors: list[Extractor] = (
            extractors if extractors is not None else [PdfExtractor(), TextExtractor()]
        )

    def supports(self, path: Path) -> bool:
        return any(e.supports(path) for e in self._extractors)

    def extract(self, path: Path) -> str:
        for extractor in self._extractors:
            if extractor.supports(path):
                return extractor.extract(path)
        raise ExtractionError(f"Unsupported file type: '{path.suffix or path.name}'")
