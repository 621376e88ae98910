"""
functions/scoring/text_extractor.py

WHAT THIS FILE IS FOR
---------------------
Turns an uploaded resume (raw bytes + original filename) into plain text,
with a consistency check that rejects unreliable extractions.

DOUBLE-EXTRACTION CHECK
-----------------------
Some documents yield corrupted or truncated text non-deterministically.
A single pass cannot detect this, so the routine runs twice on the same
bytes, each pass reading from a fresh BytesIO (no reader reuse), and
compares output lengths:

    |len(pass1) - len(pass2)| < tolerance  -> ExtractedText(pass1, reliable=True)
    otherwise                              -> ExtractedText("", reliable=False)

Callers MUST treat reliable=False as terminal (UnreliableExtractionError).

SUPPORTED FORMATS
-----------------
- .pdf  -> pypdf
- .docx -> python-docx
- .txt  -> UTF-8 decode
Anything else is parsed as PDF.

WHAT THIS FILE IS NOT FOR
-------------------------
- Section detection (see prompt_composer.py)
- Deciding whether an empty text is acceptable (PromptComposer fails on it)
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable, Dict, Optional

import structlog
from anyio import to_thread
from docx import Document as DocxDocument
from pypdf import PdfReader

from functions.utils.errors import DocumentReadError

logger = structlog.get_logger(__name__)

DEFAULT_LENGTH_TOLERANCE = 5

ExtractionRoutine = Callable[[bytes], str]


@dataclass(frozen=True)
class Document:
    content: bytes
    file_name: str

    @property
    def suffix(self) -> str:
        return PurePath(self.file_name).suffix.lower()


@dataclass(frozen=True)
class ExtractedText:
    text: str
    reliable: bool


def read_pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(pages)


def read_docx_text(data: bytes) -> str:
    doc = DocxDocument(io.BytesIO(data))
    return "\n".join(p.text for p in doc.paragraphs)


def read_plain_text(data: bytes) -> str:
    return data.decode("utf-8", errors="ignore")


ROUTINES_BY_SUFFIX: Dict[str, ExtractionRoutine] = {
    ".pdf": read_pdf_text,
    ".docx": read_docx_text,
    ".txt": read_plain_text,
}


class TextExtractor:
    """
    Double-pass text extractor.

    `routine` overrides suffix-based dispatch (used by tests to simulate
    non-idempotent extractors).
    """

    def __init__(
        self,
        tolerance: int = DEFAULT_LENGTH_TOLERANCE,
        routine: Optional[ExtractionRoutine] = None,
    ) -> None:
        if tolerance < 1:
            raise ValueError("tolerance must be >= 1")
        self.tolerance = tolerance
        self._routine = routine

    def _routine_for(self, document: Document) -> ExtractionRoutine:
        if self._routine is not None:
            return self._routine
        return ROUTINES_BY_SUFFIX.get(document.suffix, read_pdf_text)

    def _run_once(self, routine: ExtractionRoutine, document: Document) -> str:
        try:
            return routine(bytes(document.content))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "document_read_failed",
                file_name=document.file_name,
                error=str(exc),
            )
            raise DocumentReadError(
                f"Error extracting text from {document.file_name!r}: {exc}", cause=exc
            ) from exc

    def extract(self, document: Document) -> ExtractedText:
        routine = self._routine_for(document)

        first = self._run_once(routine, document)
        second = self._run_once(routine, document)

        delta = abs(len(first) - len(second))
        if delta < self.tolerance:
            logger.debug(
                "extraction_verified",
                file_name=document.file_name,
                length=len(first),
                delta=delta,
            )
            return ExtractedText(text=first, reliable=True)

        logger.warning(
            "extraction_unreliable",
            file_name=document.file_name,
            first_length=len(first),
            second_length=len(second),
            tolerance=self.tolerance,
        )
        return ExtractedText(text="", reliable=False)

    async def aextract(self, document: Document) -> ExtractedText:
        """Run `extract` on a worker thread so parsing never blocks the event loop."""
        return await to_thread.run_sync(self.extract, document)
