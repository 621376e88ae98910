# tests/test_text_extractor.py
from __future__ import annotations

import io
from typing import List

import pytest
from docx import Document as DocxDocument

from functions.scoring.text_extractor import (
    Document,
    ExtractedText,
    TextExtractor,
    read_pdf_text,
    read_plain_text,
)
from functions.utils.errors import DocumentReadError


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _flapping_routine(outputs: List[str]):
    """Returns each output in turn, simulating a non-idempotent extractor."""
    calls: List[bytes] = []

    def routine(data: bytes) -> str:
        calls.append(data)
        return outputs[len(calls) - 1]

    routine.calls = calls  # type: ignore[attr-defined]
    return routine


def test_extract_returns_first_pass_when_lengths_agree() -> None:
    routine = _flapping_routine(["Jane Doe\nExperience", "Jane Doe\nExperienc"])
    extractor = TextExtractor(tolerance=5, routine=routine)

    out = extractor.extract(Document(b"bytes", "cv.pdf"))

    assert out == ExtractedText(text="Jane Doe\nExperience", reliable=True)
    assert len(routine.calls) == 2  # type: ignore[attr-defined]


def test_extract_is_unreliable_when_lengths_differ_by_tolerance_or_more() -> None:
    routine = _flapping_routine(["x" * 100, "x" * 95])
    extractor = TextExtractor(tolerance=5, routine=routine)

    out = extractor.extract(Document(b"bytes", "cv.pdf"))

    assert out.reliable is False
    assert out.text == ""


def test_extract_boundary_difference_just_under_tolerance_is_reliable() -> None:
    routine = _flapping_routine(["x" * 100, "x" * 96])
    out = TextExtractor(tolerance=5, routine=routine).extract(Document(b"b", "cv.pdf"))
    assert out.reliable is True
    assert out.text == "x" * 100


def test_each_pass_receives_the_original_bytes() -> None:
    routine = _flapping_routine(["abc", "abc"])
    TextExtractor(routine=routine).extract(Document(b"%PDF-raw", "cv.pdf"))
    assert routine.calls == [b"%PDF-raw", b"%PDF-raw"]  # type: ignore[attr-defined]


def test_plain_text_files_are_decoded_by_suffix() -> None:
    out = TextExtractor().extract(Document("Résumé\nSkills: Python".encode("utf-8"), "cv.TXT"))
    assert out.reliable is True
    assert out.text == "Résumé\nSkills: Python"


def test_docx_files_are_read_paragraph_by_paragraph() -> None:
    doc = DocxDocument()
    doc.add_paragraph("Jane Doe")
    doc.add_paragraph("Experience")
    doc.add_paragraph("Built data pipelines.")
    buf = io.BytesIO()
    doc.save(buf)

    out = TextExtractor().extract(Document(buf.getvalue(), "cv.docx"))

    assert out.reliable is True
    assert out.text.splitlines() == ["Jane Doe", "Experience", "Built data pipelines."]


def test_unparseable_pdf_raises_document_read_error() -> None:
    with pytest.raises(DocumentReadError) as exc_info:
        TextExtractor().extract(Document(b"definitely not a pdf", "cv.pdf"))

    assert exc_info.value.kind == "InvalidDocument"
    assert exc_info.value.http_status == 400
    assert exc_info.value.cause is not None


def test_unknown_suffix_falls_back_to_pdf_reader() -> None:
    with pytest.raises(DocumentReadError):
        TextExtractor().extract(Document(b"garbage", "cv.rtf"))


def test_tolerance_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TextExtractor(tolerance=0)


def test_module_level_readers() -> None:
    assert read_plain_text(b"abc\xff") == "abc"
    with pytest.raises(Exception):
        read_pdf_text(b"")


@pytest.mark.anyio
async def test_aextract_runs_off_the_event_loop_and_returns_same_result() -> None:
    routine = _flapping_routine(["hello world", "hello world"])
    out = await TextExtractor(routine=routine).aextract(Document(b"b", "cv.pdf"))
    assert out == ExtractedText(text="hello world", reliable=True)
