"""Unit test conftest — no cloud services required.

PDF fixtures are generated in memory with fpdf2.
"""

from __future__ import annotations

import io
from collections.abc import Iterable

import pytest


def _pdf(pages: Iterable[str]) -> bytes:
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.set_font("Helvetica", size=12)
    for text in pages:
        pdf.add_page()
        if text:
            pdf.multi_cell(w=0, text=text)
    return bytes(pdf.output())


@pytest.fixture
def two_page_pdf_bytes() -> bytes:
    """A 2-page PDF with plenty of selectable text on each page."""
    return _pdf(
        [
            "First page of the syllabus. Topics include photosynthesis and cell division.",
            "Second page of the syllabus. Assessment is a final exam and two lab reports.",
        ]
    )


@pytest.fixture
def sparse_pdf_bytes() -> bytes:
    """A 5-page PDF whose native text totals 10 characters."""
    return _pdf(["ab", "cd", "ef", "gh", "ij"])


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """A 1-page PDF with no text content (a stand-in for a scan)."""
    return _pdf([""])


@pytest.fixture
def png_bytes() -> bytes:
    """A small white PNG."""
    pil_image = pytest.importorskip("PIL.Image")
    buf = io.BytesIO()
    pil_image.new("RGB", (64, 32), "white").save(buf, format="PNG")
    return buf.getvalue()
