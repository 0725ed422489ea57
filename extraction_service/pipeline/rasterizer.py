"""Render PDF pages to PIL images for OCR."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import fitz  # PyMuPDF
from PIL import Image

from extraction_service.errors import CorruptDocumentError

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 2.0


def open_pdf(data: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise CorruptDocumentError(f"Could not open PDF for rendering: {e}") from e


def render_page(doc: fitz.Document, page_index: int, *, scale: float = DEFAULT_SCALE) -> Image.Image:
    page = doc.load_page(page_index)
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)


def render_page_png(doc: fitz.Document, page_index: int, *, scale: float = DEFAULT_SCALE) -> bytes:
    page = doc.load_page(page_index)
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return pix.tobytes("png")


def render_pages(data: bytes, *, scale: float = DEFAULT_SCALE) -> Iterator[tuple[int, Image.Image | None]]:
    """Yield ``(page_number, image)``; a page that fails to render yields ``None``."""
    doc = open_pdf(data)
    try:
        for i in range(doc.page_count):
            try:
                img = render_page(doc, i, scale=scale)
            except Exception as e:
                logger.warning("Failed to render page %d: %s", i + 1, e)
                img = None
            yield i + 1, img
    finally:
        doc.close()


def render_pages_png(data: bytes, *, scale: float = DEFAULT_SCALE) -> Iterator[tuple[int, bytes | None]]:
    doc = open_pdf(data)
    try:
        for i in range(doc.page_count):
            try:
                png = render_page_png(doc, i, scale=scale)
            except Exception as e:
                logger.warning("Failed to render page %d: %s", i + 1, e)
                png = None
            yield i + 1, png
    finally:
        doc.close()


def page_count(data: bytes) -> int:
    doc = open_pdf(data)
    try:
        return doc.page_count
    finally:
        doc.close()
