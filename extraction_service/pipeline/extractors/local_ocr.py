from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from extraction_service.errors import CorruptDocumentError, ExtractionCancelledError
from extraction_service.pipeline.extractors.base import Extractor, RunContext, normalize_text, scaled_progress
from extraction_service.pipeline.ocr.tesseract import OcrOutput, TesseractOcrEngine
from extraction_service.pipeline.rasterizer import DEFAULT_SCALE, page_count, render_pages
from extraction_service.pipeline.strategy import derive_doc_type
from extraction_service.pipeline.types import ExtractedPage, LocalOcrOutcome, Method, SourceDocument

logger = logging.getLogger(__name__)


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise CorruptDocumentError(f"Could not decode image: {e}") from e
    return img


def _ocr_page(number: int, res: OcrOutput) -> ExtractedPage:
    # One block per page; the document score is the mean of page confidences
    confs = (res.confidence,) if res.word_confidences else ()
    return ExtractedPage(number, normalize_text(res.text), confs)


class LocalOcrExtractor(Extractor):
    """Raster + Tesseract: PDFs are rendered page by page, images go straight in."""

    method = Method.LOCAL_OCR

    def __init__(self, *, engine: TesseractOcrEngine, scale: float = DEFAULT_SCALE) -> None:
        self._engine = engine
        self._scale = scale

    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> LocalOcrOutcome:
        if derive_doc_type(doc.mime_type) == "pdf":
            return self._extract_pdf(doc, ctx)

        img = open_image(doc.data)
        res = self._engine.recognize(img, lang=ctx.language, progress=ctx.progress)
        return LocalOcrOutcome(pages=[_ocr_page(1, res)], language=ctx.language)

    def _extract_pdf(self, doc: SourceDocument, ctx: RunContext) -> LocalOcrOutcome:
        total = page_count(doc.data)
        pages: list[ExtractedPage] = []
        failed = 0

        for idx, (number, img) in enumerate(render_pages(doc.data, scale=self._scale)):
            if ctx.cancel is not None and ctx.cancel.is_set():
                raise ExtractionCancelledError("Local OCR cancelled by caller")
            if img is None:
                failed += 1
                pages.append(ExtractedPage(number, ""))
                continue
            # ResourceUnavailableError propagates: no source will work for later pages either
            res = self._engine.recognize(img, lang=ctx.language, progress=scaled_progress(ctx.progress, idx, total))
            pages.append(_ocr_page(number, res))

        if total and failed == total:
            raise CorruptDocumentError(f"None of the {total} page(s) could be rendered for OCR")

        logger.info("Local OCR: %d page(s) rendered at %.1fx, %d failed", total, self._scale, failed)
        return LocalOcrOutcome(pages=pages, language=ctx.language, pages_failed=failed)
