from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

from PIL import Image
from pypdf import PdfReader

from extraction_service.errors import CorruptDocumentError, ExtractionError, InsufficientTextError
from extraction_service.pipeline.extractors.base import Extractor, RunContext, collapse_whitespace
from extraction_service.pipeline.ocr.tesseract import TesseractOcrEngine
from extraction_service.pipeline.quality import assess_text_quality, uses_word_spacing
from extraction_service.pipeline.types import ExtractedPage, Method, SourceDocument, StructuralOutcome

logger = logging.getLogger(__name__)

# Native PDF text is exact; each non-empty page counts as one fully confident block.
NATIVE_TEXT_CONFIDENCE = 100.0


@dataclass(frozen=True)
class StructuralPage:
    page_number: int
    text: str
    images: list[Image.Image] = field(default_factory=list)
    images_skipped: int = 0


class StructuralTextExtractor:
    """Read native text runs and embedded images straight from the PDF's pages."""

    def __init__(self, *, collect_images: bool = True) -> None:
        self._collect_images = collect_images

    def extract_pages(self, data: bytes) -> list[StructuralPage]:
        try:
            reader = PdfReader(io.BytesIO(data))
            page_objs = list(reader.pages)
        except Exception as e:
            raise CorruptDocumentError(f"Could not parse PDF structure: {e}") from e

        out: list[StructuralPage] = []
        for i, p in enumerate(page_objs):
            number = i + 1
            try:
                text = collapse_whitespace(p.extract_text() or "")
            except Exception as e:
                logger.warning("Text extraction failed on page %d: %s", number, e)
                text = ""

            images: list[Image.Image] = []
            skipped = 0
            if self._collect_images:
                images, skipped = self._page_images(p, number)
            out.append(StructuralPage(page_number=number, text=text, images=images, images_skipped=skipped))
        return out

    def _page_images(self, page: object, number: int) -> tuple[list[Image.Image], int]:
        try:
            files = list(page.images)  # type: ignore[attr-defined]
        except Exception as e:
            logger.warning("Could not enumerate images on page %d: %s", number, e)
            return [], 0

        images: list[Image.Image] = []
        skipped = 0
        for f in files:
            try:
                img = f.image
                if img is None:
                    img = Image.open(io.BytesIO(f.data))
                images.append(img)
            except Exception as e:
                logger.warning("Skipping undecodable image %s on page %d: %s", getattr(f, "name", "?"), number, e)
                skipped += 1
        return images, skipped


class StructuralExtractor(Extractor):
    method = Method.STRUCTURAL

    def __init__(
        self,
        *,
        reader: StructuralTextExtractor | None = None,
        ocr: TesseractOcrEngine | None = None,
        quality_min_chars: int = 50,
    ) -> None:
        # ocr is only set when embedded images on text-less pages should be read
        self._ocr = ocr
        # Shorter native text is left to the orchestrator's length rule
        self._quality_min_chars = max(0, int(quality_min_chars))
        self._reader = reader or StructuralTextExtractor(collect_images=ocr is not None)

    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> StructuralOutcome:
        spages = self._reader.extract_pages(doc.data)
        self._check_readable(spages, ctx.language)

        pages: list[ExtractedPage] = []
        images_found = 0
        images_failed = 0

        for sp in spages:
            images_found += len(sp.images) + sp.images_skipped
            page, failed = self._page(sp, ctx)
            pages.append(page)
            images_failed += sp.images_skipped + failed
            if ctx.progress is not None:
                ctx.progress(sp.page_number / max(len(spages), 1))

        logger.info(
            "Structural extraction: %d page(s), %d with text, %d image(s)",
            len(pages),
            sum(1 for p in pages if p.text),
            images_found,
        )
        return StructuralOutcome(pages=pages, images_found=images_found, images_ocr_failed=images_failed)

    def _check_readable(self, spages: list[StructuralPage], language: str) -> None:
        native = " ".join(sp.text for sp in spages if sp.text)
        if not native or len(native) < self._quality_min_chars:
            return
        q = assess_text_quality(native, word_checks=uses_word_spacing(language))
        if q.readable:
            return
        logger.warning(
            "Native PDF text looks garbled (%s): alpha=%.2f control=%.2f words=%d avg_len=%.1f",
            q.reason,
            q.alpha_ratio,
            q.control_ratio,
            q.word_count,
            q.avg_word_len,
        )
        raise InsufficientTextError(self.method.value, len(native), len(spages), reason=q.reason)

    def _page(self, sp: StructuralPage, ctx: RunContext) -> tuple[ExtractedPage, int]:
        if sp.text:
            return ExtractedPage(sp.page_number, sp.text, (NATIVE_TEXT_CONFIDENCE,)), 0
        if self._ocr is None or not sp.images:
            return ExtractedPage(sp.page_number, ""), 0

        texts: list[str] = []
        confs: list[float] = []
        failed = 0
        for n, img in enumerate(sp.images, start=1):
            try:
                res = self._ocr.recognize(img, lang=ctx.language)
            except ExtractionError as e:
                if not e.recoverable:
                    raise
                logger.warning("OCR of image %d on page %d skipped: %s", n, sp.page_number, e)
                failed += 1
                continue
            if res.text:
                texts.append(res.text)
                confs.extend(res.word_confidences)
        return ExtractedPage(sp.page_number, "\n".join(texts), tuple(confs)), failed
