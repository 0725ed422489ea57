from __future__ import annotations

import logging

from extraction_service.errors import CorruptDocumentError, ExtractionCancelledError
from extraction_service.pipeline.extractors.base import Extractor, RunContext
from extraction_service.pipeline.ocr.vision import VisionOcrClient
from extraction_service.pipeline.rasterizer import DEFAULT_SCALE, page_count, render_pages_png
from extraction_service.pipeline.strategy import derive_doc_type
from extraction_service.pipeline.types import CloudSyncOutcome, ExtractedPage, Method, SourceDocument

logger = logging.getLogger(__name__)


class CloudVisionExtractor(Extractor):
    """One Vision request per image; PDFs are sent one rendered page at a time."""

    method = Method.CLOUD_VISION_SYNC

    def __init__(self, *, client: VisionOcrClient, scale: float = DEFAULT_SCALE) -> None:
        self._client = client
        self._scale = scale

    def close(self) -> None:
        self._client.close()

    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> CloudSyncOutcome:
        if derive_doc_type(doc.mime_type) != "pdf":
            res = self._client.annotate(doc.data, page_number=1)
            if ctx.progress is not None:
                ctx.progress(1.0)
            return CloudSyncOutcome(pages=[res.page], requests_made=1)

        total = page_count(doc.data)
        pages: list[ExtractedPage] = []
        requests = 0
        for number, png in render_pages_png(doc.data, scale=self._scale):
            if ctx.cancel is not None and ctx.cancel.is_set():
                raise ExtractionCancelledError("Cloud OCR cancelled by caller")
            if png is None:
                pages.append(ExtractedPage(number, ""))
                continue
            res = self._client.annotate(png, page_number=number)
            requests += 1
            pages.append(res.page)
            if ctx.progress is not None:
                ctx.progress(number / max(total, 1))

        if total and requests == 0:
            raise CorruptDocumentError(f"None of the {total} page(s) could be rendered for cloud OCR")

        logger.info("Cloud Vision: %d request(s) for %d page(s)", requests, total)
        return CloudSyncOutcome(pages=pages, requests_made=requests)
