from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import Any

from extraction_service.errors import (
    ExtractionCancelledError,
    ExtractionError,
    ExtractionFailedError,
    InputError,
    InsufficientTextError,
)
from extraction_service.pipeline.confidence import aggregate_confidence, page_confidences
from extraction_service.pipeline.extractors.base import Extractor, RunContext
from extraction_service.pipeline.ocr.tesseract import validate_language
from extraction_service.pipeline.strategy import StrategySelector
from extraction_service.pipeline.types import (
    CloudJobOutcome,
    CloudSyncOutcome,
    ExtractedPage,
    ExtractionResult,
    LocalOcrOutcome,
    Method,
    ProgressSink,
    SourceDocument,
    StrategyOutcome,
    StructuralOutcome,
    join_pages,
    order_pages,
)

logger = logging.getLogger(__name__)


def _outcome_metadata(outcome: StrategyOutcome) -> dict[str, Any]:
    if isinstance(outcome, StructuralOutcome):
        return {"images_found": outcome.images_found, "images_ocr_failed": outcome.images_ocr_failed}
    if isinstance(outcome, LocalOcrOutcome):
        return {"language": outcome.language, "pages_failed": outcome.pages_failed}
    if isinstance(outcome, CloudSyncOutcome):
        return {"provider": "google-vision", "requests": outcome.requests_made}
    if isinstance(outcome, CloudJobOutcome):
        return {
            "provider": "documentai",
            "job_id": outcome.job_id,
            "staging_uri": outcome.staging_uri,
            "polling_attempts": outcome.poll_attempts,
            "result_pages": outcome.result_pages,
        }
    raise TypeError(f"Unknown strategy outcome: {type(outcome).__name__}")


class ExtractionOrchestrator:
    def __init__(
        self,
        *,
        selector: StrategySelector,
        extractors: Mapping[Method, Extractor],
        min_text_chars: int = 50,
    ) -> None:
        self._selector = selector
        self._extractors = dict(extractors)
        self._min_chars = max(0, int(min_text_chars))

    @property
    def methods(self) -> list[Method]:
        return list(self._extractors)

    def close(self) -> None:
        for extractor in self._extractors.values():
            extractor.close()

    def plan(self, doc: SourceDocument) -> list[Method]:
        return [m for m in self._selector.select(doc.mime_type, doc.size_bytes) if m in self._extractors]

    def extract(
        self,
        doc: SourceDocument,
        *,
        language: str = "eng",
        progress: ProgressSink | None = None,
        cancel: threading.Event | None = None,
        timeout_s: float | None = None,
    ) -> ExtractionResult:
        start = time.perf_counter()
        if not doc.data:
            raise InputError("File is empty")
        validate_language(language)

        plan = self.plan(doc)
        deadline = time.monotonic() + timeout_s if timeout_s else None
        ctx = RunContext(language=language, progress=progress, cancel=cancel, deadline=deadline)

        logger.info(
            "Extracting %s (%s, %d bytes) plan=%s",
            doc.file_name,
            doc.mime_type,
            doc.size_bytes,
            [m.value for m in plan],
        )

        attempted: list[str] = []
        last_err: ExtractionError | None = None
        # Longest non-empty text that fell short of min_text_chars; used if nothing better turns up
        best_short: tuple[int, StrategyOutcome, list[ExtractedPage]] | None = None
        for method in plan:
            if cancel is not None and cancel.is_set():
                raise ExtractionCancelledError("Extraction cancelled by caller")
            attempted.append(method.value)
            try:
                outcome = self._extractors[method].extract(doc=doc, ctx=ctx)
            except ExtractionError as e:
                if not e.recoverable:
                    raise
                last_err = e
                logger.warning("Strategy %s failed for %s, escalating: %s", method.value, doc.file_name, e)
                continue

            pages = order_pages(outcome.pages)
            try:
                self._check_useful(method, pages)
            except InsufficientTextError as e:
                last_err = e
                if e.chars > 0 and (best_short is None or e.chars > best_short[0]):
                    best_short = (e.chars, outcome, pages)
                logger.warning("Strategy %s found too little text in %s, escalating: %s", method.value, doc.file_name, e)
                continue

            return self._build_result(outcome, pages, start=start, attempted=attempted)

        if best_short is not None:
            chars, outcome, pages = best_short
            logger.info(
                "No strategy reached %d chars for %s; returning %d chars from %s",
                self._min_chars,
                doc.file_name,
                chars,
                outcome.method.value,
            )
            return self._build_result(outcome, pages, start=start, attempted=attempted, below_min_text=True)

        raise ExtractionFailedError(last_err, attempted)

    def _check_useful(self, method: Method, pages: list[ExtractedPage]) -> None:
        chars = sum(len(p.text.strip()) for p in pages)
        count = len(pages)
        if chars == 0 or (count > 1 and chars < self._min_chars):
            raise InsufficientTextError(method.value, chars, count)

    def _build_result(
        self,
        outcome: StrategyOutcome,
        pages: list[ExtractedPage],
        *,
        start: float,
        attempted: list[str],
        below_min_text: bool = False,
    ) -> ExtractionResult:
        confs = page_confidences(pages)
        meta = _outcome_metadata(outcome)
        meta.update({"blocks": len(confs), "attempted": list(attempted)})
        if below_min_text:
            meta["below_min_text"] = True
        result = ExtractionResult(
            full_text=join_pages(pages),
            overall_confidence=aggregate_confidence(confs, outcome.method),
            method=outcome.method,
            page_count=len(pages),
            processing_time_ms=int((time.perf_counter() - start) * 1000),
            metadata=meta,
        )
        logger.info(
            "Extraction succeeded via %s: %d chars, %d page(s), %.1f%% confidence",
            result.method.value,
            len(result.full_text),
            result.page_count,
            result.overall_confidence,
        )
        return result
