"""Unit tests for the escalating extraction orchestrator.

End-to-end scenarios wire real structural extraction and the real async job
orchestrator (over in-memory fakes) next to stub strategies that record calls.
"""

from __future__ import annotations

import threading
import time

import pytest
from fakes import FakeAsyncProvider, FakeStagingStore, paged_results

from extraction_service.errors import (
    ErrorKind,
    ExtractionCancelledError,
    ExtractionFailedError,
    InputError,
    InsufficientTextError,
    TimedOutError,
    TransientProviderError,
    UnsupportedTypeError,
)
from extraction_service.pipeline.async_job import AsyncCloudJobOrchestrator
from extraction_service.pipeline.extractors.base import Extractor, RunContext
from extraction_service.pipeline.extractors.document_ai_batch import DocumentAIBatchExtractor
from extraction_service.pipeline.orchestrator import ExtractionOrchestrator
from extraction_service.pipeline.strategy import StrategySelector
from extraction_service.pipeline.types import (
    PAGE_BREAK,
    CloudSyncOutcome,
    ExtractedPage,
    JobStatus,
    LocalOcrOutcome,
    Method,
    SourceDocument,
    StrategyOutcome,
    StructuralOutcome,
)

MB = 1024 * 1024
LONG = "A sufficiently long line of recognised text for one page."

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubExtractor(Extractor):
    def __init__(self, method: Method, outcome: StrategyOutcome | None = None, error: Exception | None = None):
        self.method = method
        self._outcome = outcome
        self._error = error
        self.calls: list[RunContext] = []

    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> StrategyOutcome:
        self.calls.append(ctx)
        if self._error is not None:
            raise self._error
        assert self._outcome is not None
        return self._outcome


def _structural(*texts: str) -> StubExtractor:
    pages = [ExtractedPage(i + 1, t, (100.0,) if t else ()) for i, t in enumerate(texts)]
    return StubExtractor(Method.STRUCTURAL, StructuralOutcome(pages=pages))


def _local(*texts: str, conf: float = 85.0) -> StubExtractor:
    pages = [ExtractedPage(i + 1, t, (conf,)) for i, t in enumerate(texts)]
    return StubExtractor(Method.LOCAL_OCR, LocalOcrOutcome(pages=pages, language="eng"))


def _vision(*texts: str, confs: tuple[float, ...] = (60.0, 70.0)) -> StubExtractor:
    pages = [ExtractedPage(i + 1, t, confs) for i, t in enumerate(texts)]
    return StubExtractor(Method.CLOUD_VISION_SYNC, CloudSyncOutcome(pages=pages, requests_made=len(pages)))


def _failing(method: Method, error: Exception | None = None) -> StubExtractor:
    return StubExtractor(method, error=error or TransientProviderError("down"))


def _orchestrator(extractors: dict[Method, Extractor], *, min_text_chars: int = 50) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        selector=StrategySelector(
            vision_enabled=Method.CLOUD_VISION_SYNC in extractors,
            docai_enabled=Method.DOCUMENT_AI_BATCH in extractors,
        ),
        extractors=extractors,
        min_text_chars=min_text_chars,
    )


def _pdf(data: bytes = b"%PDF-1.4", *, size: int = -1) -> SourceDocument:
    return SourceDocument(data=data, mime_type="application/pdf", file_name="doc.pdf", size_bytes=size)


def _batch(statuses: list[JobStatus], results, *, max_attempts: int = 60):
    store = FakeStagingStore()
    provider = FakeAsyncProvider(statuses, results)
    jobs = AsyncCloudJobOrchestrator(storage=store, provider=provider, poll_interval_s=0, max_attempts=max_attempts)
    return DocumentAIBatchExtractor(jobs=jobs), store, provider


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_selectable_pdf_uses_structural_only(self, two_page_pdf_bytes):
        pytest.importorskip("pypdf")
        from extraction_service.pipeline.extractors.structural import StructuralExtractor

        local = _local(LONG)
        vision = _vision(LONG)
        batch = _failing(Method.DOCUMENT_AI_BATCH)
        orch = _orchestrator(
            {
                Method.STRUCTURAL: StructuralExtractor(),
                Method.LOCAL_OCR: local,
                Method.CLOUD_VISION_SYNC: vision,
                Method.DOCUMENT_AI_BATCH: batch,
            }
        )

        result = orch.extract(_pdf(two_page_pdf_bytes))

        assert result.method is Method.STRUCTURAL
        assert result.page_count == 2
        assert result.overall_confidence == pytest.approx(100.0)
        assert PAGE_BREAK in result.full_text
        assert local.calls == vision.calls == batch.calls == []
        assert result.metadata["attempted"] == ["structural"]

    def test_scanned_image_uses_sync_cloud(self):
        vision = _vision("Scanned handout text", confs=(55.0, 65.0))
        local = _local(LONG)
        orch = _orchestrator({Method.LOCAL_OCR: local, Method.CLOUD_VISION_SYNC: vision})
        doc = SourceDocument(data=b"\xff\xd8jpeg", mime_type="image/jpeg", file_name="scan.jpg", size_bytes=3 * MB)

        result = orch.extract(doc)

        assert result.method is Method.CLOUD_VISION_SYNC
        assert 75.0 <= result.overall_confidence <= 100.0
        assert local.calls == []
        assert result.metadata["provider"] == "google-vision"

    def test_large_pdf_routes_to_async_and_cleans_up_once(self):
        batch, store, provider = _batch(
            [JobStatus.IN_PROGRESS, JobStatus.IN_PROGRESS, JobStatus.SUCCEEDED],
            # pages arrive out of order across two result pages
            paged_results([ExtractedPage(2, "second page", (90.0,))], [ExtractedPage(1, "first page", (70.0,))]),
        )
        vision = _vision(LONG)
        orch = _orchestrator(
            {
                Method.STRUCTURAL: _structural("", ""),
                Method.LOCAL_OCR: _failing(Method.LOCAL_OCR, InsufficientTextError("local_ocr", 0, 2)),
                Method.CLOUD_VISION_SYNC: vision,
                Method.DOCUMENT_AI_BATCH: batch,
            }
        )

        result = orch.extract(_pdf(size=12 * MB))

        assert result.method is Method.DOCUMENT_AI_BATCH
        assert result.full_text == f"first page{PAGE_BREAK}second page"
        assert result.page_count == 2
        assert result.overall_confidence == pytest.approx(80.0)
        assert vision.calls == []
        assert provider.status_calls == 3
        assert store.deletes == store.puts
        assert len(store.deletes) == 1
        assert result.metadata["polling_attempts"] == 3
        assert result.metadata["result_pages"] == 2
        assert result.metadata["attempted"] == ["structural", "local_ocr", "document_ai_batch"]

    def test_stuck_async_job_times_out_and_still_cleans_up(self):
        batch, store, provider = _batch([JobStatus.IN_PROGRESS], None, max_attempts=4)
        orch = _orchestrator(
            {
                Method.STRUCTURAL: _structural(""),
                Method.LOCAL_OCR: _failing(Method.LOCAL_OCR),
                Method.DOCUMENT_AI_BATCH: batch,
            }
        )

        with pytest.raises(ExtractionFailedError) as ei:
            orch.extract(_pdf(size=12 * MB))

        assert ei.value.kind is ErrorKind.TIMED_OUT
        assert isinstance(ei.value.last_error, TimedOutError)
        assert ei.value.last_error.attempts == 4
        assert provider.status_calls == 4
        assert len(store.deletes) == 1

    def test_near_empty_structural_text_escalates(self, sparse_pdf_bytes):
        pytest.importorskip("pypdf")
        from extraction_service.pipeline.extractors.structural import StructuralExtractor

        local = _local(LONG, LONG, LONG, LONG, LONG)
        orch = _orchestrator({Method.STRUCTURAL: StructuralExtractor(), Method.LOCAL_OCR: local})

        result = orch.extract(_pdf(sparse_pdf_bytes))

        assert result.method is Method.LOCAL_OCR
        assert len(local.calls) == 1
        assert result.metadata["attempted"] == ["structural", "local_ocr"]
        assert result.overall_confidence == pytest.approx(85.0)


# ---------------------------------------------------------------------------
# Escalation rules
# ---------------------------------------------------------------------------


class TestEscalation:
    def test_short_single_page_is_accepted(self):
        orch = _orchestrator({Method.STRUCTURAL: _structural("Hi"), Method.LOCAL_OCR: _local(LONG)})
        result = orch.extract(_pdf())
        assert result.method is Method.STRUCTURAL
        assert result.full_text == "Hi"

    def test_empty_single_page_escalates(self):
        local = _local(LONG)
        orch = _orchestrator({Method.STRUCTURAL: _structural("   "), Method.LOCAL_OCR: local})
        assert orch.extract(_pdf()).method is Method.LOCAL_OCR

    def test_min_text_chars_is_configurable(self):
        orch = _orchestrator(
            {Method.STRUCTURAL: _structural("ab", "cd"), Method.LOCAL_OCR: _local(LONG)},
            min_text_chars=4,
        )
        assert orch.extract(_pdf()).method is Method.STRUCTURAL

    def test_all_strategies_exhausted(self):
        orch = _orchestrator(
            {
                Method.STRUCTURAL: _structural(""),
                Method.LOCAL_OCR: _failing(Method.LOCAL_OCR),
            }
        )
        with pytest.raises(ExtractionFailedError) as ei:
            orch.extract(_pdf())
        assert ei.value.kind is ErrorKind.EXHAUSTED
        assert ei.value.attempted == ["structural", "local_ocr"]
        assert isinstance(ei.value.last_error, TransientProviderError)

    def test_short_result_from_last_strategy_is_returned(self):
        batch, store, _ = _batch(
            [JobStatus.SUCCEEDED],
            paged_results([ExtractedPage(1, "first page", (90.0,)), ExtractedPage(2, "second page", (90.0,))]),
        )
        result = _orchestrator({Method.DOCUMENT_AI_BATCH: batch}).extract(_pdf(size=12 * MB))

        assert result.method is Method.DOCUMENT_AI_BATCH
        assert result.full_text == f"first page{PAGE_BREAK}second page"
        assert result.metadata["below_min_text"] is True
        assert len(store.deletes) == 1

    def test_longest_short_result_wins_when_all_fall_short(self):
        orch = _orchestrator(
            {
                Method.STRUCTURAL: _structural("ab", "cd"),
                Method.LOCAL_OCR: _local("abcdef", "ghij"),
                Method.CLOUD_VISION_SYNC: _vision("xy", "z"),
                Method.DOCUMENT_AI_BATCH: _failing(Method.DOCUMENT_AI_BATCH),
            }
        )
        result = orch.extract(_pdf(size=MB))
        assert result.method is Method.LOCAL_OCR
        assert result.metadata["attempted"] == ["structural", "local_ocr", "cloud_vision_sync", "document_ai_batch"]

    def test_full_result_needs_no_flag(self):
        result = _orchestrator({Method.STRUCTURAL: _structural(LONG)}).extract(_pdf())
        assert "below_min_text" not in result.metadata

    def test_unreadable_text_is_never_kept_as_fallback(self):
        garbled = _failing(Method.STRUCTURAL, InsufficientTextError("structural", 400, 2, reason="low_alpha_ratio"))
        orch = _orchestrator({Method.STRUCTURAL: garbled, Method.LOCAL_OCR: _failing(Method.LOCAL_OCR)})
        with pytest.raises(ExtractionFailedError) as ei:
            orch.extract(_pdf())
        assert ei.value.kind is ErrorKind.EXHAUSTED

    def test_non_recoverable_error_stops_escalation(self):
        local = _local(LONG)
        orch = _orchestrator(
            {
                Method.STRUCTURAL: _failing(Method.STRUCTURAL, InputError("bad")),
                Method.LOCAL_OCR: local,
            }
        )
        with pytest.raises(InputError):
            orch.extract(_pdf())
        assert local.calls == []

    def test_pages_are_ordered_in_result(self):
        out_of_order = StubExtractor(
            Method.STRUCTURAL,
            StructuralOutcome(pages=[ExtractedPage(2, "two " * 10), ExtractedPage(1, "one " * 10)]),
        )
        result = _orchestrator({Method.STRUCTURAL: out_of_order}).extract(_pdf())
        assert result.full_text.startswith("one")
        assert result.full_text.split(PAGE_BREAK)[1].startswith("two")


# ---------------------------------------------------------------------------
# Input handling and plumbing
# ---------------------------------------------------------------------------


class TestInputs:
    def test_empty_file(self):
        with pytest.raises(InputError):
            _orchestrator({Method.STRUCTURAL: _structural(LONG)}).extract(_pdf(b""))

    def test_unsupported_type_before_any_strategy(self):
        structural = _structural(LONG)
        doc = SourceDocument(data=b"PK\x03\x04", mime_type="application/zip", file_name="a.zip")
        with pytest.raises(UnsupportedTypeError):
            _orchestrator({Method.STRUCTURAL: structural}).extract(doc)
        assert structural.calls == []

    def test_unknown_language(self):
        with pytest.raises(InputError, match="klingon"):
            _orchestrator({Method.STRUCTURAL: _structural(LONG)}).extract(_pdf(), language="klingon")

    def test_plan_skips_unconfigured_strategies(self):
        orch = ExtractionOrchestrator(
            selector=StrategySelector(),
            extractors={Method.STRUCTURAL: _structural(LONG), Method.DOCUMENT_AI_BATCH: _failing(Method.DOCUMENT_AI_BATCH)},
        )
        assert orch.plan(_pdf()) == [Method.STRUCTURAL, Method.DOCUMENT_AI_BATCH]

    def test_context_carries_language_deadline_and_cancel(self):
        structural = _structural(LONG)
        cancel = threading.Event()
        seen: list[float] = []
        before = time.monotonic()
        _orchestrator({Method.STRUCTURAL: structural}).extract(
            _pdf(), language="eng+fra", progress=seen.append, cancel=cancel, timeout_s=30
        )
        ctx = structural.calls[0]
        assert ctx.language == "eng+fra"
        assert ctx.cancel is cancel
        assert ctx.progress is not None
        assert ctx.deadline is not None and ctx.deadline >= before + 30

    def test_cancelled_before_start(self):
        structural = _structural(LONG)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ExtractionCancelledError):
            _orchestrator({Method.STRUCTURAL: structural}).extract(_pdf(), cancel=cancel)
        assert structural.calls == []

    def test_result_metadata(self):
        result = _orchestrator({Method.STRUCTURAL: _structural(LONG)}).extract(_pdf())
        assert result.metadata["blocks"] == 1
        assert result.processing_time_ms >= 0

    def test_close_closes_every_extractor(self):
        vision = _vision(LONG)
        closed: list[Method] = []
        vision.close = lambda: closed.append(Method.CLOUD_VISION_SYNC)  # type: ignore[method-assign]
        orch = _orchestrator({Method.STRUCTURAL: _structural(LONG), Method.CLOUD_VISION_SYNC: vision})
        orch.close()
        assert closed == [Method.CLOUD_VISION_SYNC]
        assert set(orch.methods) == {Method.STRUCTURAL, Method.CLOUD_VISION_SYNC}
