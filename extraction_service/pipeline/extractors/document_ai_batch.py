from __future__ import annotations

from extraction_service.pipeline.async_job import AsyncCloudJobOrchestrator
from extraction_service.pipeline.extractors.base import Extractor, RunContext
from extraction_service.pipeline.types import CloudJobOutcome, Method, SourceDocument


class DocumentAIBatchExtractor(Extractor):
    method = Method.DOCUMENT_AI_BATCH

    def __init__(self, *, jobs: AsyncCloudJobOrchestrator) -> None:
        self._jobs = jobs

    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> CloudJobOutcome:
        outcome = self._jobs.run(doc, cancel=ctx.cancel, deadline=ctx.deadline)
        if ctx.progress is not None:
            ctx.progress(1.0)
        return outcome
