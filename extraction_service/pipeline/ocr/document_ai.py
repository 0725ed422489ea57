from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from google.cloud import documentai_v1 as documentai
from google.cloud.storage import Client
from google.longrunning import operations_pb2

from extraction_service.errors import TransientProviderError
from extraction_service.pipeline.types import (
    ExtractedPage,
    ExtractionJob,
    JobStatus,
    JobStatusReport,
    ResultPage,
    StagingLocation,
)

logger = logging.getLogger(__name__)

_PROVIDER = "documentai"

_FAILED_STATES = {
    documentai.BatchProcessMetadata.State.FAILED,
    documentai.BatchProcessMetadata.State.CANCELLED,
    documentai.BatchProcessMetadata.State.CANCELLING,
}


@dataclass(frozen=True)
class DocAIConfig:
    project: str
    location: str
    processor_id: str

    @property
    def processor_name(self) -> str:
        return f"projects/{self.project}/locations/{self.location}/processors/{self.processor_id}"


def _anchor_text(doc: Any, anchor: Any) -> str:
    if anchor is None:
        return ""
    full = doc.text or ""
    parts: list[str] = []
    for seg in anchor.text_segments:
        start = int(seg.start_index or 0)
        end = int(seg.end_index or 0)
        parts.append(full[start:end])
    return "".join(parts)


def document_pages(doc: Any) -> list[ExtractedPage]:
    """Convert one Document AI ``Document`` (or output shard) into pages."""
    out: list[ExtractedPage] = []
    for idx, page in enumerate(doc.pages):
        number = int(page.page_number or 0) or idx + 1
        text = _anchor_text(doc, page.layout.text_anchor).strip()
        confs = tuple(
            float(b.layout.confidence) * 100.0 for b in page.blocks if b.layout.confidence is not None
        )
        out.append(ExtractedPage(page_number=number, text=text, block_confidences=confs))
    if not out and doc.text:
        out.append(ExtractedPage(page_number=1, text=doc.text.strip()))
    return out


def _parse_shard(raw: str) -> Any | None:
    try:
        obj = json.loads(raw)
    except ValueError:
        return None
    # Some outputs have {"document": {...}}; others are direct Document JSON.
    doc_obj = obj.get("document") if isinstance(obj, dict) else None
    if doc_obj is None:
        doc_obj = obj
    try:
        return documentai.Document.from_json(json.dumps(doc_obj), ignore_unknown_fields=True)
    except Exception as e:
        logger.warning("Skipping unparseable Document AI shard: %s", e)
        return None


class DocumentAIBatchProvider:
    """
    Async OCR over Document AI batch processing:
    - submit: GCS in -> long-running operation (its name is the job id)
    - status: operation + BatchProcessMetadata state
    - results: JSON shards under the staging output prefix, listed page by page
    """

    def __init__(self, *, cfg: DocAIConfig, storage_client: Client, page_size: int = 10, doc_client: Any = None) -> None:
        self._cfg = cfg
        self._doc_client = doc_client or documentai.DocumentProcessorServiceClient()
        self._storage = storage_client
        self._page_size = max(1, int(page_size))

    def submit(self, staging: StagingLocation, *, mime_type: str) -> str:
        gcs_doc = documentai.GcsDocument(gcs_uri=staging.uri, mime_type=mime_type)
        input_docs = documentai.BatchDocumentsInputConfig(gcs_documents=documentai.GcsDocuments(documents=[gcs_doc]))
        output_cfg = documentai.DocumentOutputConfig(
            gcs_output_config=documentai.DocumentOutputConfig.GcsOutputConfig(gcs_uri=staging.output_uri)
        )
        req = documentai.BatchProcessRequest(
            name=self._cfg.processor_name,
            input_documents=input_docs,
            document_output_config=output_cfg,
        )
        op = self._doc_client.batch_process_documents(request=req)
        job_id = op.operation.name
        if not job_id:
            raise TransientProviderError("No operation name returned from batch_process_documents", provider=_PROVIDER)
        logger.info("Document AI batch job started: %s", job_id)
        return job_id

    def get_status(self, job_id: str) -> JobStatusReport:
        op = self._doc_client.get_operation(request=operations_pb2.GetOperationRequest(name=job_id))

        state = None
        state_message = None
        if op.HasField("metadata") and op.metadata.value:
            meta = documentai.BatchProcessMetadata.deserialize(op.metadata.value)
            state = meta.state
            state_message = meta.state_message or None

        if not op.done:
            return JobStatusReport(status=JobStatus.IN_PROGRESS, message=state_message)
        if op.HasField("error") and op.error.code != 0:
            return JobStatusReport(status=JobStatus.FAILED, message=op.error.message or state_message)
        if state in _FAILED_STATES:
            return JobStatusReport(status=JobStatus.FAILED, message=state_message)
        return JobStatusReport(status=JobStatus.SUCCEEDED, message=state_message)

    def cancel(self, job_id: str) -> None:
        """Best-effort stop of a running batch job; the operation may already be done."""
        self._doc_client.cancel_operation(request=operations_pb2.CancelOperationRequest(name=job_id))
        logger.info("Document AI batch job cancel requested: %s", job_id)

    def get_results(self, job: ExtractionJob, page_token: str | None = None) -> ResultPage:
        it = self._storage.list_blobs(
            job.staging.bucket,
            prefix=job.staging.output_prefix,
            page_size=self._page_size,
            page_token=page_token,
        )
        listing = next(iter(it.pages), None)
        blobs = list(listing) if listing is not None else []
        # DocAI writes multiple json shards; keep stable order by name within a listing page
        json_blobs = sorted([b for b in blobs if b.name.lower().endswith(".json")], key=lambda b: b.name)

        pages: list[ExtractedPage] = []
        for b in json_blobs:
            doc = _parse_shard(b.download_as_text(encoding="utf-8"))
            if doc is not None:
                pages.extend(document_pages(doc))

        return ResultPage(pages=pages, next_page_token=it.next_page_token or None)
