from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

PAGE_BREAK = "\n\n\f\n\n"


class Method(StrEnum):
    STRUCTURAL = "structural"
    LOCAL_OCR = "local_ocr"
    CLOUD_VISION_SYNC = "cloud_vision_sync"
    DOCUMENT_AI_BATCH = "document_ai_batch"


class JobStatus(StrEnum):
    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT)


class ProgressSink(Protocol):
    def __call__(self, fraction: float) -> None: ...


@dataclass(frozen=True)
class SourceDocument:
    data: bytes
    mime_type: str
    file_name: str
    size_bytes: int = -1

    def __post_init__(self) -> None:
        if self.size_bytes < 0:
            object.__setattr__(self, "size_bytes", len(self.data))


@dataclass(frozen=True)
class ExtractedPage:
    page_number: int  # 1-based
    text: str
    block_confidences: tuple[float, ...] = ()


@dataclass(frozen=True)
class StagingLocation:
    bucket: str
    object_name: str
    output_prefix: str  # provider results land under gs://bucket/output_prefix

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.object_name}"

    @property
    def output_uri(self) -> str:
        return f"gs://{self.bucket}/{self.output_prefix}"


@dataclass
class ExtractionJob:
    """Async cloud OCR job; mutated only by the polling loop that owns it."""

    job_id: str
    staging: StagingLocation
    status: JobStatus = JobStatus.SUBMITTED
    poll_attempts: int = 0
    next_page_token: str | None = None
    status_message: str | None = None


@dataclass(frozen=True)
class JobStatusReport:
    status: JobStatus
    message: str | None = None


@dataclass(frozen=True)
class ResultPage:
    """One page of paginated async results; ``pages`` are in arrival order."""

    pages: list[ExtractedPage]
    next_page_token: str | None = None


# -- Strategy outcomes (one variant per method) --------------------------------


@dataclass(frozen=True)
class StructuralOutcome:
    pages: list[ExtractedPage]
    images_found: int = 0
    images_ocr_failed: int = 0
    method: Method = field(default=Method.STRUCTURAL, init=False)


@dataclass(frozen=True)
class LocalOcrOutcome:
    pages: list[ExtractedPage]
    language: str
    pages_failed: int = 0
    method: Method = field(default=Method.LOCAL_OCR, init=False)


@dataclass(frozen=True)
class CloudSyncOutcome:
    pages: list[ExtractedPage]
    requests_made: int = 1
    method: Method = field(default=Method.CLOUD_VISION_SYNC, init=False)


@dataclass(frozen=True)
class CloudJobOutcome:
    pages: list[ExtractedPage]
    job_id: str
    staging_uri: str
    poll_attempts: int
    result_pages: int
    method: Method = field(default=Method.DOCUMENT_AI_BATCH, init=False)


StrategyOutcome = StructuralOutcome | LocalOcrOutcome | CloudSyncOutcome | CloudJobOutcome


@dataclass(frozen=True)
class ExtractionResult:
    full_text: str
    overall_confidence: float
    method: Method
    page_count: int
    processing_time_ms: int
    metadata: dict[str, Any] = field(default_factory=dict)


def order_pages(pages: Iterable[ExtractedPage]) -> list[ExtractedPage]:
    """Sort by page number; pages repeated across result shards are merged in arrival order."""
    merged: dict[int, ExtractedPage] = {}
    for p in pages:
        prev = merged.get(p.page_number)
        if prev is None:
            merged[p.page_number] = p
            continue
        text = "\n".join(t for t in (prev.text, p.text) if t)
        merged[p.page_number] = ExtractedPage(
            page_number=p.page_number,
            text=text,
            block_confidences=prev.block_confidences + p.block_confidences,
        )
    return [merged[n] for n in sorted(merged)]


def join_pages(pages: Iterable[ExtractedPage]) -> str:
    return PAGE_BREAK.join(p.text for p in order_pages(pages))
