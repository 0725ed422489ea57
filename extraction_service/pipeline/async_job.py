"""Stage -> submit -> poll -> drain for the async cloud OCR path.

Staging is held by a ``StagingLease`` that is released exactly once, from a
``finally`` block, on every path out of submit/poll/drain: success, provider
FAILED, timeout, cancellation, or an unexpected exception. Release failures are
logged and never replace the primary outcome. A job abandoned before it
succeeds is cancelled at the provider first, so its output cannot land in a
prefix that has already been cleaned.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from extraction_service.errors import (
    ExtractionCancelledError,
    ExtractionError,
    TimedOutError,
    TransientProviderError,
)
from extraction_service.pipeline.types import (
    CloudJobOutcome,
    ExtractedPage,
    ExtractionJob,
    JobStatus,
    JobStatusReport,
    ResultPage,
    SourceDocument,
    StagingLocation,
)

logger = logging.getLogger(__name__)


class StagingStore(Protocol):
    def put(self, *, data: bytes, file_name: str, mime_type: str) -> StagingLocation: ...

    def delete(self, location: StagingLocation) -> None: ...


class AsyncOcrProvider(Protocol):
    def submit(self, staging: StagingLocation, *, mime_type: str) -> str: ...

    def get_status(self, job_id: str) -> JobStatusReport: ...

    def get_results(self, job: ExtractionJob, page_token: str | None = None) -> ResultPage: ...

    def cancel(self, job_id: str) -> None: ...


class StagingLease:
    def __init__(self, store: StagingStore, location: StagingLocation) -> None:
        self._store = store
        self.location = location
        self.released = False

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self._store.delete(self.location)
            logger.info("Staging cleanup completed: %s", self.location.uri)
        except Exception as e:
            # Orphans are not swept; see DESIGN.md
            logger.error("Staging cleanup failed for %s: %s", self.location.uri, e)


@contextmanager
def staged(store: StagingStore, doc: SourceDocument) -> Iterator[StagingLease]:
    try:
        location = store.put(data=doc.data, file_name=doc.file_name, mime_type=doc.mime_type)
    except ExtractionError:
        raise
    except Exception as e:
        raise TransientProviderError(f"Staging upload failed: {e}", provider="staging") from e

    lease = StagingLease(store, location)
    try:
        yield lease
    finally:
        lease.release()


class AsyncCloudJobOrchestrator:
    def __init__(
        self,
        *,
        storage: StagingStore,
        provider: AsyncOcrProvider,
        poll_interval_s: float = 10.0,
        max_attempts: int = 60,
        provider_name: str = "documentai",
    ) -> None:
        self._storage = storage
        self._provider = provider
        self._interval = max(0.0, float(poll_interval_s))
        self._max_attempts = max(1, int(max_attempts))
        self._provider_name = provider_name

    @property
    def worst_case_seconds(self) -> float:
        return self._interval * self._max_attempts

    def run(
        self,
        doc: SourceDocument,
        *,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> CloudJobOutcome:
        """Run one async OCR job; ``deadline`` is a ``time.monotonic()`` instant.

        Nothing is staged or submitted once the caller has cancelled or the
        deadline has passed. A job that is abandoned before it succeeds is
        cancelled at the provider before staging is released, so it cannot
        write output shards into an already-cleaned prefix.
        """
        self._check_live(cancel, deadline)
        with staged(self._storage, doc) as lease:
            job = self._submit(lease.location, doc.mime_type)
            try:
                self._poll(job, cancel=cancel, deadline=deadline)
                pages, result_pages = self._drain(job, cancel=cancel)
            finally:
                if job.status not in (JobStatus.SUCCEEDED, JobStatus.FAILED):
                    self._cancel_job(job)
                logger.info(
                    "Async job %s finished with status=%s after %d poll(s)",
                    job.job_id,
                    job.status,
                    job.poll_attempts,
                )

        return CloudJobOutcome(
            pages=pages,
            job_id=job.job_id,
            staging_uri=lease.location.uri,
            poll_attempts=job.poll_attempts,
            result_pages=result_pages,
        )

    def _check_live(self, cancel: threading.Event | None, deadline: float | None) -> None:
        if cancel is not None and cancel.is_set():
            raise ExtractionCancelledError("Async OCR job cancelled before submission")
        if deadline is not None and time.monotonic() >= deadline:
            raise TimedOutError("Caller deadline passed before the async OCR job was submitted", attempts=0)

    def _cancel_job(self, job: ExtractionJob) -> None:
        try:
            self._provider.cancel(job.job_id)
            logger.info("Cancelled abandoned async job %s (status=%s)", job.job_id, job.status)
        except Exception as e:
            logger.error("Could not cancel async job %s: %s", job.job_id, e)

    def _submit(self, location: StagingLocation, mime_type: str) -> ExtractionJob:
        try:
            job_id = self._provider.submit(location, mime_type=mime_type)
        except ExtractionError:
            raise
        except Exception as e:
            raise TransientProviderError(f"Async OCR submit failed: {e}", provider=self._provider_name) from e
        return ExtractionJob(job_id=job_id, staging=location)

    def _wait(self, cancel: threading.Event | None, deadline: float | None) -> None:
        delay = self._interval
        if deadline is not None:
            delay = max(0.0, min(delay, deadline - time.monotonic()))
        if cancel is not None:
            if cancel.wait(delay):
                raise ExtractionCancelledError("Async OCR job cancelled by caller")
        elif delay > 0:
            time.sleep(delay)

    def _poll(self, job: ExtractionJob, *, cancel: threading.Event | None, deadline: float | None) -> None:
        while job.poll_attempts < self._max_attempts:
            self._wait(cancel, deadline)
            if deadline is not None and time.monotonic() >= deadline:
                job.status = JobStatus.TIMED_OUT
                raise TimedOutError(
                    f"Async OCR job {job.job_id} exceeded the caller deadline",
                    attempts=job.poll_attempts,
                )

            job.poll_attempts += 1
            try:
                report = self._provider.get_status(job.job_id)
            except ExtractionError:
                raise
            except Exception as e:
                raise TransientProviderError(f"Async OCR status check failed: {e}", provider=self._provider_name) from e

            job.status = report.status
            job.status_message = report.message
            logger.debug("Poll %d/%d for %s: %s", job.poll_attempts, self._max_attempts, job.job_id, report.status)

            if report.status == JobStatus.SUCCEEDED:
                return
            if report.status == JobStatus.FAILED:
                raise TransientProviderError(
                    f"Async OCR job failed: {report.message or 'Unknown error'}",
                    provider=self._provider_name,
                )

        job.status = JobStatus.TIMED_OUT
        raise TimedOutError(
            f"Async OCR job {job.job_id} still in progress after {job.poll_attempts} polls",
            attempts=job.poll_attempts,
        )

    def _drain(self, job: ExtractionJob, *, cancel: threading.Event | None) -> tuple[list[ExtractedPage], int]:
        pages: list[ExtractedPage] = []
        fetched = 0
        token: str | None = None
        seen: set[str] = set()
        while True:
            if cancel is not None and cancel.is_set():
                raise ExtractionCancelledError("Async OCR job cancelled by caller")
            try:
                page = self._provider.get_results(job, token)
            except ExtractionError:
                raise
            except Exception as e:
                raise TransientProviderError(f"Async OCR result fetch failed: {e}", provider=self._provider_name) from e
            fetched += 1
            pages.extend(page.pages)

            token = page.next_page_token
            job.next_page_token = token
            if not token:
                return pages, fetched
            if token in seen:
                raise TransientProviderError(f"Result pagination loop detected for {job.job_id}", provider=self._provider_name)
            seen.add(token)
