"""Upload/material-store boundary: where source files come from and text goes."""

from __future__ import annotations

import json
import logging
from typing import Protocol

from google.api_core.exceptions import NotFound
from google.cloud import storage

from extraction_service.errors import InputError
from extraction_service.pipeline.gcs import gs_uri, upload_text
from extraction_service.pipeline.types import ExtractionResult, SourceDocument

logger = logging.getLogger(__name__)


class MaterialStore(Protocol):
    def fetch_source(self, material_id: str) -> SourceDocument: ...

    def persist_extracted_text(self, material_id: str, result: ExtractionResult) -> None: ...


def result_metadata(result: ExtractionResult) -> dict[str, object]:
    return {
        "method": result.method.value,
        "confidence": result.overall_confidence,
        "page_count": result.page_count,
        "processing_time_ms": result.processing_time_ms,
        **result.metadata,
    }


def _check_material_id(material_id: str) -> str:
    mid = (material_id or "").strip()
    if not mid or "/" in mid or mid in (".", ".."):
        raise InputError(f"Invalid material id: {material_id!r}")
    return mid


class GcsMaterialStore:
    """
    Materials live at ``gs://<bucket>/<prefix><material_id>``; extracted text is
    written beside them as ``<material_id>.extracted.txt`` plus a ``.meta.json``.
    """

    def __init__(self, *, client: storage.Client, bucket: str, prefix: str = "materials/") -> None:
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        self._client = client
        self._bucket = bucket
        self._prefix = prefix

    def _name(self, material_id: str) -> str:
        return f"{self._prefix}{_check_material_id(material_id)}"

    def fetch_source(self, material_id: str) -> SourceDocument:
        name = self._name(material_id)
        blob = self._client.bucket(self._bucket).get_blob(name)
        if blob is None:
            raise InputError(f"Material not found: {gs_uri(self._bucket, name)}")
        try:
            data = blob.download_as_bytes()
        except NotFound as e:
            raise InputError(f"Material not found: {gs_uri(self._bucket, name)}") from e

        file_name = (blob.metadata or {}).get("file_name") or material_id
        return SourceDocument(
            data=data,
            mime_type=blob.content_type or "application/octet-stream",
            file_name=file_name,
        )

    def persist_extracted_text(self, material_id: str, result: ExtractionResult) -> None:
        name = self._name(material_id)
        upload_text(self._client, self._bucket, f"{name}.extracted.txt", result.full_text)
        upload_text(
            self._client,
            self._bucket,
            f"{name}.meta.json",
            json.dumps(result_metadata(result), default=str),
            content_type="application/json",
        )
        logger.info("Persisted extracted text for material %s (%d chars)", material_id, len(result.full_text))
