from __future__ import annotations

import math
from dataclasses import dataclass

from extraction_service.errors import UnsupportedTypeError
from extraction_service.pipeline.types import Method

# ~37% inflation from base64 plus the JSON request envelope
PAYLOAD_INFLATION = 1.37

_SUPPORTED_MIME: dict[str, str] = {
    "application/pdf": "pdf",
    "image/png": "image",
    "image/jpeg": "image",
    "image/jpg": "image",
    "image/gif": "image",
    "image/bmp": "image",
    "image/webp": "image",
    "image/tiff": "image",
}


def normalize_mime(mime_type: str) -> str:
    return mime_type.split(";", 1)[0].strip().lower()


def derive_doc_type(mime_type: str) -> str | None:
    return _SUPPORTED_MIME.get(normalize_mime(mime_type or ""))


def estimated_request_bytes(raw_size: int) -> int:
    return math.ceil(raw_size * PAYLOAD_INFLATION)


@dataclass(frozen=True)
class StrategySelector:
    """Pure mapping from (mime type, size) to the ordered strategies to try."""

    sync_payload_ceiling_bytes: int = 10 * 1024 * 1024
    vision_enabled: bool = True
    docai_enabled: bool = True

    def fits_sync(self, size_bytes: int) -> bool:
        return estimated_request_bytes(size_bytes) <= self.sync_payload_ceiling_bytes

    def select(self, mime_type: str, size_bytes: int) -> list[Method]:
        doc_type = derive_doc_type(mime_type)
        if doc_type is None:
            raise UnsupportedTypeError(mime_type)

        sync_ok = self.vision_enabled and self.fits_sync(size_bytes)

        if doc_type == "pdf":
            plan = [Method.STRUCTURAL, Method.LOCAL_OCR]
            if sync_ok:
                plan.append(Method.CLOUD_VISION_SYNC)
            if self.docai_enabled:
                plan.append(Method.DOCUMENT_AI_BATCH)
            return plan

        plan = []
        if sync_ok:
            plan.append(Method.CLOUD_VISION_SYNC)
        plan.append(Method.LOCAL_OCR)
        return plan
