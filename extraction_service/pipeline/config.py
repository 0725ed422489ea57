from __future__ import annotations

import os
from dataclasses import dataclass


def _get_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    return int(v)


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    return float(v)


def _get_sources(name: str, default: str) -> tuple[str | None, ...]:
    """Comma list of tessdata dirs; an empty entry means tesseract's own default."""
    raw = os.getenv(name, default)
    return tuple((p.strip() or None) for p in raw.split(","))


@dataclass(frozen=True)
class ExtractionConfig:
    # Strategy selection
    sync_payload_ceiling_bytes: int
    min_text_chars: int

    # Raster + local OCR
    local_ocr_enabled: bool
    raster_scale: float
    ocr_language: str
    tessdata_sources: tuple[str | None, ...]
    ocr_embedded_images: bool

    # Cloud Vision (sync)
    vision_enabled: bool
    vision_api_key: str | None
    vision_endpoint: str
    vision_timeout_s: float

    # Document AI batch (async) + GCS staging
    docai_enabled: bool
    docai_project: str | None
    docai_location: str | None
    docai_processor_id: str | None
    staging_bucket: str | None
    staging_prefix: str
    poll_interval_s: float
    poll_max_attempts: int
    result_page_size: int

    # Material store
    materials_bucket: str | None
    materials_prefix: str

    @classmethod
    def from_env(cls) -> ExtractionConfig:
        staging_prefix = os.getenv("EXTRACT_STAGING_PREFIX", "extract-staging/")
        if staging_prefix and not staging_prefix.endswith("/"):
            staging_prefix += "/"

        materials_prefix = os.getenv("EXTRACT_MATERIALS_PREFIX", "materials/")
        if materials_prefix and not materials_prefix.endswith("/"):
            materials_prefix += "/"

        # Cloud strategies default on only when their credentials are present
        vision_api_key = os.getenv("GOOGLE_VISION_API_KEY")
        docai_processor_id = os.getenv("EXTRACT_DOC_AI_PROCESSOR_ID")

        return cls(
            sync_payload_ceiling_bytes=_get_int("EXTRACT_SYNC_PAYLOAD_CEILING_BYTES", 10 * 1024 * 1024),
            min_text_chars=_get_int("EXTRACT_MIN_TEXT_CHARS", 50),
            local_ocr_enabled=_get_bool("EXTRACT_LOCAL_OCR_ENABLED", True),
            raster_scale=_get_float("EXTRACT_RASTER_SCALE", 2.0),
            ocr_language=os.getenv("EXTRACT_OCR_LANGUAGE", "eng"),
            tessdata_sources=_get_sources("EXTRACT_TESSDATA_DIRS", ""),
            ocr_embedded_images=_get_bool("EXTRACT_OCR_EMBEDDED_IMAGES", False),
            vision_enabled=_get_bool("EXTRACT_VISION_ENABLED", bool(vision_api_key)),
            vision_api_key=vision_api_key,
            vision_endpoint=os.getenv(
                "EXTRACT_VISION_ENDPOINT", "https://vision.googleapis.com/v1/images:annotate"
            ),
            vision_timeout_s=_get_float("EXTRACT_VISION_TIMEOUT_S", 60.0),
            docai_enabled=_get_bool("EXTRACT_DOCAI_ENABLED", bool(docai_processor_id)),
            docai_project=os.getenv("EXTRACT_DOC_AI_PROJECT"),
            docai_location=os.getenv("EXTRACT_DOC_AI_LOCATION"),
            docai_processor_id=docai_processor_id,
            staging_bucket=os.getenv("EXTRACT_STAGING_BUCKET"),
            staging_prefix=staging_prefix,
            poll_interval_s=_get_float("EXTRACT_POLL_INTERVAL_S", 10.0),
            poll_max_attempts=_get_int("EXTRACT_POLL_MAX_ATTEMPTS", 60),
            result_page_size=_get_int("EXTRACT_RESULT_PAGE_SIZE", 10),
            materials_bucket=os.getenv("EXTRACT_MATERIALS_BUCKET"),
            materials_prefix=materials_prefix,
        )

    def validate(self) -> None:
        if self.sync_payload_ceiling_bytes < 1:
            raise ValueError("EXTRACT_SYNC_PAYLOAD_CEILING_BYTES must be >= 1")
        if self.min_text_chars < 0:
            raise ValueError("EXTRACT_MIN_TEXT_CHARS must be >= 0")
        if self.raster_scale <= 0:
            raise ValueError("EXTRACT_RASTER_SCALE must be > 0")
        if not self.tessdata_sources:
            raise ValueError("EXTRACT_TESSDATA_DIRS parsed as empty")

        if self.vision_enabled and not self.vision_api_key:
            raise ValueError("Cloud Vision enabled but GOOGLE_VISION_API_KEY is not set")

        if self.docai_enabled:
            missing = [
                k
                for k, v in {
                    "EXTRACT_DOC_AI_PROJECT": self.docai_project,
                    "EXTRACT_DOC_AI_LOCATION": self.docai_location,
                    "EXTRACT_DOC_AI_PROCESSOR_ID": self.docai_processor_id,
                    "EXTRACT_STAGING_BUCKET": self.staging_bucket,
                }.items()
                if not v
            ]
            if missing:
                raise ValueError(f"Document AI enabled but missing config: {', '.join(missing)}")

        if self.poll_interval_s < 0:
            raise ValueError("EXTRACT_POLL_INTERVAL_S must be >= 0")
        if self.poll_max_attempts < 1:
            raise ValueError("EXTRACT_POLL_MAX_ATTEMPTS must be >= 1")
        if self.result_page_size < 1:
            raise ValueError("EXTRACT_RESULT_PAGE_SIZE must be >= 1")
