from __future__ import annotations

import logging
import threading

from google.cloud.storage import Client

from extraction_service.pipeline.async_job import AsyncCloudJobOrchestrator
from extraction_service.pipeline.config import ExtractionConfig
from extraction_service.pipeline.extractors.base import Extractor
from extraction_service.pipeline.extractors.cloud_vision import CloudVisionExtractor
from extraction_service.pipeline.extractors.document_ai_batch import DocumentAIBatchExtractor
from extraction_service.pipeline.extractors.local_ocr import LocalOcrExtractor
from extraction_service.pipeline.extractors.structural import StructuralExtractor
from extraction_service.pipeline.gcs import GcsStagingStore
from extraction_service.pipeline.materials import GcsMaterialStore, MaterialStore
from extraction_service.pipeline.ocr.document_ai import DocAIConfig, DocumentAIBatchProvider
from extraction_service.pipeline.ocr.tesseract import TesseractOcrEngine
from extraction_service.pipeline.ocr.vision import VisionOcrClient
from extraction_service.pipeline.orchestrator import ExtractionOrchestrator
from extraction_service.pipeline.strategy import StrategySelector
from extraction_service.pipeline.types import ExtractionResult, Method, ProgressSink

logger = logging.getLogger(__name__)


def build_orchestrator(cfg: ExtractionConfig, *, storage_client: Client | None = None) -> ExtractionOrchestrator:
    extractors: dict[Method, Extractor] = {}

    engine = TesseractOcrEngine(sources=cfg.tessdata_sources) if cfg.local_ocr_enabled else None
    extractors[Method.STRUCTURAL] = StructuralExtractor(
        ocr=engine if cfg.ocr_embedded_images else None,
        quality_min_chars=cfg.min_text_chars,
    )
    if engine is not None:
        extractors[Method.LOCAL_OCR] = LocalOcrExtractor(engine=engine, scale=cfg.raster_scale)

    if cfg.vision_enabled and cfg.vision_api_key:
        client = VisionOcrClient(
            api_key=cfg.vision_api_key,
            endpoint=cfg.vision_endpoint,
            timeout_s=cfg.vision_timeout_s,
            max_payload_bytes=cfg.sync_payload_ceiling_bytes,
        )
        extractors[Method.CLOUD_VISION_SYNC] = CloudVisionExtractor(client=client, scale=cfg.raster_scale)

    if cfg.docai_enabled:
        gcs = storage_client or Client()
        provider = DocumentAIBatchProvider(
            cfg=DocAIConfig(
                project=cfg.docai_project or "",
                location=cfg.docai_location or "",
                processor_id=cfg.docai_processor_id or "",
            ),
            storage_client=gcs,
            page_size=cfg.result_page_size,
        )
        jobs = AsyncCloudJobOrchestrator(
            storage=GcsStagingStore(client=gcs, bucket=cfg.staging_bucket or "", prefix=cfg.staging_prefix),
            provider=provider,
            poll_interval_s=cfg.poll_interval_s,
            max_attempts=cfg.poll_max_attempts,
        )
        extractors[Method.DOCUMENT_AI_BATCH] = DocumentAIBatchExtractor(jobs=jobs)

    selector = StrategySelector(
        sync_payload_ceiling_bytes=cfg.sync_payload_ceiling_bytes,
        vision_enabled=Method.CLOUD_VISION_SYNC in extractors,
        docai_enabled=Method.DOCUMENT_AI_BATCH in extractors,
    )
    logger.info("Extraction strategies configured: %s", sorted(m.value for m in extractors))
    return ExtractionOrchestrator(selector=selector, extractors=extractors, min_text_chars=cfg.min_text_chars)


def build_material_store(cfg: ExtractionConfig, *, storage_client: Client | None = None) -> MaterialStore | None:
    if not cfg.materials_bucket:
        return None
    return GcsMaterialStore(client=storage_client or Client(), bucket=cfg.materials_bucket, prefix=cfg.materials_prefix)


def extract_material(
    orchestrator: ExtractionOrchestrator,
    store: MaterialStore,
    material_id: str,
    *,
    language: str = "eng",
    persist: bool = True,
    progress: ProgressSink | None = None,
    cancel: threading.Event | None = None,
    timeout_s: float | None = None,
) -> ExtractionResult:
    doc = store.fetch_source(material_id)
    result = orchestrator.extract(doc, language=language, progress=progress, cancel=cancel, timeout_s=timeout_s)
    if persist:
        store.persist_extracted_text(material_id, result)
    return result
