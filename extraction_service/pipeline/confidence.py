"""Reduce per-block confidences from any backend to one comparable 0-100 score.

Cloud Vision and Document AI report conservative block confidences even on
clean detections, so their aggregates are floored once at least one block was
seen. Local OCR and native PDF text are taken at face value.
"""

from __future__ import annotations

from collections.abc import Iterable

from extraction_service.pipeline.types import ExtractedPage, Method

CONFIDENCE_FLOORS: dict[Method, float] = {
    Method.CLOUD_VISION_SYNC: 75.0,
    Method.DOCUMENT_AI_BATCH: 80.0,
}


def _clamp(v: float) -> float:
    return max(0.0, min(100.0, float(v)))


def aggregate_confidence(values: Iterable[float], method: Method | None = None) -> float:
    vals = [_clamp(v) for v in values]
    if not vals:
        return 0.0
    mean = sum(vals) / len(vals)
    floor = CONFIDENCE_FLOORS.get(method) if method is not None else None
    if floor is not None:
        mean = max(mean, floor)
    return mean


def page_confidences(pages: Iterable[ExtractedPage]) -> list[float]:
    out: list[float] = []
    for p in pages:
        out.extend(p.block_confidences)
    return out
