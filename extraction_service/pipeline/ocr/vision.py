"""Synchronous Google Cloud Vision OCR (``images:annotate`` REST endpoint)."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from extraction_service.errors import ErrorKind, PayloadTooLargeError, TransientProviderError
from extraction_service.pipeline.strategy import estimated_request_bytes
from extraction_service.pipeline.types import ExtractedPage

logger = logging.getLogger(__name__)

_PROVIDER = "google-vision"
DEFAULT_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
DEFAULT_MAX_PAYLOAD_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class CloudOcrPage:
    page: ExtractedPage
    raw_block_confidences: tuple[float, ...]  # provider scale, 0-1
    detected_languages: tuple[str, ...] = ()


def build_request(content: bytes) -> dict[str, Any]:
    return {
        "requests": [
            {
                "image": {"content": base64.b64encode(content).decode("ascii")},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
            }
        ]
    }


def _error_kind(payload: Any) -> ErrorKind | None:
    if not isinstance(payload, dict):
        return None
    err = payload.get("error")
    if not isinstance(err, dict):
        return None
    for detail in err.get("details") or []:
        if isinstance(detail, dict) and detail.get("reason") in ("BILLING_DISABLED", "API_KEY_INVALID"):
            return ErrorKind.PROVIDER_CONFIGURATION
    if err.get("status") == "PERMISSION_DENIED":
        return ErrorKind.PROVIDER_CONFIGURATION
    return None


def parse_annotation(annotation: dict[str, Any], *, page_number: int) -> CloudOcrPage:
    full = annotation.get("fullTextAnnotation") or {}
    text = str(full.get("text") or "").strip()

    raw: list[float] = []
    langs: list[str] = []
    for page in full.get("pages") or []:
        for lang in (page.get("property") or {}).get("detectedLanguages") or []:
            code = lang.get("languageCode")
            if code and code not in langs:
                langs.append(code)
        for block in page.get("blocks") or []:
            conf = block.get("confidence")
            if isinstance(conf, int | float):
                raw.append(float(conf))

    return CloudOcrPage(
        page=ExtractedPage(
            page_number=page_number,
            text=text,
            block_confidences=tuple(c * 100.0 for c in raw),
        ),
        raw_block_confidences=tuple(raw),
        detected_languages=tuple(langs),
    )


class VisionOcrClient:
    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_s: float = 60.0,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._endpoint = endpoint
        self._max_payload = max_payload_bytes
        self._http = http_client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self._http.close()

    def check_payload(self, raw_size: int) -> None:
        estimated = estimated_request_bytes(raw_size)
        if estimated > self._max_payload:
            raise PayloadTooLargeError(estimated, self._max_payload)

    def annotate(self, content: bytes, *, page_number: int = 1) -> CloudOcrPage:
        self.check_payload(len(content))

        try:
            resp = self._http.post(
                self._endpoint,
                params={"key": self._api_key},
                json=build_request(content),
            )
        except httpx.HTTPError as e:
            raise TransientProviderError(f"Vision request failed: {e}", provider=_PROVIDER) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            try:
                payload: Any = resp.json()
            except ValueError:
                payload = None
            logger.warning("Vision API returned %d for page %d", resp.status_code, page_number)
            raise TransientProviderError(
                f"Vision API failed: {resp.status_code}",
                provider=_PROVIDER,
                status_code=resp.status_code,
                kind=_error_kind(payload),
            )

        try:
            data = resp.json()
            annotation = data["responses"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransientProviderError("Malformed Vision API response", provider=_PROVIDER) from e
        if not isinstance(annotation, dict):
            raise TransientProviderError("Malformed Vision API response", provider=_PROVIDER)

        if annotation.get("error"):
            msg = (annotation["error"] or {}).get("message") or "unknown error"
            raise TransientProviderError(f"Vision annotation error: {msg}", provider=_PROVIDER)

        result = parse_annotation(annotation, page_number=page_number)
        logger.info(
            "Vision OCR page %d: %d chars, %d blocks",
            page_number,
            len(result.page.text),
            len(result.raw_block_confidences),
        )
        return result
