"""In-process OCR via Tesseract.

The engine is built with an ordered, immutable list of candidate tessdata
sources. Each ``recognize`` call walks that list from the start: a source that
cannot serve the requested language, or whose recognition run errors, is
skipped in favour of the next one. Nothing is remembered between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytesseract
from PIL import Image

from extraction_service.errors import InputError, ResourceUnavailableError
from extraction_service.pipeline.types import ProgressSink

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES: dict[str, str] = {
    "eng": "English",
    "fra": "French",
    "deu": "German",
    "spa": "Spanish",
    "ita": "Italian",
    "por": "Portuguese",
    "rus": "Russian",
    "chi_sim": "Chinese (Simplified)",
    "jpn": "Japanese",
    "kor": "Korean",
    "ara": "Arabic",
    "hin": "Hindi",
}

_DEFAULT_PSM = 3


def validate_language(lang: str) -> list[str]:
    """Split ``eng+fra`` style codes and reject anything we do not ship."""
    parts = [p.strip() for p in (lang or "").split("+") if p.strip()]
    if not parts:
        raise InputError("OCR language must not be blank")
    unknown = [p for p in parts if p not in SUPPORTED_LANGUAGES]
    if unknown:
        raise InputError(f"Unsupported OCR language: {', '.join(unknown)}")
    return parts


@dataclass(frozen=True)
class OcrOutput:
    text: str
    confidence: float  # 0-100, mean of word confidences
    word_confidences: tuple[float, ...]
    source: str | None  # tessdata dir used; None = tesseract default


def _build_config(source: str | None, psm: int = _DEFAULT_PSM) -> str:
    parts = [f"--psm {psm}"]
    if source:
        parts.append(f'--tessdata-dir "{source}"')
    return " ".join(parts)


def _text_from_data(data: dict[str, list[Any]]) -> tuple[str, list[float]]:
    """Rebuild text from image_to_data output; lines by (block, par, line)."""
    lines: list[str] = []
    confs: list[float] = []
    current_key: tuple[int, int, int] | None = None
    current_block: int | None = None
    words: list[str] = []

    for i, raw_word in enumerate(data.get("text", [])):
        word = (raw_word or "").strip()
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            conf = -1.0
        if not word:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        if key != current_key:
            if words:
                lines.append(" ".join(words))
            if current_block is not None and key[0] != current_block:
                lines.append("")
            words = []
            current_key = key
            current_block = key[0]
        words.append(word)
        if conf >= 0:
            confs.append(conf)

    if words:
        lines.append(" ".join(words))
    return "\n".join(lines).strip(), confs


class TesseractOcrEngine:
    def __init__(self, *, sources: Sequence[str | None] = (None,), psm: int = _DEFAULT_PSM) -> None:
        if not sources:
            raise ValueError("At least one tessdata source is required")
        self._sources: tuple[str | None, ...] = tuple(sources)
        self._psm = psm

    @property
    def sources(self) -> tuple[str | None, ...]:
        return self._sources

    def _serves(self, source: str | None, langs: list[str]) -> bool:
        if source is None:
            # tesseract resolves its own default tessdata; failures surface at recognition
            return True
        missing = [lang for lang in langs if not (Path(source) / f"{lang}.traineddata").is_file()]
        if missing:
            logger.info("Tesseract source %s lacks language data: %s", source, missing)
            return False
        return True

    def recognize(
        self,
        image: Image.Image,
        *,
        lang: str = "eng",
        progress: ProgressSink | None = None,
    ) -> OcrOutput:
        langs = validate_language(lang)
        if progress is not None:
            progress(0.0)

        failures: list[str] = []
        for idx, source in enumerate(self._sources):
            if not self._serves(source, langs):
                failures.append(f"{source or '<default>'}: not loadable")
                continue
            if progress is not None:
                progress(0.1)
            try:
                data = pytesseract.image_to_data(
                    image,
                    lang="+".join(langs),
                    config=_build_config(source, self._psm),
                    output_type=pytesseract.Output.DICT,
                )
            except (pytesseract.TesseractError, RuntimeError, OSError) as e:
                logger.warning(
                    "Tesseract recognition failed with source %d/%d (%s): %s",
                    idx + 1,
                    len(self._sources),
                    source or "<default>",
                    e,
                )
                failures.append(f"{source or '<default>'}: {e}")
                continue

            text, confs = _text_from_data(data)
            confidence = sum(confs) / len(confs) if confs else 0.0
            if progress is not None:
                progress(1.0)
            return OcrOutput(
                text=text,
                confidence=confidence,
                word_confidences=tuple(confs),
                source=source,
            )

        raise ResourceUnavailableError(
            f"No tesseract source could serve language '{lang}': {'; '.join(failures)}"
        )
