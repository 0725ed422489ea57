from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

from extraction_service.pipeline.types import Method, ProgressSink, SourceDocument, StrategyOutcome

_WS = re.compile(r"\s+")


@dataclass(frozen=True)
class RunContext:
    language: str = "eng"
    progress: ProgressSink | None = None
    cancel: threading.Event | None = None
    deadline: float | None = None  # time.monotonic() instant


class Extractor(ABC):
    method: Method

    @abstractmethod
    def extract(self, *, doc: SourceDocument, ctx: RunContext) -> StrategyOutcome: ...

    def close(self) -> None:
        """Release clients held by the strategy."""
        return None


def normalize_text(text: str) -> str:
    if not text:
        return ""
    # Remove null bytes, normalize whitespace a bit
    text = text.replace("\x00", "")
    # Collapse very long runs of blank lines
    while "\n\n\n\n" in text:
        text = text.replace("\n\n\n\n", "\n\n\n")
    return text.strip()


def collapse_whitespace(text: str) -> str:
    return _WS.sub(" ", (text or "").replace("\x00", "")).strip()


def scaled_progress(sink: ProgressSink | None, index: int, total: int) -> ProgressSink | None:
    """Map a per-item 0..1 progress into the item's slice of the whole run."""
    if sink is None:
        return None
    span = 1.0 / max(total, 1)

    def _report(fraction: float) -> None:
        sink(min(1.0, (index + max(0.0, min(1.0, fraction))) * span))

    return _report
