"""Readability heuristics for natively extracted PDF text.

PDFs with broken font encodings still hand back plenty of characters from
their content streams: mojibake, ``(cid:NN)`` glyph runs, private-use code
points. Those pass a length check, so structural text is also scored for how
much it looks like prose before it is trusted.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

MIN_ALPHA_RATIO = 0.4
MAX_CONTROL_RATIO = 0.1
MIN_WORDS = 6
MIN_AVG_WORD_LEN = 3
MAX_AVG_WORD_LEN = 15

# A 3..40 char unit starting with a letter, repeated 4+ times in a row
# ("cid:1cid:1..."); numeric table rows, leader dots and blanks are exempt
_REPEATING = re.compile(r"([^\W\d_].{2,39}?)\1{3,}")

_WHITESPACE_OK = {"\t", "\n", "\r", "\f"}

# Tesseract codes for languages written without spaces between words
UNSPACED_LANGUAGES = frozenset({"chi_sim", "chi_tra", "jpn"})


@dataclass(frozen=True)
class TextQuality:
    readable: bool
    reason: str | None
    total_chars: int
    alpha_ratio: float
    control_ratio: float
    word_count: int
    avg_word_len: float
    repeating: bool


def _is_control(ch: str) -> bool:
    if ch in _WHITESPACE_OK:
        return False
    return ch == "\ufffd" or unicodedata.category(ch) in ("Cc", "Co", "Cs", "Cn")


def assess_text_quality(text: str, *, word_checks: bool = True) -> TextQuality:
    """Score ``text``; ``word_checks=False`` for scripts written without spaces."""
    total = len(text)
    if total < 10:
        return TextQuality(False, "too_short", total, 0.0, 0.0, 0, 0.0, False)

    alpha = sum(1 for c in text if c.isalpha())
    control = sum(1 for c in text if _is_control(c))
    words = [w for w in text.split() if len(w) > 2]
    alpha_ratio = alpha / total
    control_ratio = control / total
    avg_len = alpha / len(words) if words else 0.0
    repeating = _REPEATING.search(text) is not None

    reason = None
    if alpha_ratio <= MIN_ALPHA_RATIO:
        reason = "low_alpha_ratio"
    elif control_ratio >= MAX_CONTROL_RATIO:
        reason = "control_characters"
    elif word_checks and len(words) < MIN_WORDS:
        reason = "too_few_words"
    elif repeating:
        reason = "repeating_pattern"
    elif word_checks and not MIN_AVG_WORD_LEN <= round(avg_len) <= MAX_AVG_WORD_LEN:
        reason = "implausible_word_length"

    return TextQuality(
        readable=reason is None,
        reason=reason,
        total_chars=total,
        alpha_ratio=round(alpha_ratio, 2),
        control_ratio=round(control_ratio, 2),
        word_count=len(words),
        avg_word_len=round(avg_len, 1),
        repeating=repeating,
    )


def uses_word_spacing(language: str) -> bool:
    return not any(code in UNSPACED_LANGUAGES for code in language.split("+"))
