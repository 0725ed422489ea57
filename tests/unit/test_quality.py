"""Unit tests for the native-text readability heuristics."""

from __future__ import annotations

import pytest

from extraction_service.pipeline.quality import assess_text_quality, uses_word_spacing

PROSE = (
    "Week three covers enzyme kinetics. Students should read chapter four "
    "before the lab session and bring their completed worksheets."
)

# Shapes pypdf returns for fonts without a usable ToUnicode map
CID_RUN = "(cid:3)(cid:17)(cid:42)(cid:8)(cid:91)(cid:3)(cid:17)(cid:42)(cid:55)(cid:12)(cid:7)(cid:64)" * 3
PRIVATE_USE = PROSE + "\ue001\ue002\ue003" * 10
SYMBOL_SOUP = "#$%&'()*+,-./0123456789:;<=>?@[\\]^_`{|}~ " * 4
MOJIBAKE_REPEAT = "Ã©tÃ© " * 20


class TestReadable:
    def test_prose_is_readable(self):
        q = assess_text_quality(PROSE)
        assert q.readable
        assert q.reason is None
        assert q.word_count > 10
        assert 3 <= q.avg_word_len <= 15

    def test_accented_prose_is_readable(self):
        text = "Les élèves étudient la photosynthèse et la division cellulaire pendant le deuxième trimestre."
        assert assess_text_quality(text).readable

    def test_numeric_tables_and_leaders_are_not_repeats(self):
        text = PROSE + " Table 1.0 1.0 1.0 1.0 1.0 Contents .......... 4 ________ name"
        assert assess_text_quality(text).readable


class TestGarbled:
    @pytest.mark.parametrize(
        ("text", "reason"),
        [
            (CID_RUN, "low_alpha_ratio"),
            (PRIVATE_USE, "control_characters"),
            (SYMBOL_SOUP, "low_alpha_ratio"),
            (MOJIBAKE_REPEAT, "repeating_pattern"),
        ],
    )
    def test_garbled_text_is_rejected(self, text: str, reason: str):
        q = assess_text_quality(text)
        assert not q.readable
        assert q.reason == reason

    def test_too_short(self):
        assert assess_text_quality("hello").reason == "too_short"

    def test_too_few_words(self):
        assert assess_text_quality("Photosynthesis overview").reason == "too_few_words"

    def test_implausible_word_length(self):
        text = " ".join(["abcdefghijklmnopqrstuvwxyzabcdefgh" + str(i) for i in range(8)])
        assert assess_text_quality(text).reason == "implausible_word_length"


class TestWordSpacing:
    def test_unspaced_scripts_skip_word_rules(self):
        text = "光合作用是植物利用光能把二氧化碳和水转化为有机物并释放氧气的过程这是生物学的基础内容"
        assert not assess_text_quality(text).readable
        assert assess_text_quality(text, word_checks=False).readable

    @pytest.mark.parametrize(("language", "expected"), [("eng", True), ("eng+chi_sim", False), ("jpn", False)])
    def test_uses_word_spacing(self, language: str, expected: bool):
        assert uses_word_spacing(language) is expected
