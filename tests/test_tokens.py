"""Tests for token estimation and budget trimming."""

from __future__ import annotations

from uxforge.core.tokens import TRUNCATION_NOTICE, WordCountEstimator, trim_to_token_limit


class TestWordCountEstimator:
    def test_empty_text_is_zero(self):
        assert WordCountEstimator().estimate("   ") == 0

    def test_rounds_up(self):
        # 3 words / 0.75 = 4 tokens
        assert WordCountEstimator().estimate("uno dos tres") == 4
        # 4 words / 0.75 = 5.33 → 6
        assert WordCountEstimator().estimate("uno dos tres cuatro") == 6

    def test_whitespace_runs_count_once(self):
        assert WordCountEstimator().estimate("a\n\n  b\tc") == 4


class TestTrimToTokenLimit:
    def test_under_limit_returned_unchanged(self):
        text = "hola mundo"
        assert trim_to_token_limit(text, 100) == text

    def test_over_limit_fits_budget_and_has_notice(self):
        estimator = WordCountEstimator()
        text = " ".join(f"palabra{i}" for i in range(3000))
        trimmed = trim_to_token_limit(text, 500, estimator)
        assert trimmed.endswith(TRUNCATION_NOTICE)
        assert estimator.estimate(trimmed) <= 500
        assert len(trimmed) < len(text)

    def test_prefers_section_separator(self):
        first = " ".join(["alfa"] * 400)
        second = " ".join(["beta"] * 400)
        text = f"{first}\n---\n{second}"
        trimmed = trim_to_token_limit(text, 620)
        body = trimmed[: -len(TRUNCATION_NOTICE)]
        assert "beta" not in body
        assert body.rstrip().endswith("alfa")

    def test_prefers_paragraph_break(self):
        paragraphs = "\n\n".join(" ".join([f"p{i}"] * 50) for i in range(20))
        trimmed = trim_to_token_limit(paragraphs, 600)
        body = trimmed[: -len(TRUNCATION_NOTICE)]
        # Cut lands on a paragraph boundary, so the last paragraph is whole
        last = body.split("\n\n")[-1].split()
        assert len(last) == 50

    def test_hard_cut_without_breaks(self):
        text = " ".join(["x"] * 2000)
        trimmed = trim_to_token_limit(text, 300)
        assert trimmed.endswith(TRUNCATION_NOTICE)
        assert "\n\n[" in trimmed

    def test_budget_smaller_than_notice_returns_empty(self):
        assert trim_to_token_limit(" ".join(["x"] * 100), 3) == ""

    def test_custom_estimator(self):
        class CharEstimator:
            def estimate(self, text: str) -> int:
                return len(text)

        trimmed = trim_to_token_limit("a" * 1000, 200, CharEstimator())
        assert len(trimmed) <= 200
        assert trimmed.endswith(TRUNCATION_NOTICE)
