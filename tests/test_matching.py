"""Tests for text normalization and fuzzy matching."""

import pytest

from cardcheck.services.matching import (
    DEFAULT_PARALLEL_ALIASES,
    best_match,
    build_alias_table,
    normalize,
    normalize_card_number,
    normalize_parallel_name,
    similarity,
)


class TestNormalize:
    def test_lowercases_and_strips_punctuation(self) -> None:
        """Punctuation other than slash is removed."""
        assert normalize("C.J. Stroud!") == "cj stroud"

    def test_keeps_slash(self) -> None:
        """Print-run slashes survive normalization."""
        assert normalize("Black Finite 1/1") == "black finite 1/1"

    def test_collapses_whitespace(self) -> None:
        """Runs of whitespace become single spaces."""
        assert normalize("  Red   White\tBlue ") == "red white blue"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_input(self, value) -> None:
        """Empty input normalizes to the empty string."""
        assert normalize(value) == ""


class TestNormalizeCardNumber:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("007", "7"),
            ("000", "0"),
            ("#088", "88"),
            (" 12 ", "12"),
            ("RC-5", "RC-5"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_canonical_form(self, raw, expected) -> None:
        """Hash signs and leading zeros are dropped."""
        assert normalize_card_number(raw) == expected

    @pytest.mark.parametrize("raw", ["007", "000", "#088", "0", "#", "  #0010 ", "BDC-1"])
    def test_idempotent(self, raw) -> None:
        """Normalizing twice gives the same result as once."""
        once = normalize_card_number(raw)
        assert normalize_card_number(once) == once


class TestNormalizeParallelName:
    def test_resolves_alias(self) -> None:
        """Known shorthand maps to the canonical name."""
        assert normalize_parallel_name("RWB") == "red white blue"

    def test_resolves_alias_with_punctuation(self) -> None:
        """Aliases whose keys carry punctuation still resolve."""
        assert normalize_parallel_name("Red, White & Blue") == "red white blue"

    def test_unknown_name_is_normalized(self) -> None:
        """Names without an alias are just normalized."""
        assert normalize_parallel_name("Neon Green Pulsar") == "neon green pulsar"

    def test_custom_alias_table(self) -> None:
        """An injected alias table replaces the default one."""
        table = build_alias_table({"Shiny": "Silver"})

        assert normalize_parallel_name("shiny", aliases=table) == "silver"
        assert normalize_parallel_name("RWB", aliases=table) == "rwb"

    def test_default_aliases_are_read_only(self) -> None:
        """The packaged alias table cannot be mutated."""
        with pytest.raises(TypeError):
            DEFAULT_PARALLEL_ALIASES["new"] = "value"  # type: ignore[index]


class TestSimilarity:
    @pytest.mark.parametrize("value", ["Silver", "Justin Jefferson", "1/1", "x"])
    def test_identical_strings(self, value) -> None:
        """Any non-empty string is fully similar to itself."""
        assert similarity(value, value) == 1.0

    def test_empty_side(self) -> None:
        """An empty side scores zero."""
        assert similarity("", "anything") == 0.0
        assert similarity("anything", None) == 0.0

    def test_case_and_punctuation_insensitive(self) -> None:
        """Comparison happens on normalized forms."""
        assert similarity("C.J. Stroud", "cj stroud") == 1.0

    def test_one_edit(self) -> None:
        """One insertion in a 7-character string."""
        assert similarity("Silverr", "Silver") == pytest.approx(1 - 1 / 7)

    def test_unrelated_strings_score_low(self) -> None:
        """Unrelated names fall well below the parallel threshold."""
        assert similarity("Mojo Refractor Rainbow", "Silver") < 0.70


class TestBestMatch:
    def test_returns_highest_scoring_candidate(self) -> None:
        """The closest candidate wins."""
        match = best_match("Silverr", ["Gold", "Silver", "Blue"])

        assert match is not None
        assert match.candidate == "Silver"

    def test_first_wins_on_ties(self) -> None:
        """Equal scores keep the earliest candidate."""
        match = best_match("abc", ["abd", "abe"])

        assert match is not None
        assert match.candidate == "abd"

    def test_empty_candidates(self) -> None:
        """No candidates means no match."""
        assert best_match("Silver", []) is None

    def test_key_and_transform(self) -> None:
        """Key extracts the text and transform canonicalizes it."""
        match = best_match(
            "red white blue",
            [{"name": "Gold"}, {"name": "RWB"}],
            key=lambda c: c["name"],
            transform=normalize_parallel_name,
        )

        assert match is not None
        assert match.candidate == {"name": "RWB"}
        assert match.score == 1.0
