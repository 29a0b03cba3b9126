"""Tests for domain models."""

import pytest
from pydantic import ValidationError

from cardcheck.models.card import ExtractedCard
from cardcheck.models.checklist import (
    ChecklistKey,
    Provenance,
    SeedChecklistData,
    escalate_provenance,
)
from cardcheck.models.confirmation import ConfirmationResponse
from cardcheck.models.failure import ChecklistNotFoundError, ExtractionError, FailureKind
from cardcheck.models.verification import (
    FieldConfidence,
    VerificationConfidence,
    VerificationResult,
    calculate_overall_confidence,
)

HIGH = VerificationConfidence.HIGH
MEDIUM = VerificationConfidence.MEDIUM
LOW = VerificationConfidence.LOW
CONFLICT = VerificationConfidence.CONFLICT


def result_with(*levels: VerificationConfidence, checklist_match: bool = True) -> VerificationResult:
    return VerificationResult(
        checklist_match=checklist_match,
        field_confidences=[
            FieldConfidence(field_name=f"field_{i}", value=None, confidence=level, reason="")
            for i, level in enumerate(levels)
        ],
    )


class TestOverallConfidence:
    def test_no_fields_with_checklist(self) -> None:
        """Nothing evaluated against a matched checklist is MEDIUM."""
        assert calculate_overall_confidence(result_with()) == MEDIUM

    def test_no_fields_without_checklist(self) -> None:
        """Nothing evaluated without a checklist is LOW."""
        assert calculate_overall_confidence(result_with(checklist_match=False)) == LOW

    def test_any_conflict_wins(self) -> None:
        """A single CONFLICT makes the whole result CONFLICT."""
        assert calculate_overall_confidence(result_with(HIGH, HIGH, CONFLICT)) == CONFLICT

    def test_more_than_half_low(self) -> None:
        """Two LOW of three is LOW."""
        assert calculate_overall_confidence(result_with(LOW, LOW, HIGH)) == LOW

    def test_one_high_of_three_is_half(self) -> None:
        """Integer halves: one HIGH of three reaches 3 // 2."""
        assert calculate_overall_confidence(result_with(HIGH, MEDIUM, MEDIUM)) == HIGH

    def test_one_low_of_three_is_not_more_than_half(self) -> None:
        """One LOW of three does not exceed 3 // 2."""
        assert calculate_overall_confidence(result_with(LOW, HIGH, MEDIUM)) == HIGH

    def test_high_requires_checklist_match(self) -> None:
        """Without a checklist, all-HIGH still only reaches MEDIUM."""
        result = result_with(HIGH, HIGH, HIGH, checklist_match=False)
        assert calculate_overall_confidence(result) == MEDIUM

    def test_all_medium(self) -> None:
        """No HIGH and few LOW is MEDIUM."""
        assert calculate_overall_confidence(result_with(MEDIUM, MEDIUM)) == MEDIUM


class TestVerificationResult:
    def test_get_field(self) -> None:
        """Fields are found by name."""
        result = result_with(HIGH, LOW)

        assert result.get_field("field_1").confidence == LOW
        assert result.get_field("missing") is None

    def test_has_conflict(self) -> None:
        """has_conflict looks at every field."""
        assert result_with(HIGH, CONFLICT).has_conflict()
        assert not result_with(HIGH, LOW).has_conflict()


class TestProvenance:
    @pytest.mark.parametrize(
        ("current", "incoming", "expected"),
        [
            (Provenance.SEED, Provenance.SEED, Provenance.SEED),
            (Provenance.SEED, Provenance.LEARNED, Provenance.MIXED),
            (Provenance.SEED, Provenance.IMPORTED, Provenance.MIXED),
            (Provenance.LEARNED, Provenance.LEARNED, Provenance.LEARNED),
            (Provenance.LEARNED, Provenance.IMPORTED, Provenance.MIXED),
            (Provenance.LEARNED, Provenance.SEED, Provenance.LEARNED),
            (Provenance.IMPORTED, Provenance.LEARNED, Provenance.IMPORTED),
            (Provenance.IMPORTED, Provenance.SEED, Provenance.IMPORTED),
            (Provenance.IMPORTED, Provenance.IMPORTED, Provenance.IMPORTED),
        ],
    )
    def test_transitions(self, current, incoming, expected) -> None:
        """Each merge moves provenance along the lattice."""
        assert escalate_provenance(current, incoming) == expected

    @pytest.mark.parametrize("incoming", list(Provenance))
    def test_mixed_absorbs_everything(self, incoming) -> None:
        """Once MIXED, provenance never reverts."""
        assert escalate_provenance(Provenance.MIXED, incoming) == Provenance.MIXED


class TestChecklistKey:
    def test_str_with_sport(self) -> None:
        """Keys render as year, manufacturer, brand and sport."""
        key = ChecklistKey("Panini", "Prizm", 2023, "Football")
        assert str(key) == "2023 Panini Prizm (Football)"

    def test_str_without_sport(self) -> None:
        """Sport is omitted when unknown."""
        assert str(ChecklistKey("Topps", "Chrome", 2023)) == "2023 Topps Chrome"


class TestSeedChecklistData:
    def test_parses_camel_case_aliases(self) -> None:
        """The file format uses totalBaseCards and knownVariations."""
        data = SeedChecklistData.model_validate(
            {
                "manufacturer": "Panini",
                "brand": "Prizm",
                "year": 2023,
                "totalBaseCards": 400,
                "cards": [{"card_number": "88", "player_name": "Justin Jefferson"}],
                "knownVariations": ["Silver"],
            }
        )

        assert data.total_base_cards == 400
        assert data.known_variations == ["Silver"]
        assert data.key == ChecklistKey("Panini", "Prizm", 2023, None)

    def test_to_checklist_tags_source(self) -> None:
        """Every card carries the provenance it was loaded with."""
        data = SeedChecklistData(
            manufacturer="Panini",
            brand="Prizm",
            year=2023,
            cards=[{"card_number": "1", "player_name": "Kyler Murray"}],
        )

        checklist = data.to_checklist(Provenance.IMPORTED)

        assert checklist.data_source == Provenance.IMPORTED
        assert checklist.cards[0].source == Provenance.IMPORTED
        assert checklist.known_variations == []

    def test_dump_uses_file_aliases(self) -> None:
        """Serializing by alias reproduces the file format."""
        data = SeedChecklistData(manufacturer="Topps", brand="Chrome", year=2023, total_base_cards=5)

        dumped = data.model_dump(by_alias=True)

        assert dumped["totalBaseCards"] == 5
        assert "knownVariations" in dumped


class TestConfirmationResponse:
    def test_absent_fields_are_none(self) -> None:
        """An empty answer leaves every field unset."""
        response = ConfirmationResponse.model_validate({})

        assert response.variation_confirmed is None
        assert response.player_confirmed is None
        assert not response.numbered

    def test_blank_and_null_words_are_none(self) -> None:
        """Blank strings and null-like words count as unanswered."""
        response = ConfirmationResponse.model_validate(
            {"variation_confirmed": "  ", "serial_text": "null", "border_color": "N/A"}
        )

        assert response.variation_confirmed is None
        assert response.serial_text is None
        assert response.border_color is None

    def test_boolean_answers(self) -> None:
        """JSON booleans become yes/no."""
        assert ConfirmationResponse.model_validate({"is_numbered": True}).numbered
        assert not ConfirmationResponse.model_validate({"is_numbered": False}).numbered

    def test_yes_is_case_insensitive(self) -> None:
        """'YES' counts as yes."""
        assert ConfirmationResponse.model_validate({"is_numbered": "YES"}).numbered

    def test_unknown_keys_ignored(self) -> None:
        """Extra keys in the answer are dropped."""
        response = ConfirmationResponse.model_validate({"mood": "happy", "border_color": "blue"})
        assert response.border_color == "blue"

    def test_rejects_nested_values(self) -> None:
        """Objects where a string is expected are invalid."""
        with pytest.raises(ValidationError):
            ConfirmationResponse.model_validate({"variation_confirmed": {"name": "Silver"}})


class TestExtractedCard:
    def test_defaults(self) -> None:
        """An empty card is an unknown base card."""
        card = ExtractedCard()

        assert card.player_name == "Unknown Player"
        assert card.variation_type == "Base"

    def test_has_identity(self) -> None:
        """Identity needs manufacturer, brand and year."""
        assert ExtractedCard(manufacturer="Panini", brand="Prizm", year=2023).has_identity
        assert not ExtractedCard(manufacturer="Panini", brand=" ", year=2023).has_identity
        assert not ExtractedCard(manufacturer="Panini", brand="Prizm").has_identity


class TestKnownErrors:
    def test_extraction_error_envelope(self) -> None:
        """Extraction failures are external API errors with status 502."""
        error = ExtractionError("boom")

        assert error.status_code == 502
        response = error.to_response()
        assert response.failure.kind == FailureKind.EXTERNAL_API_ERROR
        assert response.failure.detail == "boom"

    def test_checklist_not_found(self) -> None:
        """Missing checklists are 404."""
        error = ChecklistNotFoundError(7)

        assert error.status_code == 404
        assert error.kind == FailureKind.NOT_FOUND
        assert "7" in error.detail
