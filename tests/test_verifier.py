"""Tests for checklist verification."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.db.operations import get_missing_checklist
from cardcheck.models.card import VisualCues
from cardcheck.models.checklist import ChecklistKey
from cardcheck.models.verification import (
    FIELD_CARD_NUMBER,
    FIELD_PARALLEL_NAME,
    FIELD_PLAYER_NAME,
    VerificationConfidence,
    VerificationResult,
)
from cardcheck.services import verifier as verifier_module
from cardcheck.services.verifier import (
    MISSING_IDENTITY_WARNING,
    NO_CHECKLIST_WARNING,
    VariationVerifier,
    validate_visual_cues,
    verify_card_number,
    verify_player_name,
    verify_variation,
)
from conftest import PRIZM_KEY, make_checklist, make_scan, store_checklist

HIGH = VerificationConfidence.HIGH
MEDIUM = VerificationConfidence.MEDIUM
LOW = VerificationConfidence.LOW
CONFLICT = VerificationConfidence.CONFLICT


@pytest.fixture
def jefferson():
    return make_checklist([("88", "Justin Jefferson"), ("12", "Josh Allen")], ["Base", "Silver"])


class TestCardNumberCheck:
    def test_leading_zeros_match(self, jefferson) -> None:
        """'088' is card 88."""
        result = VerificationResult()

        verify_card_number(make_scan(card_number="088").card, jefferson, result)

        assert result.card_number_verified
        assert result.get_field(FIELD_CARD_NUMBER).confidence == HIGH

    def test_missing_number(self, jefferson) -> None:
        """No card number is LOW."""
        result = VerificationResult()

        verify_card_number(make_scan().card, jefferson, result)

        field = result.get_field(FIELD_CARD_NUMBER)
        assert field.confidence == LOW
        assert field.reason == "Card number not detected"

    def test_unknown_number(self, jefferson) -> None:
        """A number not on the checklist is LOW with a warning."""
        result = VerificationResult()

        verify_card_number(make_scan(card_number="999").card, jefferson, result)

        assert not result.card_number_verified
        assert result.get_field(FIELD_CARD_NUMBER).confidence == LOW
        assert result.warnings == ["Card #999 not found in the 2023 Prizm checklist."]


class TestPlayerCheck:
    def test_matches_numbered_card(self, jefferson) -> None:
        """The name on the numbered card verifies the player."""
        result = VerificationResult()

        verify_player_name(
            make_scan(card_number="88", player_name="Justin Jefferson").card, jefferson, result
        )

        assert result.player_verified
        assert result.get_field(FIELD_PLAYER_NAME).confidence == HIGH

    def test_wrong_player_for_number(self, jefferson) -> None:
        """A different name on a known number is a CONFLICT with a correction."""
        result = VerificationResult()

        verify_player_name(
            make_scan(card_number="88", player_name="Joe Nobody").card, jefferson, result
        )

        assert not result.player_verified
        assert result.get_field(FIELD_PLAYER_NAME).confidence == CONFLICT
        assert result.suggested_player_name == "Justin Jefferson"
        assert len(result.suggestions) == 1
        assert "Justin Jefferson" in result.suggestions[0]

    def test_fuzzy_match_without_number(self, jefferson) -> None:
        """Without a number match a close name is MEDIUM."""
        result = VerificationResult()

        verify_player_name(make_scan(player_name="Justin Jeferson").card, jefferson, result)

        field = result.get_field(FIELD_PLAYER_NAME)
        assert result.player_verified
        assert field.confidence == MEDIUM
        assert field.reason.startswith("Fuzzy match to Justin Jefferson")

    def test_unknown_player_name(self, jefferson) -> None:
        """The placeholder name counts as not detected."""
        result = VerificationResult()

        verify_player_name(make_scan(card_number="88").card, jefferson, result)

        assert result.get_field(FIELD_PLAYER_NAME).confidence == LOW
        assert result.suggested_player_name is None

    def test_player_not_in_checklist(self, jefferson) -> None:
        """A name nowhere near the checklist is LOW."""
        result = VerificationResult()

        verify_player_name(make_scan(player_name="Tom Brady").card, jefferson, result)

        assert result.get_field(FIELD_PLAYER_NAME).reason == "Player not found in set checklist"


class TestVariationCheck:
    def test_base_card_listed(self, jefferson) -> None:
        """A base card in a set listing Base is HIGH."""
        result = VerificationResult()

        verify_variation(make_scan().card, jefferson, result)

        assert result.variation_verified
        assert result.get_field(FIELD_PARALLEL_NAME).confidence == HIGH

    def test_base_card_assumed(self) -> None:
        """Without Base in the list, a base card is MEDIUM."""
        result = VerificationResult()

        verify_variation(make_scan().card, make_checklist(variations=["Silver"]), result)

        field = result.get_field(FIELD_PARALLEL_NAME)
        assert field.confidence == MEDIUM
        assert field.reason == "Base card assumed"

    def test_non_base_without_parallel(self, jefferson) -> None:
        """A non-base card with no parallel name is LOW."""
        result = VerificationResult()

        verify_variation(make_scan(variation_type="Parallel").card, jefferson, result)

        assert result.get_field(FIELD_PARALLEL_NAME).confidence == LOW

    def test_known_parallel_via_alias(self) -> None:
        """Shorthand resolves to the listed variation."""
        result = VerificationResult()
        checklist = make_checklist(variations=["Red White Blue"])

        verify_variation(make_scan(parallel_name="RWB").card, checklist, result)

        assert result.variation_verified
        assert result.get_field(FIELD_PARALLEL_NAME).confidence == HIGH

    def test_close_parallel_is_suggested(self) -> None:
        """'Silverr' is close enough to suggest 'Silver'."""
        result = VerificationResult()

        verify_variation(
            make_scan(parallel_name="Silverr").card, make_checklist(variations=["Silver"]), result
        )

        assert result.get_field(FIELD_PARALLEL_NAME).confidence == MEDIUM
        assert result.suggested_variation == "Silver"
        assert not result.variation_verified

    def test_unknown_parallel_is_conflict(self) -> None:
        """A parallel unlike any known one is flagged as a likely hallucination."""
        result = VerificationResult()
        checklist = make_checklist(variations=["Silver", "Gold"])

        verify_variation(make_scan(parallel_name="Mojo Refractor Rainbow").card, checklist, result)

        assert result.get_field(FIELD_PARALLEL_NAME).confidence == CONFLICT
        assert result.suggested_variation is None
        assert any("Possible AI hallucination." in w for w in result.warnings)


class TestVisualCues:
    def test_serial_seen_but_not_numbered(self) -> None:
        """A visible serial on an unnumbered card is flagged."""
        result = VerificationResult()

        validate_visual_cues(make_scan(VisualCues(has_serial_number=True)), result)

        assert any("Serial number detected" in w for w in result.warnings)
        assert any("numbered parallel" in s for s in result.suggestions)

    def test_numbered_but_no_serial_seen(self) -> None:
        """A numbered card without a visible serial gets a warning only."""
        result = VerificationResult()

        validate_visual_cues(make_scan(VisualCues(), serial_numbered="/99"), result)

        assert len(result.warnings) == 1
        assert result.suggestions == []

    def test_foil_on_base_card(self) -> None:
        """Foil on a base card suggests a parallel."""
        result = VerificationResult()

        validate_visual_cues(make_scan(VisualCues(has_refractor_pattern=True)), result)

        assert any("refractor" in w for w in result.warnings)

    def test_foil_on_named_parallel_is_fine(self) -> None:
        """Foil is expected on a named parallel."""
        result = VerificationResult()

        validate_visual_cues(make_scan(VisualCues(has_foil=True), parallel_name="Silver"), result)

        assert result.warnings == []

    def test_rookie_auto_relic_flags(self) -> None:
        """Each unflagged rookie, auto and relic cue adds a warning and suggestion."""
        result = VerificationResult()
        cues = VisualCues(has_rookie_logo=True, has_auto_sticker=True, has_relic_swatch=True)

        validate_visual_cues(make_scan(cues), result)

        assert len(result.warnings) == 3
        assert len(result.suggestions) == 3

    def test_cues_never_change_confidence(self) -> None:
        """Visual cues add messages only."""
        result = VerificationResult()

        validate_visual_cues(make_scan(VisualCues(has_serial_number=True, has_foil=True)), result)

        assert result.field_confidences == []

    def test_no_cues(self) -> None:
        """A scan without cues adds nothing."""
        result = VerificationResult()

        validate_visual_cues(make_scan(), result)

        assert result.warnings == []


class TestVerifyCard:
    async def test_verified_card(self, session: AsyncSession, jefferson) -> None:
        """A card matching number and player is verified and not in conflict."""
        await store_checklist(session, jefferson)
        verifier = VariationVerifier(session)

        result = await verifier.verify_card(
            make_scan(card_number="088", player_name="Justin Jefferson")
        )

        assert result.checklist_match
        assert result.card_number_verified
        assert result.player_verified
        assert result.overall_confidence != CONFLICT
        assert result.overall_confidence == HIGH

    async def test_wrong_player_is_conflict(self, session: AsyncSession, jefferson) -> None:
        """A wrong name on a known number makes the whole result CONFLICT."""
        await store_checklist(session, jefferson)

        result = await VariationVerifier(session).verify_card(
            make_scan(card_number="88", player_name="Joe Nobody")
        )

        assert result.get_field(FIELD_PLAYER_NAME).confidence == CONFLICT
        assert result.suggested_player_name == "Justin Jefferson"
        assert result.suggestions
        assert result.overall_confidence == CONFLICT

    async def test_missing_identity(self, session: AsyncSession) -> None:
        """Without manufacturer, brand and year nothing is checked."""
        result = await VariationVerifier(session).verify_card(make_scan(brand=None))

        assert result.overall_confidence == LOW
        assert result.warnings == [MISSING_IDENTITY_WARNING]
        assert result.field_confidences == []

    async def test_missing_checklist_is_recorded(self, session: AsyncSession) -> None:
        """Each lookup miss bumps the missing-checklist hit count."""
        verifier = VariationVerifier(session)

        for _ in range(2):
            result = await verifier.verify_card(make_scan(card_number="1"))
            assert result.overall_confidence == LOW
            assert result.warnings == [NO_CHECKLIST_WARNING]
        await session.commit()

        missing = await get_missing_checklist(session, PRIZM_KEY)
        assert missing is not None
        assert missing.hit_count == 2

    async def test_missing_checklist_bookkeeping_failure(self, session: AsyncSession) -> None:
        """A failing hit-count update does not fail verification."""
        error = OperationalError("UPDATE", {}, Exception("locked"))
        with patch.object(
            verifier_module, "record_missing_checklist", AsyncMock(side_effect=error)
        ):
            result = await VariationVerifier(session).verify_card(make_scan())

        assert result.warnings == [NO_CHECKLIST_WARNING]

    async def test_unexpected_failure_returns_partial_result(
        self, session: AsyncSession, jefferson
    ) -> None:
        """An exception inside a check becomes a warning."""
        await store_checklist(session, jefferson)

        with patch.object(verifier_module, "verify_variation", side_effect=RuntimeError("boom")):
            result = await VariationVerifier(session).verify_card(
                make_scan(card_number="88", player_name="Justin Jefferson")
            )

        assert result.checklist_match
        assert result.get_field(FIELD_CARD_NUMBER).confidence == HIGH
        assert result.get_field(FIELD_PARALLEL_NAME) is None
        assert any("boom" in w for w in result.warnings)

    async def test_sportless_card_matches(self, session: AsyncSession, jefferson) -> None:
        """A card without a sport still finds its checklist."""
        await store_checklist(session, jefferson)

        result = await VariationVerifier(session).verify_card(
            make_scan(sport=None, card_number="12", player_name="Josh Allen")
        )

        assert result.checklist_match

    async def test_other_product_does_not_match(self, session: AsyncSession, jefferson) -> None:
        """A different brand is a lookup miss."""
        await store_checklist(session, jefferson)

        result = await VariationVerifier(session).verify_card(make_scan(brand="Select"))

        assert not result.checklist_match
        await session.commit()
        key = ChecklistKey("Panini", "Select", 2023, "Football")
        assert await get_missing_checklist(session, key) is not None
