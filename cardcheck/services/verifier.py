"""
Checklist Verification Service.

Decides how far a scanned card can be trusted by checking it against the
checklist for its set. Each check is independent and appends one
FieldConfidence; the overall confidence is derived from those entries.

When the result is inconclusive, a confirmation pass asks the scanner a
few targeted questions about the same image and merges the answers back.

INVARIANTS:
1. Verification is advisory: verify_card() and run_confirmation_pass()
   never raise. Failures become warnings and log entries.
2. Visual-cue rules add warnings and suggestions only; they never change
   a field's confidence.
3. Overall confidence is always recomputed from the field list.
"""

import asyncio
import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.config import PARALLEL_FUZZY_THRESHOLD, PLAYER_NAME_THRESHOLD, settings
from cardcheck.db.operations import checklist_to_model, find_checklist, record_missing_checklist
from cardcheck.models.card import BASE_VARIATION, UNKNOWN_PLAYER, ExtractedCard, ScanResult
from cardcheck.models.checklist import ChecklistCard, ChecklistKey, SetChecklist
from cardcheck.models.confirmation import ConfirmationResponse
from cardcheck.models.verification import (
    FIELD_CARD_NUMBER,
    FIELD_PARALLEL_NAME,
    FIELD_PLAYER_NAME,
    FieldConfidence,
    VerificationConfidence,
    VerificationResult,
    calculate_overall_confidence,
)
from cardcheck.services.extractor import Extractor, ImageInput, strip_code_blocks
from cardcheck.services.matching import (
    best_match,
    normalize,
    normalize_card_number,
    normalize_parallel_name,
)

logger = logging.getLogger(__name__)

MISSING_IDENTITY_WARNING = "Missing manufacturer, brand, or year — cannot verify against checklist."
NO_CHECKLIST_WARNING = "Set checklist not available for this product."
CONFIRMATION_FAILED_WARNING = "Confirmation pass failed — using initial scan results."


# =============================================================================
# INDIVIDUAL CHECKS
# =============================================================================


def find_card_by_number(checklist: SetChecklist, card_number: str | None) -> ChecklistCard | None:
    """Checklist card whose normalized number equals the given one."""
    number = normalize_card_number(card_number)
    if not number:
        return None
    return next(
        (c for c in checklist.cards if normalize_card_number(c.card_number) == number),
        None,
    )


def verify_card_number(
    card: ExtractedCard, checklist: SetChecklist, result: VerificationResult
) -> None:
    """Check the printed card number exists in the checklist."""
    if not card.card_number or not card.card_number.strip():
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_CARD_NUMBER,
                value=None,
                confidence=VerificationConfidence.LOW,
                reason="Card number not detected",
            )
        )
        return

    number = normalize_card_number(card.card_number)

    if find_card_by_number(checklist, card.card_number) is not None:
        result.card_number_verified = True
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_CARD_NUMBER,
                value=card.card_number,
                confidence=VerificationConfidence.HIGH,
                reason=f"Card #{number} found in {checklist.brand} checklist",
            )
        )
        return

    result.field_confidences.append(
        FieldConfidence(
            field_name=FIELD_CARD_NUMBER,
            value=card.card_number,
            confidence=VerificationConfidence.LOW,
            reason=(
                f"Card #{number} not found in {checklist.brand} checklist "
                f"(has {checklist.card_count} cards)"
            ),
        )
    )
    result.warnings.append(
        f"Card #{card.card_number} not found in the {checklist.year} {checklist.brand} checklist."
    )


def verify_player_name(
    card: ExtractedCard, checklist: SetChecklist, result: VerificationResult
) -> None:
    """
    Check the player name against the checklist.

    With a card-number match the name must agree with that card, otherwise
    it is a CONFLICT and the checklist name is suggested. Without one, the
    best fuzzy match over the whole checklist decides MEDIUM or LOW.
    """
    name = card.player_name
    if not name or not name.strip() or name == UNKNOWN_PLAYER:
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PLAYER_NAME,
                value=name,
                confidence=VerificationConfidence.LOW,
                reason="Player name not detected",
            )
        )
        return

    number_match = find_card_by_number(checklist, card.card_number)
    if number_match is not None:
        score = best_match(name, [number_match], key=lambda c: c.player_name)
        if score is not None and score.score >= PLAYER_NAME_THRESHOLD:
            result.player_verified = True
            result.field_confidences.append(
                FieldConfidence(
                    field_name=FIELD_PLAYER_NAME,
                    value=name,
                    confidence=VerificationConfidence.HIGH,
                    reason=(
                        f"Matches checklist: {number_match.player_name} "
                        f"(#{number_match.card_number})"
                    ),
                )
            )
            return

        number = normalize_card_number(card.card_number)
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PLAYER_NAME,
                value=name,
                confidence=VerificationConfidence.CONFLICT,
                reason=f"Card #{number} should be {number_match.player_name}, not {name}",
            )
        )
        result.suggested_player_name = number_match.player_name
        result.suggestions.append(
            f'Player name mismatch: AI said "{name}" but card #{card.card_number} '
            f"is {number_match.player_name}. Accept correction?"
        )
        return

    match = best_match(name, checklist.cards, key=lambda c: c.player_name)
    if match is not None and match.score >= PLAYER_NAME_THRESHOLD:
        result.player_verified = True
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PLAYER_NAME,
                value=name,
                confidence=VerificationConfidence.MEDIUM,
                reason=f"Fuzzy match to {match.candidate.player_name} ({match.score:.0%})",
            )
        )
        return

    result.field_confidences.append(
        FieldConfidence(
            field_name=FIELD_PLAYER_NAME,
            value=name,
            confidence=VerificationConfidence.LOW,
            reason="Player not found in set checklist",
        )
    )


def verify_variation(
    card: ExtractedCard, checklist: SetChecklist, result: VerificationResult
) -> None:
    """
    Check the parallel name against the set's known variations.

    Unknown parallels that are not even close to a known one are flagged
    as CONFLICT: the scanner most likely made the name up.
    """
    parallel = card.parallel_name.strip() if card.parallel_name else ""

    if not parallel and card.variation_type == BASE_VARIATION:
        if any(normalize(v) == "base" for v in checklist.known_variations):
            result.variation_verified = True
            result.field_confidences.append(
                FieldConfidence(
                    field_name=FIELD_PARALLEL_NAME,
                    value=BASE_VARIATION,
                    confidence=VerificationConfidence.HIGH,
                    reason="Base card — verified",
                )
            )
        else:
            result.field_confidences.append(
                FieldConfidence(
                    field_name=FIELD_PARALLEL_NAME,
                    value=BASE_VARIATION,
                    confidence=VerificationConfidence.MEDIUM,
                    reason="Base card assumed",
                )
            )
        return

    if not parallel:
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PARALLEL_NAME,
                value=None,
                confidence=VerificationConfidence.LOW,
                reason="No parallel name detected",
            )
        )
        return

    normalized = normalize_parallel_name(parallel)

    exact = next(
        (v for v in checklist.known_variations if normalize_parallel_name(v) == normalized),
        None,
    )
    if exact is not None:
        result.variation_verified = True
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PARALLEL_NAME,
                value=parallel,
                confidence=VerificationConfidence.HIGH,
                reason=f"Matches known variation: {exact}",
            )
        )
        return

    match = best_match(normalized, checklist.known_variations, transform=normalize_parallel_name)
    if match is not None and match.score >= PARALLEL_FUZZY_THRESHOLD:
        result.field_confidences.append(
            FieldConfidence(
                field_name=FIELD_PARALLEL_NAME,
                value=parallel,
                confidence=VerificationConfidence.MEDIUM,
                reason=f"Close match to: {match.candidate} ({match.score:.0%})",
            )
        )
        result.suggested_variation = match.candidate
        result.suggestions.append(
            f'AI identified parallel as "{parallel}" — did you mean "{match.candidate}"?'
        )
        return

    result.field_confidences.append(
        FieldConfidence(
            field_name=FIELD_PARALLEL_NAME,
            value=parallel,
            confidence=VerificationConfidence.CONFLICT,
            reason=(
                f'"{parallel}" not found in known variations for '
                f"{checklist.year} {checklist.brand}"
            ),
        )
    )
    result.warnings.append(
        f'Parallel "{parallel}" is not a known variation for {checklist.year} '
        f"{checklist.brand}. Possible AI hallucination."
    )


def validate_visual_cues(scan: ScanResult, result: VerificationResult) -> None:
    """Cross-check the card's flags against what the scanner saw."""
    cues = scan.visual_cues
    if cues is None:
        return

    card = scan.card
    is_numbered = bool(card.serial_numbered and card.serial_numbered.strip())
    no_parallel = not (card.parallel_name and card.parallel_name.strip())

    if cues.has_serial_number and not is_numbered:
        result.warnings.append(
            "Visual cue: Serial number detected but card is not marked as numbered."
        )
        result.suggestions.append(
            "A serial number was detected on the card. This may be a numbered parallel."
        )

    if not cues.has_serial_number and is_numbered:
        result.warnings.append(
            "Card marked as serial numbered but no serial number was visually detected."
        )

    if (
        (cues.has_foil or cues.has_refractor_pattern)
        and card.variation_type == BASE_VARIATION
        and no_parallel
    ):
        result.warnings.append(
            "Visual cue: Foil or refractor pattern detected on a card identified as Base."
        )
        result.suggestions.append(
            "Foil/shimmer effect suggests this may be a parallel, not a base card."
        )

    if cues.has_rookie_logo and not card.is_rookie:
        result.warnings.append("Visual cue: Rookie logo detected but card is not marked as rookie.")
        result.suggestions.append("Rookie logo was detected — card should be marked as a rookie.")

    if cues.has_auto_sticker and not card.is_auto:
        result.warnings.append(
            "Visual cue: Autograph sticker detected but card is not marked as auto."
        )
        result.suggestions.append("Autograph sticker detected — card should be marked as an auto.")

    if cues.has_relic_swatch and not card.is_relic:
        result.warnings.append("Visual cue: Relic swatch detected but card is not marked as relic.")
        result.suggestions.append("Memorabilia swatch detected — card should be marked as a relic.")


# =============================================================================
# CONFIRMATION PASS
# =============================================================================


def needs_confirmation_pass(result: VerificationResult) -> bool:
    """True if the result is inconclusive enough to re-ask the scanner."""
    if result.overall_confidence in (VerificationConfidence.LOW, VerificationConfidence.CONFLICT):
        return True
    if result.suggestions:
        return True
    return result.has_conflict()


def build_confirmation_prompt(scan: ScanResult, result: VerificationResult) -> str:
    """
    Build a re-ask covering only the ambiguous parts of the result.

    Border colour is always asked; it is cheap and corroborates the
    parallel answer.
    """
    questions: list[str] = []

    parallel_field = result.get_field(FIELD_PARALLEL_NAME)
    if parallel_field is not None and parallel_field.confidence in (
        VerificationConfidence.CONFLICT,
        VerificationConfidence.LOW,
    ):
        questions.append(
            '  "variation_confirmed": "Exact name of the parallel/variation — '
            'look at border color, finish, pattern"'
        )

    if result.suggested_player_name is not None:
        questions.append(
            f'  "player_confirmed": "Is this {scan.card.player_name} or '
            f'{result.suggested_player_name}? Return the correct name"'
        )

    if any("serial" in w.lower() for w in result.warnings):
        questions.append(
            '  "is_numbered": "yes or no — is there a serial number like 045/199 '
            'printed on the card?"'
        )
        questions.append('  "serial_text": "The exact serial number text if visible, or null"')

    if any("foil" in w.lower() or "refractor" in w.lower() for w in result.warnings):
        questions.append(
            "  \"surface_finish\": \"Describe the card's surface: matte, glossy, holographic, "
            'prizm shimmer, chrome refractor, etc."'
        )

    questions.append(
        "  \"border_color\": \"What color is the card's border? silver, blue, red, green, "
        'gold, standard, etc."'
    )

    return "\n".join(
        [
            "Look at this sports card image again carefully and answer these specific questions.",
            "Return ONLY a JSON object with your answers.",
            "",
            "{",
            ",\n".join(questions),
            "}",
            "",
            "Return ONLY the JSON, no other text or markdown.",
        ]
    )


def parse_confirmation_response(raw: str) -> ConfirmationResponse:
    """
    Parse a re-ask answer.

    Raises:
        ValueError: If the answer is not a JSON object (pydantic's
            ValidationError is a ValueError)
    """
    payload = json.loads(strip_code_blocks(raw))
    if not isinstance(payload, dict):
        raise ValueError("Confirmation response is not a JSON object")
    return ConfirmationResponse.model_validate(payload)


def merge_confirmation(result: VerificationResult, response: ConfirmationResponse) -> None:
    """
    Fold a re-ask answer into the verification result.

    - variation_confirmed: becomes the suggested variation, replaces the
      first parallel suggestion, and lifts the parallel field to MEDIUM
    - player_confirmed: becomes the suggested player name only
    - is_numbered "yes" with serial_text: added as a suggestion
    """
    if response.variation_confirmed:
        confirmed = response.variation_confirmed
        result.suggested_variation = confirmed

        existing = next((s for s in result.suggestions if "parallel" in s.lower()), None)
        if existing is not None:
            result.suggestions.remove(existing)
        result.suggestions.append(f"Confirmation pass identified variation as: {confirmed}")

        parallel_field = result.get_field(FIELD_PARALLEL_NAME)
        if parallel_field is not None:
            parallel_field.confidence = VerificationConfidence.MEDIUM
            parallel_field.reason = f"Confirmed by targeted re-ask: {confirmed}"

    if response.player_confirmed:
        result.suggested_player_name = response.player_confirmed

    if response.numbered and response.serial_text:
        result.suggestions.append(f"Serial number detected: {response.serial_text}")


# =============================================================================
# SERVICE
# =============================================================================


class VariationVerifier:
    """
    Verifies scanned cards against the checklist store.

    Holds the session used for checklist reads and missing-checklist
    bookkeeping, and the extractor used for confirmation passes.
    """

    def __init__(
        self,
        session: AsyncSession,
        extractor: Extractor | None = None,
        confirmation_timeout_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._extractor = extractor
        self._confirmation_timeout = (
            confirmation_timeout_seconds
            if confirmation_timeout_seconds is not None
            else settings.confirmation_timeout_seconds
        )

    async def get_checklist(
        self,
        manufacturer: str,
        brand: str,
        year: int,
        sport: str | None = None,
    ) -> SetChecklist | None:
        """Find the checklist for a set, or None."""
        db_checklist = await find_checklist(self._session, manufacturer, brand, year, sport)
        return checklist_to_model(db_checklist) if db_checklist is not None else None

    async def verify_card(self, scan: ScanResult) -> VerificationResult:
        """
        Verify one scanned card against its set checklist.

        Never raises. If a check fails unexpectedly the partial result is
        returned with a warning.
        """
        result = VerificationResult()
        card = scan.card

        key = card.checklist_key()
        if key is None:
            result.overall_confidence = VerificationConfidence.LOW
            result.warnings.append(MISSING_IDENTITY_WARNING)
            return result

        try:
            checklist = await self.get_checklist(key.manufacturer, key.brand, key.year, key.sport)

            if checklist is None:
                result.overall_confidence = VerificationConfidence.LOW
                result.warnings.append(NO_CHECKLIST_WARNING)
                await self._log_missing_checklist(key)
                return result

            result.checklist_match = True

            verify_card_number(card, checklist, result)
            verify_player_name(card, checklist, result)
            verify_variation(card, checklist, result)
            validate_visual_cues(scan, result)
        except Exception as e:
            logger.exception(
                "Verification failed for %s (%s %s %s)",
                card.player_name,
                card.manufacturer,
                card.brand,
                card.year,
            )
            result.warnings.append(f"Verification could not be completed: {e}")

        result.overall_confidence = calculate_overall_confidence(result)
        return result

    async def run_confirmation_pass(
        self,
        scan: ScanResult,
        result: VerificationResult,
        image: ImageInput,
        back_image: ImageInput | None = None,
    ) -> VerificationResult:
        """
        Re-ask the scanner about the ambiguous fields and merge the answers.

        Any failure (no extractor, API error, timeout, cancellation, bad
        JSON) leaves the result as it was plus a warning.
        """
        prompt = build_confirmation_prompt(scan, result)

        try:
            if self._extractor is None:
                raise RuntimeError("No extractor configured for confirmation pass")

            raw = await asyncio.wait_for(
                self._extractor.send_prompt(image, prompt, back_image=back_image),
                timeout=self._confirmation_timeout,
            )
            merge_confirmation(result, parse_confirmation_response(raw))
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.warning("CONFIRMATION_PASS_FAILED", extra={"error": "cancelled"})
            result.warnings.append(CONFIRMATION_FAILED_WARNING)
        except Exception as e:
            logger.warning("CONFIRMATION_PASS_FAILED", extra={"error": repr(e)})
            result.warnings.append(CONFIRMATION_FAILED_WARNING)

        result.overall_confidence = calculate_overall_confidence(result)
        return result

    async def _log_missing_checklist(self, key: ChecklistKey) -> None:
        """Count a lookup miss. Failures are logged, never raised."""
        try:
            async with self._session.begin_nested():
                missing = await record_missing_checklist(self._session, key)
            logger.info(
                "MISSING_CHECKLIST_RECORDED",
                extra={"checklist": str(key), "hit_count": missing.hit_count},
            )
        except SQLAlchemyError:
            logger.exception("Failed to record missing checklist %s", key)
