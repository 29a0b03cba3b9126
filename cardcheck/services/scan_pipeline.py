"""
Scan pipeline.

Runs a card image through extract -> verify -> confirm -> auto-apply,
honouring the feature toggles in Settings. Batches share one extractor
and are bounded by settings.max_concurrent_scans.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.config import Settings, settings
from cardcheck.models.card import ExtractedCard, ScanResult
from cardcheck.models.failure import KnownError
from cardcheck.models.verification import (
    FIELD_PLAYER_NAME,
    VerificationConfidence,
    VerificationResult,
)
from cardcheck.services.extractor import Extractor, ImageInput
from cardcheck.services.verifier import VariationVerifier, needs_confirmation_pass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanRequest:
    """Front image plus optional back image of one card."""

    image: ImageInput
    back_image: ImageInput | None = None


@dataclass
class ScanOutcome:
    """
    Result of scanning one card.

    For a failed extraction only `error` is set.
    """

    scan: ScanResult | None = None
    verification: VerificationResult | None = None
    applied: list[str] = field(default_factory=list)
    error: KnownError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def apply_suggestions(
    card: ExtractedCard, result: VerificationResult
) -> tuple[ExtractedCard, list[str]]:
    """
    Apply the corrections verification is sure enough about.

    The suggested player name replaces an unverified name whose field is
    in CONFLICT with the checklist. The suggested variation replaces the
    parallel name unless the overall result is CONFLICT.

    Returns the corrected card and a description of each change.
    """
    updates: dict[str, str] = {}
    applied: list[str] = []

    if result.suggested_player_name and not result.player_verified:
        player_field = result.get_field(FIELD_PLAYER_NAME)
        if player_field is not None and player_field.confidence == VerificationConfidence.CONFLICT:
            updates["player_name"] = result.suggested_player_name
            applied.append(
                f"Player name corrected: {card.player_name} -> {result.suggested_player_name}"
            )

    if result.suggested_variation and result.overall_confidence != VerificationConfidence.CONFLICT:
        updates["parallel_name"] = result.suggested_variation
        applied.append(
            f"Parallel corrected: {card.parallel_name or 'none'} -> {result.suggested_variation}"
        )

    if not updates:
        return card, applied
    return dataclasses.replace(card, **updates), applied


class ScanPipeline:
    """
    Extracts and verifies cards.

    Each scan verifies in its own session so concurrent scans never
    share one.
    """

    def __init__(
        self,
        extractor: Extractor,
        session_factory: Callable[[], AsyncSession],
        config: Settings | None = None,
    ) -> None:
        self._extractor = extractor
        self._session_factory = session_factory
        self._settings = config or settings

    async def scan_card(
        self, image: ImageInput, back_image: ImageInput | None = None
    ) -> ScanOutcome:
        """
        Scan and verify one card.

        Raises:
            ExtractionError: If the scanner call fails
        """
        scan = await self._extractor.scan(image, back_image)

        if not self._settings.enable_variation_verification:
            return ScanOutcome(scan=scan)

        async with self._session_factory() as session, session.begin():
            verifier = VariationVerifier(
                session,
                self._extractor,
                confirmation_timeout_seconds=self._settings.confirmation_timeout_seconds,
            )
            result = await verifier.verify_card(scan)

        # The confirmation pass only talks to the scanner
        if self._settings.run_confirmation_pass and needs_confirmation_pass(result):
            result = await verifier.run_confirmation_pass(scan, result, image, back_image)

        applied: list[str] = []
        if self._settings.auto_apply_high_confidence_suggestions:
            card, applied = apply_suggestions(scan.card, result)
            scan = dataclasses.replace(scan, card=card)

        logger.info(
            "CARD_SCANNED",
            extra={
                "player": scan.card.player_name,
                "overall_confidence": result.overall_confidence.value,
                "applied": len(applied),
            },
        )
        return ScanOutcome(scan=scan, verification=result, applied=applied)

    async def scan_batch(self, items: Sequence[ScanRequest]) -> list[ScanOutcome]:
        """
        Scan several cards, at most max_concurrent_scans at a time.

        A failed extraction is recorded on that card's outcome; the rest of
        the batch continues. Outcomes are in input order.
        """
        semaphore = asyncio.Semaphore(max(1, self._settings.max_concurrent_scans))

        async def run(item: ScanRequest) -> ScanOutcome:
            async with semaphore:
                try:
                    return await self.scan_card(item.image, item.back_image)
                except KnownError as e:
                    logger.warning("CARD_SCAN_FAILED", extra={"error": e.message})
                    return ScanOutcome(error=e)

        return list(await asyncio.gather(*(run(item) for item in items)))
