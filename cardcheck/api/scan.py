"""
Scan API endpoints.

POST /scan reads a card from its photo(s) and verifies it against the
checklist store. POST /cards saves a card the user accepted and hands it
to the learning worker.
"""

import dataclasses
from collections.abc import Callable
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.db import async_session_factory, save_card
from cardcheck.db.database import get_session
from cardcheck.models.card import BASE_VARIATION, UNKNOWN_PLAYER, CardSaved, ExtractedCard
from cardcheck.models.failure import ExtractionError
from cardcheck.models.verification import VerificationResult
from cardcheck.services.extractor import Extractor, ImageInput, get_extractor
from cardcheck.services.learning import LearningWorker
from cardcheck.services.scan_pipeline import ScanPipeline

router = APIRouter(tags=["scan"])


def get_session_factory() -> Callable[[], AsyncSession]:
    """Dependency providing the session factory used for verification."""
    return async_session_factory


def get_learning_worker(request: Request) -> LearningWorker | None:
    """The app's learning worker, if it was started."""
    return getattr(request.app.state, "learning_worker", None)


class FieldConfidenceResponse(BaseModel):
    """Verification verdict for one field."""

    field_name: str
    value: str | None = None
    confidence: str
    reason: str


class VerificationResponse(BaseModel):
    """Verification result for a scanned card."""

    overall_confidence: str
    checklist_match: bool
    card_number_verified: bool
    player_verified: bool
    variation_verified: bool
    field_confidences: list[FieldConfidenceResponse] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    suggested_variation: str | None = None
    suggested_player_name: str | None = None

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerificationResponse":
        return cls(
            overall_confidence=result.overall_confidence.value,
            checklist_match=result.checklist_match,
            card_number_verified=result.card_number_verified,
            player_verified=result.player_verified,
            variation_verified=result.variation_verified,
            field_confidences=[
                FieldConfidenceResponse(
                    field_name=f.field_name,
                    value=f.value,
                    confidence=f.confidence.value,
                    reason=f.reason,
                )
                for f in result.field_confidences
            ],
            warnings=list(result.warnings),
            suggestions=list(result.suggestions),
            suggested_variation=result.suggested_variation,
            suggested_player_name=result.suggested_player_name,
        )


class ScanResponse(BaseModel):
    """Everything a scan produced."""

    card: dict[str, Any]
    visual_cues: dict[str, Any] | None = None
    all_visible_text: list[str] = Field(default_factory=list)
    verification: VerificationResponse | None = Field(
        default=None,
        description="Absent when variation verification is disabled",
    )
    applied: list[str] = Field(
        default_factory=list,
        description="Corrections applied automatically to the card",
    )


class CardSaveRequest(BaseModel):
    """A card the user accepted."""

    player_name: str = UNKNOWN_PLAYER
    card_number: str | None = None
    year: int | None = None
    sport: str | None = None
    manufacturer: str | None = None
    brand: str | None = None
    set_name: str | None = None
    team: str | None = None
    variation_type: str = BASE_VARIATION
    parallel_name: str | None = None
    serial_numbered: str | None = None
    is_short_print: bool = False
    is_ssp: bool = False
    is_rookie: bool = False
    is_auto: bool = False
    is_relic: bool = False
    is_graded: bool = False
    grade_company: str | None = None
    grade_value: str | None = None
    auto_grade: str | None = None
    cert_number: str | None = None
    condition_notes: str | None = None


class CardSaveResponse(BaseModel):
    """A saved card."""

    id: int
    player_name: str
    created_at: datetime | None = None
    queued_for_learning: bool


async def _read_image(upload: UploadFile) -> ImageInput:
    return ImageInput(
        data=await upload.read(),
        media_type=upload.content_type or "image/jpeg",
    )


@router.post("/scan", response_model=ScanResponse)
async def scan(
    front: Annotated[UploadFile, File(description="Front of the card")],
    extractor: Annotated[Extractor, Depends(get_extractor)],
    session_factory: Annotated[Callable[[], AsyncSession], Depends(get_session_factory)],
    back: Annotated[UploadFile | None, File(description="Back of the card")] = None,
) -> ScanResponse:
    """
    Scan one card.

    Returns 502 if the scanner cannot read the card. Verification problems
    never fail the request; they show up as warnings.
    """
    image = await _read_image(front)
    back_image = await _read_image(back) if back is not None else None

    pipeline = ScanPipeline(extractor, session_factory)
    outcome = await pipeline.scan_card(image, back_image)
    if outcome.scan is None:
        raise ExtractionError("Scanner returned no card")
    result = outcome.scan

    return ScanResponse(
        card=dataclasses.asdict(result.card),
        visual_cues=dataclasses.asdict(result.visual_cues) if result.visual_cues else None,
        all_visible_text=list(result.all_visible_text),
        verification=(
            VerificationResponse.from_result(outcome.verification)
            if outcome.verification is not None
            else None
        ),
        applied=outcome.applied,
    )


@router.post("/cards", response_model=CardSaveResponse, status_code=status.HTTP_201_CREATED)
async def save(
    request: CardSaveRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    worker: Annotated[LearningWorker | None, Depends(get_learning_worker)],
) -> CardSaveResponse:
    """
    Save an accepted card.

    The card is committed before it is published for learning, so a save
    that fails never reaches the checklist corpus. Learning happens in the
    background; the response does not wait for it.
    """
    card = ExtractedCard(**request.model_dump())
    db_card = await save_card(session, card)
    await session.commit()

    queued = worker.publish(CardSaved(card=card)) if worker is not None else False

    return CardSaveResponse(
        id=db_card.id,
        player_name=db_card.player_name,
        created_at=db_card.created_at,
        queued_for_learning=queued,
    )
