"""
Checklist API endpoints.

Browse, import, export and delete set checklists, and list the sets
scans asked for that had no checklist.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.db import (
    async_session_factory,
    delete_checklist,
    get_checklist_by_id,
    list_checklists,
    list_missing_checklists,
)
from cardcheck.db.database import get_session
from cardcheck.models.checklist import SeedChecklistData
from cardcheck.models.db import MissingChecklistDB, SetChecklistDB
from cardcheck.models.failure import ChecklistNotFoundError, FailureKind, KnownError
from cardcheck.services.learning import ChecklistLearner, export_checklist

router = APIRouter(prefix="/checklists", tags=["checklists"])


def get_learner() -> ChecklistLearner:
    """Dependency providing the checklist learner."""
    return ChecklistLearner(async_session_factory)


class ChecklistCardResponse(BaseModel):
    """One card of a checklist."""

    card_number: str
    player_name: str
    team: str | None = None
    is_rookie: bool = False
    subset: str | None = None
    source: str


class ChecklistSummary(BaseModel):
    """Checklist without its cards."""

    id: int
    manufacturer: str
    brand: str
    year: int
    sport: str | None = None
    total_base_cards: int = 0
    card_count: int = 0
    variation_count: int = 0
    data_source: str
    cached_at: datetime | None = None
    last_enriched_at: datetime | None = None

    @classmethod
    def from_db(cls, checklist: SetChecklistDB) -> "ChecklistSummary":
        return cls(
            id=checklist.id,
            manufacturer=checklist.manufacturer,
            brand=checklist.brand,
            year=checklist.year,
            sport=checklist.sport or None,
            total_base_cards=checklist.total_base_cards,
            card_count=len(checklist.cards),
            variation_count=len(checklist.known_variations or []),
            data_source=checklist.data_source,
            cached_at=checklist.cached_at,
            last_enriched_at=checklist.last_enriched_at,
        )


class ChecklistDetail(ChecklistSummary):
    """Checklist with cards and known variations."""

    cards: list[ChecklistCardResponse] = Field(default_factory=list)
    known_variations: list[str] = Field(default_factory=list)

    @classmethod
    def from_db(cls, checklist: SetChecklistDB) -> "ChecklistDetail":
        summary = ChecklistSummary.from_db(checklist)
        return cls(
            **summary.model_dump(),
            cards=[
                ChecklistCardResponse(
                    card_number=card.card_number,
                    player_name=card.player_name,
                    team=card.team,
                    is_rookie=card.is_rookie,
                    subset=card.subset,
                    source=card.source,
                )
                for card in checklist.cards
            ],
            known_variations=list(checklist.known_variations or []),
        )


class MissingChecklistResponse(BaseModel):
    """A set that scans looked for and did not find."""

    manufacturer: str
    brand: str
    year: int
    sport: str | None = None
    hit_count: int
    first_seen: datetime
    last_seen: datetime

    @classmethod
    def from_db(cls, missing: MissingChecklistDB) -> "MissingChecklistResponse":
        return cls(
            manufacturer=missing.manufacturer,
            brand=missing.brand,
            year=missing.year,
            sport=missing.sport or None,
            hit_count=missing.hit_count,
            first_seen=missing.first_seen,
            last_seen=missing.last_seen,
        )


class ImportResponse(BaseModel):
    """Result of importing a checklist file."""

    success: bool
    cards_added: int = 0
    variations_added: int = 0


class DeleteResponse(BaseModel):
    """Result of deleting a checklist."""

    checklist_id: int
    deleted: bool


@router.get("", response_model=list[ChecklistSummary])
async def get_checklists(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[ChecklistSummary]:
    """List all stored checklists."""
    return [ChecklistSummary.from_db(c) for c in await list_checklists(session)]


@router.get("/missing", response_model=list[MissingChecklistResponse])
async def get_missing_checklists(
    session: Annotated[AsyncSession, Depends(get_session)],
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[MissingChecklistResponse]:
    """Sets without a checklist, most requested first."""
    missing = await list_missing_checklists(session, limit=limit)
    return [MissingChecklistResponse.from_db(m) for m in missing]


@router.post("/import", response_model=ImportResponse)
async def import_checklist(
    data: SeedChecklistData,
    learner: Annotated[ChecklistLearner, Depends(get_learner)],
) -> ImportResponse:
    """
    Merge a checklist file into the store.

    Only cards and variations not already listed are added.
    """
    result = await learner.import_checklist(data)
    if not result.success:
        raise KnownError(
            kind=FailureKind.INVALID_INPUT,
            message="The checklist could not be imported.",
            detail=result.error_message,
            suggestion="Check the file has manufacturer, brand and year set.",
        )
    return ImportResponse(
        success=True,
        cards_added=result.cards_added,
        variations_added=result.variations_added,
    )


@router.get("/{checklist_id}", response_model=ChecklistDetail)
async def get_checklist(
    checklist_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ChecklistDetail:
    """Get one checklist with its cards."""
    checklist = await get_checklist_by_id(session, checklist_id)
    if checklist is None:
        raise ChecklistNotFoundError(checklist_id)
    return ChecklistDetail.from_db(checklist)


@router.get("/{checklist_id}/export", response_model=SeedChecklistData)
async def export(
    checklist_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SeedChecklistData:
    """Export a checklist in the seed/import JSON format."""
    return await export_checklist(session, checklist_id)


@router.delete("/{checklist_id}", response_model=DeleteResponse)
async def remove_checklist(
    checklist_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DeleteResponse:
    """Delete a checklist and its cards."""
    if not await delete_checklist(session, checklist_id):
        raise ChecklistNotFoundError(checklist_id)
    return DeleteResponse(checklist_id=checklist_id, deleted=True)
