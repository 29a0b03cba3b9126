"""
Database operations for the checklist corpus.

Provides async functions for reading, creating and appending to set
checklists, tracking missing checklists, and storing accepted cards.

Checklists are append-only: nothing here edits or removes an existing
card or variation entry. Creation is a find-or-create guarded by the
unique key, so two writers racing on a new set both end up appending to
the same row.
"""

import dataclasses
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cardcheck.models.card import ExtractedCard
from cardcheck.models.checklist import (
    ChecklistCard,
    ChecklistKey,
    MissingChecklist,
    Provenance,
    SetChecklist,
    escalate_provenance,
)
from cardcheck.models.db import ChecklistCardDB, MissingChecklistDB, SavedCardDB, SetChecklistDB
from cardcheck.services.matching import normalize, normalize_card_number, normalize_parallel_name


def _sport_column(sport: str | None) -> str:
    return sport.strip() if sport and sport.strip() else ""


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Conversion ---


def checklist_key(db_checklist: SetChecklistDB | MissingChecklistDB) -> ChecklistKey:
    """Build the domain key of a stored checklist or missing record."""
    return ChecklistKey(
        manufacturer=db_checklist.manufacturer,
        brand=db_checklist.brand,
        year=db_checklist.year,
        sport=db_checklist.sport or None,
    )


def checklist_to_model(db_checklist: SetChecklistDB) -> SetChecklist:
    """Convert a database checklist to a domain model."""
    return SetChecklist(
        id=db_checklist.id,
        key=checklist_key(db_checklist),
        cards=[
            ChecklistCard(
                card_number=card.card_number,
                player_name=card.player_name,
                team=card.team,
                is_rookie=card.is_rookie,
                subset=card.subset,
                source=Provenance(card.source),
            )
            for card in db_checklist.cards
        ],
        known_variations=list(db_checklist.known_variations or []),
        total_base_cards=db_checklist.total_base_cards,
        data_source=Provenance(db_checklist.data_source),
        cached_at=db_checklist.cached_at,
        last_enriched_at=db_checklist.last_enriched_at,
    )


def missing_checklist_to_model(db_missing: MissingChecklistDB) -> MissingChecklist:
    """Convert a database missing-checklist record to a domain model."""
    return MissingChecklist(
        key=checklist_key(db_missing),
        hit_count=db_missing.hit_count,
        first_seen=db_missing.first_seen,
        last_seen=db_missing.last_seen,
    )


def _card_to_db(card: ChecklistCard) -> ChecklistCardDB:
    return ChecklistCardDB(
        card_number=card.card_number,
        player_name=card.player_name,
        team=card.team,
        is_rookie=card.is_rookie,
        subset=card.subset,
        source=card.source.value,
    )


# --- Checklist reads ---


async def get_checklist_by_id(session: AsyncSession, checklist_id: int) -> SetChecklistDB | None:
    """Get a checklist by primary key, with its cards loaded."""
    result = await session.execute(
        select(SetChecklistDB)
        .where(SetChecklistDB.id == checklist_id)
        .options(selectinload(SetChecklistDB.cards))
    )
    return result.scalar_one_or_none()


async def get_checklist_by_key(session: AsyncSession, key: ChecklistKey) -> SetChecklistDB | None:
    """
    Get a checklist by its exact key.

    This is the lookup the unique constraint enforces; see find_checklist
    for the tolerant lookup used during verification.
    """
    result = await session.execute(
        select(SetChecklistDB)
        .where(
            SetChecklistDB.manufacturer == key.manufacturer,
            SetChecklistDB.brand == key.brand,
            SetChecklistDB.year == key.year,
            SetChecklistDB.sport == _sport_column(key.sport),
        )
        .options(selectinload(SetChecklistDB.cards))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _same_set(
    candidate: SetChecklistDB | MissingChecklistDB,
    manufacturer: str,
    brand: str,
    sport: str,
) -> bool:
    """
    True if `candidate` names the set given by already normalized parts.

    A missing sport on either side matches any sport. Year is left to the
    query.
    """
    if normalize(candidate.manufacturer) != manufacturer:
        return False
    if normalize(candidate.brand) != brand:
        return False
    candidate_sport = normalize(candidate.sport)
    return not (sport and candidate_sport and candidate_sport != sport)


async def find_checklist(
    session: AsyncSession,
    manufacturer: str,
    brand: str,
    year: int,
    sport: str | None = None,
) -> SetChecklistDB | None:
    """
    Find the checklist for a scanned card.

    Manufacturer and brand are compared after normalization, year exactly.
    A missing sport on either side matches any sport. The oldest match wins.

    Returns None when nothing matches.
    """
    norm_manufacturer = normalize(manufacturer)
    norm_brand = normalize(brand)
    norm_sport = normalize(sport)

    result = await session.execute(
        select(SetChecklistDB)
        .where(SetChecklistDB.year == year)
        .options(selectinload(SetChecklistDB.cards))
        .order_by(SetChecklistDB.id)
    )

    for candidate in result.scalars():
        if _same_set(candidate, norm_manufacturer, norm_brand, norm_sport):
            return candidate

    return None


async def list_checklists(session: AsyncSession) -> list[SetChecklistDB]:
    """All checklists ordered by manufacturer, brand and year."""
    result = await session.execute(
        select(SetChecklistDB)
        .options(selectinload(SetChecklistDB.cards))
        .order_by(SetChecklistDB.manufacturer, SetChecklistDB.brand, SetChecklistDB.year)
    )
    return list(result.scalars().all())


# --- Checklist writes ---


async def create_checklist(session: AsyncSession, checklist: SetChecklist) -> SetChecklistDB:
    """
    Insert a new checklist with its cards.

    Raises IntegrityError if a checklist with the same key exists.
    """
    now = _utcnow()
    db_checklist = SetChecklistDB(
        manufacturer=checklist.manufacturer,
        brand=checklist.brand,
        year=checklist.year,
        sport=_sport_column(checklist.sport),
        total_base_cards=checklist.total_base_cards,
        known_variations=list(checklist.known_variations),
        data_source=checklist.data_source.value,
        cached_at=checklist.cached_at or now,
        last_enriched_at=checklist.last_enriched_at,
        cards=[_card_to_db(card) for card in checklist.cards],
    )
    session.add(db_checklist)
    await session.flush()
    return db_checklist


async def get_or_create_checklist(
    session: AsyncSession,
    key: ChecklistKey,
    factory: Callable[[], SetChecklist],
) -> tuple[SetChecklistDB, bool]:
    """
    Get the checklist for a key, creating it from `factory` if absent.

    The insert runs in a savepoint. If another writer created the same key
    first, the savepoint is rolled back and the winner's row is returned.

    Returns:
        Tuple of (checklist, created) where created is True if new.
    """
    existing = await get_checklist_by_key(session, key)
    if existing is not None:
        return existing, False

    checklist = factory()
    if checklist.key != key:
        checklist = dataclasses.replace(checklist, key=key)

    try:
        async with session.begin_nested():
            created = await create_checklist(session, checklist)
    except IntegrityError:
        winner = await get_checklist_by_key(session, key)
        if winner is None:
            raise
        return winner, False

    return created, True


def add_card_if_new(db_checklist: SetChecklistDB, card: ChecklistCard) -> bool:
    """
    Append a card unless its normalized number is already listed.

    Returns True if the card was added.
    """
    number = normalize_card_number(card.card_number)
    if not number:
        return False

    if any(normalize_card_number(c.card_number) == number for c in db_checklist.cards):
        return False

    db_checklist.cards.append(_card_to_db(card))
    return True


def has_variation(db_checklist: SetChecklistDB, variation: str) -> bool:
    """True if a variation with the same normalized parallel name is listed."""
    target = normalize_parallel_name(variation)
    return any(normalize_parallel_name(v) == target for v in db_checklist.known_variations or [])


def add_variation_if_new(db_checklist: SetChecklistDB, variation: str | None) -> bool:
    """
    Append a variation name unless an equivalent one is already listed.

    Returns True if the variation was added.
    """
    if not variation or not variation.strip():
        return False

    if has_variation(db_checklist, variation):
        return False

    # Reassign so the JSON column is flagged dirty
    db_checklist.known_variations = [*(db_checklist.known_variations or []), variation.strip()]
    return True


def mark_enriched(db_checklist: SetChecklistDB, incoming: Provenance) -> None:
    """Record that new entries from `incoming` were appended."""
    current = Provenance(db_checklist.data_source)
    db_checklist.data_source = escalate_provenance(current, incoming).value
    db_checklist.last_enriched_at = _utcnow()


async def delete_checklist(session: AsyncSession, checklist_id: int) -> bool:
    """
    Delete a checklist and its cards.

    Returns True if deleted, False if not found.
    """
    checklist = await get_checklist_by_id(session, checklist_id)
    if checklist is None:
        return False

    await session.delete(checklist)
    await session.flush()
    return True


# --- Missing checklist tracking ---


def _missing_key_filter(key: ChecklistKey) -> tuple:
    return (
        MissingChecklistDB.manufacturer == key.manufacturer,
        MissingChecklistDB.brand == key.brand,
        MissingChecklistDB.year == key.year,
        MissingChecklistDB.sport == _sport_column(key.sport),
    )


async def get_missing_checklist(
    session: AsyncSession, key: ChecklistKey
) -> MissingChecklistDB | None:
    """Get the missing-checklist record for a key, if any."""
    result = await session.execute(
        select(MissingChecklistDB)
        .where(*_missing_key_filter(key))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _increment_missing(session: AsyncSession, key: ChecklistKey, now: datetime) -> int:
    result = await session.execute(
        update(MissingChecklistDB)
        .where(*_missing_key_filter(key))
        .values(hit_count=MissingChecklistDB.hit_count + 1, last_seen=now)
    )
    # rowcount is available on UPDATE results; type stubs incomplete for async
    return int(result.rowcount)  # type: ignore[attr-defined]


async def record_missing_checklist(session: AsyncSession, key: ChecklistKey) -> MissingChecklistDB:
    """
    Count one more lookup miss for a key.

    Increments hit_count in place, or inserts a first record with
    hit_count=1. Concurrent first misses fall back to the increment.
    """
    now = _utcnow()

    if not await _increment_missing(session, key, now):
        try:
            async with session.begin_nested():
                session.add(
                    MissingChecklistDB(
                        manufacturer=key.manufacturer,
                        brand=key.brand,
                        year=key.year,
                        sport=_sport_column(key.sport),
                        hit_count=1,
                        first_seen=now,
                        last_seen=now,
                    )
                )
        except IntegrityError:
            await _increment_missing(session, key, now)

    missing = await get_missing_checklist(session, key)
    if missing is None:
        msg = f"Missing checklist record for {key} not found after upsert"
        raise RuntimeError(msg)
    return missing


async def delete_missing_checklist(session: AsyncSession, key: ChecklistKey) -> bool:
    """
    Retire the missing-checklist records a checklist for `key` now answers.

    Records are matched the way find_checklist matches checklists, so a miss
    recorded as "LEAF" is retired by a checklist stored as "Leaf".

    Returns True if a record was deleted.
    """
    result = await session.execute(
        select(MissingChecklistDB).where(MissingChecklistDB.year == key.year)
    )
    answered = [
        missing
        for missing in result.scalars()
        if _same_set(
            missing, normalize(key.manufacturer), normalize(key.brand), normalize(key.sport)
        )
    ]

    for missing in answered:
        await session.delete(missing)
    await session.flush()
    return bool(answered)


async def list_missing_checklists(session: AsyncSession, limit: int = 100) -> list[MissingChecklistDB]:
    """Missing checklists, most requested first."""
    result = await session.execute(
        select(MissingChecklistDB)
        .order_by(MissingChecklistDB.hit_count.desc(), MissingChecklistDB.last_seen.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


# --- Saved cards ---


async def save_card(session: AsyncSession, card: ExtractedCard) -> SavedCardDB:
    """Persist an accepted card."""
    db_card = SavedCardDB(
        player_name=card.player_name,
        card_number=card.card_number,
        year=card.year,
        manufacturer=card.manufacturer,
        brand=card.brand,
        parallel_name=card.parallel_name,
        payload=dataclasses.asdict(card),
        created_at=_utcnow(),
    )
    session.add(db_card)
    await session.flush()
    return db_card
