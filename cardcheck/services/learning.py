"""
Checklist Learning Service.

Grows the checklist corpus from cards the user accepts and from imported
checklist files. Every write is append-only: entries already present
(by normalized card number or parallel name) are left alone.

Learning runs off the request path. The API publishes a CardSaved event
to the LearningWorker, whose background task feeds each card to
ChecklistLearner.learn_from_card() in its own session.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.config import settings
from cardcheck.db.operations import (
    add_card_if_new,
    add_variation_if_new,
    delete_missing_checklist,
    find_checklist,
    get_checklist_by_id,
    get_or_create_checklist,
    mark_enriched,
)
from cardcheck.models.card import BASE_VARIATION, CardSaved, ExtractedCard
from cardcheck.models.checklist import (
    ChecklistCard,
    ChecklistImportResult,
    ChecklistKey,
    Provenance,
    SeedCardData,
    SeedChecklistData,
    SetChecklist,
)
from cardcheck.models.db import SetChecklistDB
from cardcheck.models.failure import ChecklistNotFoundError
from cardcheck.services.seed_corpus import SeedCorpus, get_seed_corpus

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _clean(value: str | None) -> str:
    return value.strip() if value else ""


def append_card_entries(
    db_checklist: SetChecklistDB,
    card: ExtractedCard,
    include_variation_type: bool = False,
) -> bool:
    """
    Append what an accepted card says about its set.

    Adds the card number and the parallel name when they are not listed
    yet. A non-Base variation type is only added when
    `include_variation_type` is set, which learning does for the card that
    creates a checklist. Returns True if anything was added.
    """
    changed = False

    number = _clean(card.card_number)
    if number:
        changed |= add_card_if_new(
            db_checklist,
            ChecklistCard(
                card_number=number,
                player_name=card.player_name,
                team=card.team,
                is_rookie=card.is_rookie,
                source=Provenance.LEARNED,
            ),
        )

    changed |= add_variation_if_new(db_checklist, card.parallel_name)

    variation_type = _clean(card.variation_type)
    if (
        include_variation_type
        and variation_type
        and variation_type.casefold() != BASE_VARIATION.casefold()
    ):
        changed |= add_variation_if_new(db_checklist, variation_type)

    return changed


class ChecklistLearner:
    """
    Appends learned and imported entries to the checklist store.

    Each call runs in a fresh session from `session_factory` and commits
    on its own.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        corpus: SeedCorpus | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._corpus = corpus
        self._enabled = settings.enable_checklist_learning if enabled is None else enabled

    @property
    def corpus(self) -> SeedCorpus:
        if self._corpus is None:
            self._corpus = get_seed_corpus()
        return self._corpus

    async def learn_from_card(self, card: ExtractedCard) -> None:
        """
        Fold an accepted card into its set checklist.

        The checklist is looked up the way verification looks it up, so a
        card spelled "PANINI" enriches the stored "Panini" set. The first card seen for a set creates the checklist, adopting the
        seed checklist when one exists. Never raises.
        """
        if not self._enabled:
            return

        key = card.checklist_key()
        if key is None:
            return

        try:
            async with self._session_factory() as session, session.begin():
                await self._learn(session, key, card)
        except Exception:
            logger.exception("LEARNING_FAILED", extra={"checklist": str(key)})

    async def _learn(self, session: AsyncSession, key: ChecklistKey, card: ExtractedCard) -> None:
        def new_checklist() -> SetChecklist:
            seeded = self.corpus.find(key)
            if seeded is not None:
                return seeded
            return SetChecklist(key=key, data_source=Provenance.LEARNED)

        created = False
        db_checklist = await find_checklist(
            session, key.manufacturer, key.brand, key.year, key.sport
        )
        if db_checklist is None:
            db_checklist, created = await get_or_create_checklist(session, key, new_checklist)

        changed = append_card_entries(db_checklist, card, include_variation_type=created)

        if created:
            if changed:
                db_checklist.last_enriched_at = datetime.now(UTC)
            await delete_missing_checklist(session, key)
            logger.info(
                "CHECKLIST_CREATED",
                extra={"checklist": str(key), "data_source": db_checklist.data_source},
            )
            return

        if changed:
            mark_enriched(db_checklist, Provenance.LEARNED)
            logger.info(
                "CHECKLIST_ENRICHED",
                extra={"checklist": str(key), "data_source": db_checklist.data_source},
            )

    async def import_checklist(self, data: SeedChecklistData) -> ChecklistImportResult:
        """
        Merge a checklist file into the store.

        A new checklist is created with provenance imported. Against an
        existing checklist only unseen cards and variations are appended.
        The counts returned are the entries actually added.
        """
        manufacturer = _clean(data.manufacturer)
        brand = _clean(data.brand)
        if not manufacturer or not brand:
            return ChecklistImportResult(
                success=False,
                error_message="Checklist must have a manufacturer and brand.",
            )
        if data.year <= 0:
            return ChecklistImportResult(
                success=False,
                error_message="Checklist must have a year.",
            )

        key = ChecklistKey(
            manufacturer=manufacturer,
            brand=brand,
            year=data.year,
            sport=_clean(data.sport) or None,
        )

        try:
            async with self._session_factory() as session, session.begin():
                db_checklist, created = await get_or_create_checklist(
                    session,
                    key,
                    lambda: SetChecklist(
                        key=key,
                        total_base_cards=data.total_base_cards,
                        data_source=Provenance.IMPORTED,
                    ),
                )

                cards_added = 0
                for entry in data.cards or []:
                    card = ChecklistCard(
                        card_number=entry.card_number.strip(),
                        player_name=entry.player_name,
                        team=entry.team,
                        is_rookie=entry.is_rookie,
                        subset=entry.subset,
                        source=Provenance.IMPORTED,
                    )
                    if add_card_if_new(db_checklist, card):
                        cards_added += 1

                variations_added = 0
                for variation in data.known_variations or []:
                    if add_variation_if_new(db_checklist, variation):
                        variations_added += 1

                if data.total_base_cards and not db_checklist.total_base_cards:
                    db_checklist.total_base_cards = data.total_base_cards

                if not created and (cards_added or variations_added):
                    mark_enriched(db_checklist, Provenance.IMPORTED)

                await delete_missing_checklist(session, key)
        except SQLAlchemyError as e:
            logger.exception("CHECKLIST_IMPORT_FAILED", extra={"checklist": str(key)})
            return ChecklistImportResult(success=False, error_message=str(e))

        logger.info(
            "CHECKLIST_IMPORTED",
            extra={
                "checklist": str(key),
                "created": created,
                "cards_added": cards_added,
                "variations_added": variations_added,
            },
        )
        return ChecklistImportResult(
            success=True,
            cards_added=cards_added,
            variations_added=variations_added,
        )


async def export_checklist(session: AsyncSession, checklist_id: int) -> SeedChecklistData:
    """
    Export a stored checklist in the seed file format.

    Raises:
        ChecklistNotFoundError: If no checklist has this id
    """
    db_checklist = await get_checklist_by_id(session, checklist_id)
    if db_checklist is None:
        raise ChecklistNotFoundError(checklist_id)

    return SeedChecklistData(
        manufacturer=db_checklist.manufacturer,
        brand=db_checklist.brand,
        year=db_checklist.year,
        sport=db_checklist.sport or None,
        total_base_cards=db_checklist.total_base_cards,
        cards=[
            SeedCardData(
                card_number=card.card_number,
                player_name=card.player_name,
                team=card.team,
                is_rookie=card.is_rookie,
                subset=card.subset,
            )
            for card in db_checklist.cards
        ],
        known_variations=list(db_checklist.known_variations or []),
    )


class LearningWorker:
    """
    Background consumer of CardSaved events.

    publish() is safe to call from request handlers: it never blocks and
    never raises. A failing learner is logged and the worker moves on.
    """

    def __init__(self, learner: ChecklistLearner, maxsize: int = 0) -> None:
        self._learner = learner
        self._queue: asyncio.Queue[CardSaved] = asyncio.Queue(maxsize)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="checklist-learning")

    async def stop(self) -> None:
        """Process everything already queued, then stop the worker task."""
        if self._task is None:
            return
        if self.running:
            await self._queue.join()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def publish(self, event: CardSaved) -> bool:
        """Queue an event. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("LEARNING_QUEUE_FULL", extra={"player": event.card.player_name})
            return False
        return True

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._learner.learn_from_card(event.card)
            except Exception:
                logger.exception("LEARNING_FAILED", extra={"player": event.card.player_name})
            finally:
                self._queue.task_done()
