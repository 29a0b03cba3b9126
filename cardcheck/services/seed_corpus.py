"""
Seed checklist corpus.

Provides read-only access to the checklists packaged with the application.
Seed files are JSON documents in the import/export format, one set per
file, under cardcheck/data/seed/ (or settings.seed_data_dir).

The corpus is consulted at startup to seed an empty store, and by the
learning engine the first time a card from an unseen set is accepted.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cardcheck.config import settings
from cardcheck.db.operations import create_checklist, delete_missing_checklist, get_checklist_by_key
from cardcheck.models.checklist import (
    ChecklistKey,
    Provenance,
    SeedChecklistData,
    SetChecklist,
)

logger = logging.getLogger(__name__)

# Path to the packaged seed files
PACKAGED_SEED_DIR = Path(__file__).parent.parent / "data" / "seed"


def _casefold(value: str | None) -> str:
    return (value or "").strip().casefold()


def _same_key(seed_key: ChecklistKey, key: ChecklistKey) -> bool:
    return (
        _casefold(seed_key.manufacturer) == _casefold(key.manufacturer)
        and _casefold(seed_key.brand) == _casefold(key.brand)
        and seed_key.year == key.year
        and _casefold(seed_key.sport) == _casefold(key.sport)
    )


class SeedCorpus:
    """
    Read-only collection of seed checklists loaded from a directory.

    Files that fail to parse are skipped with a warning.
    """

    def __init__(self, seed_dir: Path) -> None:
        self._seed_dir = seed_dir
        self._entries = self._load()

    def _load(self) -> tuple[SeedChecklistData, ...]:
        if not self._seed_dir.is_dir():
            logger.warning("Seed directory not found: %s", self._seed_dir)
            return ()

        entries: list[SeedChecklistData] = []
        for path in sorted(self._seed_dir.glob("*.json")):
            try:
                data = SeedChecklistData.model_validate(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Failed to load seed file %s: %s", path.name, e)
                continue

            if not data.manufacturer.strip() or not data.brand.strip():
                logger.warning("Seed file %s has no manufacturer or brand", path.name)
                continue
            entries.append(data)

        return tuple(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def find(self, key: ChecklistKey) -> SetChecklist | None:
        """
        Look up a seed checklist by key.

        Manufacturer, brand and sport compare case-insensitively; year and
        the presence of sport must match exactly.

        Returns a fresh SetChecklist (provenance seed) or None.
        """
        for entry in self._entries:
            if _same_key(entry.key, key):
                logger.info("Found seed data for %s", key)
                return entry.to_checklist(Provenance.SEED)
        return None


@lru_cache(maxsize=1)
def get_seed_corpus() -> SeedCorpus:
    """
    Get the configured seed corpus.

    Cached after first load (seed data is read-only).
    """
    seed_dir = Path(settings.seed_data_dir) if settings.seed_data_dir else PACKAGED_SEED_DIR
    return SeedCorpus(seed_dir)


async def seed_checklists(session: AsyncSession, corpus: SeedCorpus | None = None) -> int:
    """
    Insert every seed checklist whose key is not stored yet.

    Existing checklists are left untouched. Returns the number added.
    """
    corpus = corpus if corpus is not None else get_seed_corpus()
    added = 0

    for entry in corpus:
        key = entry.key
        if await get_checklist_by_key(session, key) is not None:
            continue

        await create_checklist(session, entry.to_checklist(Provenance.SEED))
        await delete_missing_checklist(session, key)
        added += 1

    if added:
        logger.info("Seeded %d new checklists", added)
    return added
