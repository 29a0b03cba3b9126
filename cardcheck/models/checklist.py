"""
Checklist corpus models.

A SetChecklist enumerates the cards and known parallels of one print run,
keyed by (manufacturer, brand, year, sport). Checklists are only ever
appended to; their provenance moves toward MIXED and never back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Provenance(str, Enum):
    """Where checklist data came from."""

    SEED = "seed"
    LEARNED = "learned"
    IMPORTED = "imported"
    MIXED = "mixed"


def escalate_provenance(current: Provenance, incoming: Provenance) -> Provenance:
    """
    Provenance of a checklist after new entries from `incoming` are merged in.

    MIXED absorbs everything. Learned entries turn a SEED checklist MIXED;
    imported entries turn SEED or LEARNED checklists MIXED. Seed data never
    changes provenance. The result is never purer than `current`.
    """
    if current == Provenance.MIXED or current == incoming:
        return current

    if incoming == Provenance.LEARNED and current == Provenance.SEED:
        return Provenance.MIXED

    if incoming == Provenance.IMPORTED and current in (Provenance.SEED, Provenance.LEARNED):
        return Provenance.MIXED

    return current


@dataclass(frozen=True, slots=True)
class ChecklistKey:
    """Identity of one print run. Sport is optional."""

    manufacturer: str
    brand: str
    year: int
    sport: str | None = None

    def __str__(self) -> str:
        label = f"{self.year} {self.manufacturer} {self.brand}"
        return f"{label} ({self.sport})" if self.sport else label


@dataclass(frozen=True, slots=True)
class ChecklistCard:
    """One numbered card within a set checklist."""

    card_number: str
    player_name: str
    team: str | None = None
    is_rookie: bool = False
    subset: str | None = None
    source: Provenance = Provenance.SEED


@dataclass
class SetChecklist:
    """A set checklist as seen by the verifier."""

    key: ChecklistKey
    cards: list[ChecklistCard] = field(default_factory=list)
    known_variations: list[str] = field(default_factory=list)
    total_base_cards: int = 0
    data_source: Provenance = Provenance.SEED
    cached_at: datetime | None = None
    last_enriched_at: datetime | None = None
    id: int | None = None

    @property
    def manufacturer(self) -> str:
        return self.key.manufacturer

    @property
    def brand(self) -> str:
        return self.key.brand

    @property
    def year(self) -> int:
        return self.key.year

    @property
    def sport(self) -> str | None:
        return self.key.sport

    @property
    def card_count(self) -> int:
        """Advertised base set size, falling back to the cards on file."""
        return self.total_base_cards or len(self.cards)


@dataclass(frozen=True)
class MissingChecklist:
    """A set the verifier looked for and could not find."""

    key: ChecklistKey
    hit_count: int
    first_seen: datetime
    last_seen: datetime


@dataclass(frozen=True)
class ChecklistImportResult:
    """Outcome of merging an imported checklist file."""

    success: bool
    cards_added: int = 0
    variations_added: int = 0
    error_message: str | None = None


# =============================================================================
# JSON FILE FORMAT (seed corpus, import, export)
# =============================================================================


class SeedCardData(BaseModel):
    """One card entry in a checklist JSON file."""

    model_config = ConfigDict(populate_by_name=True)

    card_number: str
    player_name: str = ""
    team: str | None = None
    is_rookie: bool = False
    subset: str | None = None


class SeedChecklistData(BaseModel):
    """Checklist JSON file as shipped in the seed corpus and used for import/export."""

    model_config = ConfigDict(populate_by_name=True)

    manufacturer: str = ""
    brand: str = ""
    year: int = 0
    sport: str | None = None
    total_base_cards: int = Field(default=0, alias="totalBaseCards")
    cards: list[SeedCardData] | None = None
    known_variations: list[str] | None = Field(default=None, alias="knownVariations")

    @property
    def key(self) -> ChecklistKey:
        return ChecklistKey(
            manufacturer=self.manufacturer,
            brand=self.brand,
            year=self.year,
            sport=self.sport,
        )

    def to_checklist(self, source: Provenance) -> SetChecklist:
        """Build a domain checklist with every entry tagged `source`."""
        return SetChecklist(
            key=self.key,
            cards=[
                ChecklistCard(
                    card_number=c.card_number,
                    player_name=c.player_name,
                    team=c.team,
                    is_rookie=c.is_rookie,
                    subset=c.subset,
                    source=source,
                )
                for c in self.cards or []
            ],
            known_variations=list(self.known_variations or []),
            total_base_cards=self.total_base_cards,
            data_source=source,
        )
