from dataclasses import dataclass, field
from datetime import UTC, datetime

from cardcheck.models.checklist import ChecklistKey
from cardcheck.models.verification import FieldConfidence

UNKNOWN_PLAYER = "Unknown Player"
BASE_VARIATION = "Base"


@dataclass(frozen=True, slots=True)
class VisualCues:
    """
    Visual evidence the scanner reported alongside the card fields.

    Used to cross-check flags the scanner set on the card itself
    (a visible serial number on a card not marked numbered, etc).
    """

    border_color: str | None = None
    card_finish: str | None = None
    has_foil: bool = False
    has_refractor_pattern: bool = False
    has_serial_number: bool = False
    serial_number_location: str | None = None
    background_pattern: str | None = None
    text_color: str | None = None
    has_rookie_logo: bool = False
    has_auto_sticker: bool = False
    has_relic_swatch: bool = False


@dataclass(frozen=True, slots=True)
class ExtractedCard:
    """
    A card as identified by the vision scanner.

    Attributes:
        player_name: Player name as read from the card
        card_number: Printed card number, raw (may carry "#" or leading zeros)
        year: Release year of the set
        sport: Sport name (Football, Baseball, Basketball, ...)
        manufacturer: Card company (Panini, Topps, Upper Deck, Leaf)
        brand: Product line within the manufacturer (Prizm, Chrome, ...)
        variation_type: Base, Parallel, Insert, Refractor, Auto or Relic
        parallel_name: Color/finish name of the parallel, if any
        serial_numbered: Print run text ("/99", "1/1"), if numbered
    """

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

    @property
    def has_identity(self) -> bool:
        """True if manufacturer, brand and year are all present."""
        return bool(
            self.manufacturer
            and self.manufacturer.strip()
            and self.brand
            and self.brand.strip()
            and self.year is not None
        )

    def checklist_key(self) -> ChecklistKey | None:
        """
        Key of the set this card belongs to, or None without an identity.

        Surrounding whitespace is stripped and a blank sport is treated as absent.
        """
        if not self.has_identity or self.year is None:
            return None
        return ChecklistKey(
            manufacturer=(self.manufacturer or "").strip(),
            brand=(self.brand or "").strip(),
            year=self.year,
            sport=(self.sport or "").strip() or None,
        )


@dataclass
class ScanResult:
    """Everything one scan of one card produced."""

    card: ExtractedCard
    visual_cues: VisualCues | None = None
    all_visible_text: list[str] = field(default_factory=list)
    confidences: list[FieldConfidence] = field(default_factory=list)


@dataclass(frozen=True)
class CardSaved:
    """Event published after an accepted card has been persisted."""

    card: ExtractedCard
    saved_at: datetime = field(default_factory=lambda: datetime.now(UTC))
