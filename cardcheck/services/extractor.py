"""
Vision extraction client.

The Extractor protocol is the only thing verification knows about the
scanner: a full scan of a card image, and a free-form prompt against the
same image for targeted re-asks. AnthropicExtractor implements it with
the Anthropic Messages API.

Responses are untrusted. scan() maps whatever JSON comes back onto an
ExtractedCard and raises ExtractionError if it cannot; send_prompt()
returns the raw text and leaves interpretation to the caller.
"""

import asyncio
import base64
import json
import logging
import re
import time
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

import anthropic
import httpx
from anthropic.types import MessageParam, TextBlock
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cardcheck.config import settings
from cardcheck.models.card import BASE_VARIATION, UNKNOWN_PLAYER, ExtractedCard, ScanResult, VisualCues
from cardcheck.models.failure import ExtractionError, ExtractorUnavailableError
from cardcheck.models.verification import FieldConfidence, VerificationConfidence

logger = logging.getLogger(__name__)

_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

_YEAR = re.compile(r"(19|20)\d{2}")

SCAN_PROMPT_BODY = """
Return ONLY a JSON object with these exact fields (use null for unknown values):

{
  "player_name": "Full player name",
  "card_number": "Card number without # symbol",
  "year": 2024,
  "sport": "Football|Baseball|Basketball|Hockey|Soccer",
  "manufacturer": "Panini|Topps|Upper Deck|Leaf",
  "brand": "Sub-brand (Prizm, Donruss, Chrome, etc.)",
  "set_name": "Full set name if visible",
  "team": "Team name",
  "variation_type": "Base|Parallel|Insert|Refractor|Auto|Relic",
  "parallel_name": "Color/pattern name (Silver, Blue, Gold, etc.) or null",
  "serial_numbered": "Print run as string (/99, /25, 1/1) or null",
  "is_rookie": true or false,
  "is_auto": true or false,
  "is_relic": true or false,
  "is_short_print": true or false,
  "is_graded": true or false,
  "grade_company": "PSA|BGS|CGC|CCG|SGC or null",
  "grade_value": "Numeric grade (10, 9.5, 9, etc.) or Authentic or null",
  "auto_grade": "Autograph grade if separate from card grade, or null",
  "cert_number": "Certificate number on the slab or null",
  "condition_notes": "Any visible condition issues",
  "visual_cues": {
    "border_color": "Color of the card border or null",
    "card_finish": "matte|glossy|chrome|holographic|prizm or null",
    "has_foil": true or false,
    "has_refractor_pattern": true or false,
    "has_serial_number": true or false,
    "serial_number_location": "Location of serial number or null",
    "background_pattern": "Description of background pattern or null",
    "text_color": "Color of player name text or null",
    "has_rookie_logo": true or false,
    "has_auto_sticker": true or false,
    "has_relic_swatch": true or false
  },
  "all_visible_text": ["Every line of text visible on the card"],
  "confidence": {
    "player_name": "high|medium|low",
    "card_number": "high|medium|low",
    "year": "high|medium|low",
    "manufacturer": "high|medium|low",
    "brand": "high|medium|low",
    "variation_type": "high|medium|low",
    "parallel_name": "high|medium|low"
  }
}

Identification tips:
- "RC" or "Rated Rookie" logo = rookie card
- Serial numbers are usually printed at the bottom (e.g., 045/199)
- Panini brands: Prizm, Donruss, Mosaic, Select, Optic, Contenders, Phoenix
- Topps brands: Chrome, Heritage, Stadium Club, Finest, Bowman, Inception
- Rainbow or shimmer effects usually mean a parallel
- Actual ink or sticker signature = auto; jersey swatch or memorabilia = relic
- Graded cards sit in hard plastic slabs with a label showing company, grade and cert number
- For confidence: high = clearly visible, medium = partially visible, low = guessing

Return ONLY the JSON, no other text or markdown."""

FRONT_ONLY_PREAMBLE = "Analyze this sports card image and extract all identifying information."

FRONT_AND_BACK_PREAMBLE = (
    "You are given the FRONT and BACK images of the same sports card. The first image is "
    "the FRONT, the second is the BACK. Analyze BOTH images together. The back often "
    "contains the card number, set name, manufacturer, and serial number."
)


@dataclass(frozen=True)
class ImageInput:
    """An image to send to the scanner."""

    data: bytes
    media_type: str = "image/jpeg"

    @classmethod
    def from_path(cls, path: Path) -> "ImageInput":
        media_type = _MEDIA_TYPES.get(path.suffix.lower(), "image/jpeg")
        return cls(data=path.read_bytes(), media_type=media_type)

    def to_block(self) -> dict[str, Any]:
        """Anthropic base64 image content block."""
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": self.media_type,
                "data": base64.standard_b64encode(self.data).decode("ascii"),
            },
        }


class Extractor(Protocol):
    """What verification needs from the vision scanner."""

    async def scan(self, image: ImageInput, back_image: ImageInput | None = None) -> ScanResult:
        """Extract a card from its image(s)."""
        ...

    async def send_prompt(
        self, image: ImageInput, prompt: str, back_image: ImageInput | None = None
    ) -> str:
        """Ask a free-form question about the image(s); returns raw text."""
        ...


@dataclass
class RequestPacer:
    """
    Enforces a minimum interval between scanner requests.

    One pacer per extractor instance; callers sharing an extractor share
    its pacing.
    """

    min_interval_seconds: float = 0.0
    _last_request: float | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def wait(self) -> None:
        """Sleep until the next request is allowed, then claim the slot."""
        async with self._lock:
            if self._last_request is not None and self.min_interval_seconds > 0:
                elapsed = time.monotonic() - self._last_request
                remaining = self.min_interval_seconds - elapsed
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request = time.monotonic()


# =============================================================================
# RESPONSE PARSING
# =============================================================================


def strip_code_blocks(content: str) -> str:
    """Remove a surrounding ```json fence (or plain ``` fence) if present."""
    content = content.strip()
    if "```json" in content:
        content = content.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in content:
        parts = content.split("```")
        if len(parts) >= 3:
            content = parts[1]
    return content.strip()


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() in ("null", "none", "unknown", "n/a"):
            return None
    return value


class ScannedVisualCues(BaseModel):
    """visual_cues object of a scan response."""

    model_config = ConfigDict(extra="ignore")

    border_color: str | None = None
    card_finish: str | None = None
    has_foil: bool | None = None
    has_refractor_pattern: bool | None = None
    has_serial_number: bool | None = None
    serial_number_location: str | None = None
    background_pattern: str | None = None
    text_color: str | None = None
    has_rookie_logo: bool | None = None
    has_auto_sticker: bool | None = None
    has_relic_swatch: bool | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_strings(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def to_visual_cues(self) -> VisualCues:
        return VisualCues(
            border_color=self.border_color,
            card_finish=self.card_finish,
            has_foil=bool(self.has_foil),
            has_refractor_pattern=bool(self.has_refractor_pattern),
            has_serial_number=bool(self.has_serial_number),
            serial_number_location=self.serial_number_location,
            background_pattern=self.background_pattern,
            text_color=self.text_color,
            has_rookie_logo=bool(self.has_rookie_logo),
            has_auto_sticker=bool(self.has_auto_sticker),
            has_relic_swatch=bool(self.has_relic_swatch),
        )


class ScannedCardData(BaseModel):
    """Top-level scan response. Every field may be missing."""

    model_config = ConfigDict(extra="ignore")

    player_name: str | None = None
    card_number: str | None = None
    year: int | None = None
    sport: str | None = None
    manufacturer: str | None = None
    brand: str | None = None
    set_name: str | None = None
    team: str | None = None
    variation_type: str | None = None
    parallel_name: str | None = None
    serial_numbered: str | None = None
    is_rookie: bool | None = None
    is_auto: bool | None = None
    is_relic: bool | None = None
    is_short_print: bool | None = None
    is_ssp: bool | None = None
    is_graded: bool | None = None
    grade_company: str | None = None
    grade_value: str | None = None
    auto_grade: str | None = None
    cert_number: str | None = None
    condition_notes: str | None = None
    visual_cues: ScannedVisualCues | None = None
    all_visible_text: list[str] | None = None
    confidence: dict[str, Any] | None = None

    @field_validator(
        "player_name",
        "sport",
        "manufacturer",
        "brand",
        "set_name",
        "team",
        "variation_type",
        "parallel_name",
        "serial_numbered",
        "grade_company",
        "auto_grade",
        "cert_number",
        "condition_notes",
        mode="before",
    )
    @classmethod
    def _blank_strings(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("card_number", "grade_value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Numbers come back as JSON numbers as often as strings
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return _blank_to_none(value)

    @field_validator("year", mode="before")
    @classmethod
    def _parse_year(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        match = _YEAR.search(str(value))
        return int(match.group(0)) if match else None

    def to_card(self) -> ExtractedCard:
        return ExtractedCard(
            player_name=self.player_name or UNKNOWN_PLAYER,
            card_number=self.card_number,
            year=self.year,
            sport=self.sport.title() if self.sport else None,
            manufacturer=self.manufacturer,
            brand=self.brand,
            set_name=self.set_name,
            team=self.team,
            variation_type=self.variation_type or BASE_VARIATION,
            parallel_name=self.parallel_name,
            serial_numbered=self.serial_numbered,
            is_short_print=bool(self.is_short_print),
            is_ssp=bool(self.is_ssp),
            is_rookie=bool(self.is_rookie),
            is_auto=bool(self.is_auto),
            is_relic=bool(self.is_relic),
            is_graded=bool(self.is_graded),
            grade_company=self.grade_company,
            grade_value=self.grade_value,
            auto_grade=self.auto_grade,
            cert_number=self.cert_number,
            condition_notes=self.condition_notes,
        )

    def to_confidences(self) -> list[FieldConfidence]:
        hints: list[FieldConfidence] = []
        for field_name, level in (self.confidence or {}).items():
            try:
                confidence = VerificationConfidence(str(level or "").strip().lower())
            except ValueError:
                confidence = VerificationConfidence.MEDIUM
            if confidence == VerificationConfidence.CONFLICT:
                confidence = VerificationConfidence.MEDIUM
            hints.append(
                FieldConfidence(
                    field_name=field_name,
                    value=None,
                    confidence=confidence,
                    reason=f"AI confidence: {level}",
                )
            )
        return hints


def parse_scan_response(content: str) -> ScanResult:
    """
    Map a raw scan response onto a ScanResult.

    Raises:
        ExtractionError: If the response is not a JSON object of card fields
    """
    try:
        payload = json.loads(strip_code_blocks(content))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Scanner response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ExtractionError("Scanner response is not a JSON object")

    try:
        data = ScannedCardData.model_validate(payload)
    except ValidationError as e:
        raise ExtractionError(f"Scanner response has invalid fields: {e.error_count()} errors") from e

    return ScanResult(
        card=data.to_card(),
        visual_cues=data.visual_cues.to_visual_cues() if data.visual_cues else None,
        all_visible_text=[line for line in data.all_visible_text or [] if line],
        confidences=data.to_confidences(),
    )


# =============================================================================
# ANTHROPIC CLIENT
# =============================================================================


class AnthropicExtractor:
    """Extractor backed by a Claude vision model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 2048,
        timeout_seconds: float = 60.0,
        pacer: RequestPacer | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._pacer = pacer or RequestPacer()
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        )

    async def _send(self, images: list[ImageInput], prompt: str) -> str:
        content: list[Any] = [image.to_block() for image in images]
        content.append({"type": "text", "text": prompt})
        messages: list[MessageParam] = [{"role": "user", "content": content}]

        await self._pacer.wait()
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            messages=messages,
        )

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        logger.info(
            "scanner_request",
            extra={
                "model": self._model,
                "images": len(images),
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )
        return text

    async def scan(self, image: ImageInput, back_image: ImageInput | None = None) -> ScanResult:
        """
        Extract a card from its front (and optionally back) image.

        Raises:
            ExtractionError: If the API call fails or the response is unusable
        """
        images = [image]
        preamble = FRONT_ONLY_PREAMBLE
        if back_image is not None:
            images.append(back_image)
            preamble = FRONT_AND_BACK_PREAMBLE

        try:
            content = await self._send(images, preamble + SCAN_PROMPT_BODY)
        except (anthropic.APIError, httpx.HTTPError) as e:
            logger.error("Scanner request failed: %s", e)
            raise ExtractionError(f"Scanner request failed: {e}") from e

        if not content.strip():
            raise ExtractionError("Scanner returned an empty response")

        return parse_scan_response(content)

    async def send_prompt(
        self, image: ImageInput, prompt: str, back_image: ImageInput | None = None
    ) -> str:
        """Send a free-form prompt with the card image(s). Errors propagate."""
        images = [image] if back_image is None else [image, back_image]
        return await self._send(images, prompt)


@lru_cache(maxsize=1)
def get_extractor() -> AnthropicExtractor:
    """
    Get the configured extractor.

    Raises:
        ExtractorUnavailableError: If no API key is configured
    """
    if not settings.anthropic_api_key:
        raise ExtractorUnavailableError()

    return AnthropicExtractor(
        api_key=settings.anthropic_api_key,
        model=settings.extractor_model,
        max_tokens=settings.extractor_max_tokens,
        timeout_seconds=settings.extractor_timeout_seconds,
        pacer=RequestPacer(min_interval_seconds=settings.min_request_interval_seconds),
    )
