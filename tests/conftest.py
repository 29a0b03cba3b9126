from dataclasses import dataclass, field

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardcheck.db.database import create_engine_for_url
from cardcheck.db.operations import create_checklist
from cardcheck.models.card import ExtractedCard, ScanResult, VisualCues
from cardcheck.models.checklist import ChecklistCard, ChecklistKey, Provenance, SetChecklist
from cardcheck.models.db import Base, SetChecklistDB
from cardcheck.services.extractor import ImageInput
from cardcheck.services.seed_corpus import PACKAGED_SEED_DIR, SeedCorpus

PRIZM_KEY = ChecklistKey(manufacturer="Panini", brand="Prizm", year=2023, sport="Football")


@pytest.fixture(autouse=True)
def _default_anthropic_base_url(monkeypatch):
    """Keep a host ANTHROPIC_BASE_URL from redirecting the mocked Messages API."""
    monkeypatch.delenv("ANTHROPIC_BASE_URL", raising=False)


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def corpus() -> SeedCorpus:
    """The packaged seed corpus."""
    return SeedCorpus(PACKAGED_SEED_DIR)


@pytest.fixture
def image() -> ImageInput:
    """A stand-in card photo."""
    return ImageInput(data=b"\xff\xd8\xff\xe0fake-jpeg", media_type="image/jpeg")


def make_checklist(
    cards: list[tuple[str, str]] | None = None,
    variations: list[str] | None = None,
    key: ChecklistKey = PRIZM_KEY,
    source: Provenance = Provenance.SEED,
) -> SetChecklist:
    """Build a checklist from (number, player) pairs."""
    return SetChecklist(
        key=key,
        cards=[
            ChecklistCard(card_number=number, player_name=player, source=source)
            for number, player in cards or []
        ],
        known_variations=list(variations or []),
        data_source=source,
    )


def make_scan(visual_cues: VisualCues | None = None, **card_fields) -> ScanResult:
    """Build a scan of a 2023 Panini Prizm Football card, overriding fields."""
    defaults = {
        "manufacturer": "Panini",
        "brand": "Prizm",
        "year": 2023,
        "sport": "Football",
    }
    defaults.update(card_fields)
    return ScanResult(card=ExtractedCard(**defaults), visual_cues=visual_cues)


async def store_checklist(session: AsyncSession, checklist: SetChecklist) -> SetChecklistDB:
    """Persist a checklist and commit."""
    db_checklist = await create_checklist(session, checklist)
    await session.commit()
    return db_checklist


@dataclass
class FakeExtractor:
    """Extractor returning canned results and recording prompts."""

    scan_result: ScanResult | None = None
    scan_error: Exception | None = None
    prompt_response: str = "{}"
    prompt_error: BaseException | None = None
    prompts: list[str] = field(default_factory=list)

    async def scan(self, image: ImageInput, back_image: ImageInput | None = None) -> ScanResult:
        if self.scan_error is not None:
            raise self.scan_error
        assert self.scan_result is not None
        return self.scan_result

    async def send_prompt(
        self, image: ImageInput, prompt: str, back_image: ImageInput | None = None
    ) -> str:
        self.prompts.append(prompt)
        if self.prompt_error is not None:
            raise self.prompt_error
        return self.prompt_response
