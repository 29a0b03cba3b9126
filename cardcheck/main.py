import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cardcheck.api import checklists_router, health_router, scan_router
from cardcheck.config import settings
from cardcheck.db.database import async_session_factory, init_db
from cardcheck.models.failure import KnownError
from cardcheck.services.learning import ChecklistLearner, LearningWorker
from cardcheck.services.seed_corpus import seed_checklists

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, seed checklists and run the learning worker."""
    await init_db()

    async with async_session_factory() as session, session.begin():
        await seed_checklists(session)

    worker = LearningWorker(ChecklistLearner(async_session_factory))
    worker.start()
    app.state.learning_worker = worker
    try:
        yield
    finally:
        await worker.stop()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("cardcheck"),
    lifespan=lifespan,
)

app.include_router(checklists_router)
app.include_router(health_router)
app.include_router(scan_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Tighten in production
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Render a KnownError as its failure envelope."""
    logger.warning("KNOWN_ERROR", extra={"kind": exc.kind.value, "detail": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )
