from cardcheck.api.checklists import router as checklists_router
from cardcheck.api.health import router as health_router
from cardcheck.api.scan import router as scan_router

__all__ = [
    "checklists_router",
    "health_router",
    "scan_router",
]
