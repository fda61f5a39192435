"""
API routes for inspecting and nudging the scrape scheduler.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from orchestrator import CycleCoordinator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scraper", tags=["scraper"])


def require_orchestrator() -> CycleCoordinator:
    """Get the running orchestrator"""
    orchestrator = get_orchestrator()
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Scraper not initialised")
    return orchestrator


@router.get("/status")
async def scraper_status(orchestrator: CycleCoordinator = Depends(require_orchestrator)):
    """Scheduler state, current cycle and recent cycle reports"""
    return orchestrator.status()


@router.post("/run", status_code=202)
async def run_now(orchestrator: CycleCoordinator = Depends(require_orchestrator)):
    """Queue one extra cycle; it starts once any running cycle is done"""
    if not orchestrator.running:
        raise HTTPException(status_code=409, detail="Scheduler is not running")

    orchestrator.request_run()
    logger.info("[scraper_routes] Manual scrape cycle requested")
    return {"queued": True}
