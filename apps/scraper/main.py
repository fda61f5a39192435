from fastapi import FastAPI, Response
from dotenv import load_dotenv
from contextlib import asynccontextmanager
import os
import logging

import metrics
from app.config import load_config
from app.scraper_routes import router as scraper_router
from orchestrator import get_orchestrator, start_scheduler, stop_scheduler

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    # ConfigError propagates: bad configuration must stop startup
    config = load_config()
    app.state.config = config
    logger.info(f"[scraper] Starting scraper: backend={config.backend_api} interval={config.scrape_period}s")

    await start_scheduler(config)

    yield

    # Shutdown
    await stop_scheduler()


app = FastAPI(title="Price Scraper", version="0.1.0", lifespan=lifespan)

app.include_router(scraper_router)


@app.get("/api/healthz")
async def healthz():
    orchestrator = get_orchestrator()
    scheduler = bool(orchestrator and orchestrator.running)
    last_report = orchestrator.last_report if orchestrator else None
    last_cycle_ok = bool(last_report and last_report.ok)

    return {
        "status": "green" if scheduler and last_cycle_ok else "amber",
        "components": {
            "scheduler": scheduler,
            "last_cycle_ok": last_cycle_ok,
        },
    }


@app.get("/metrics")
async def prometheus_metrics():
    payload, content_type = metrics.render_latest()
    return Response(content=payload, media_type=content_type)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
