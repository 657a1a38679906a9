import logging
import os
import time
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from . import metrics
from .pipeline.routes import media_router, pipeline_router

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Worker starting up...")
    metrics.set_gauge("start_time", time.time())
    yield
    logger.info("Worker shutting down...")


app = FastAPI(lifespan=lifespan)
app.include_router(pipeline_router)
app.include_router(media_router)


@app.get("/health")
def health_check():
    """Verify worker is running and env vars are configured."""
    gemini_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini_key),
        "gemini_key_prefix": gemini_key[:8] + "..." if gemini_key else "MISSING",
        "supabase_url_set": bool(os.environ.get("SUPABASE_URL")),
        "storage_bucket": os.environ.get("STORAGE_BUCKET", "assets"),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    return metrics.get_snapshot()


def run():
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("reelworker.main:app", host="0.0.0.0", port=port, reload=True)


if __name__ == "__main__":
    run()
