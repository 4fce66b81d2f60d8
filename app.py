"""
app.py — FastAPI application.

Runs the proactive scheduler for the lifetime of the process and exposes
its operational surface: status and manual job triggers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load .env into os.environ BEFORE any other imports that read env vars
load_dotenv()

from fastapi import FastAPI, HTTPException

from config.settings import settings
from core.errors import UnknownJobError
from core.scheduler import ProactiveScheduler, build_scheduler

# ── Logging ──────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ── Globals (initialized at startup) ────────────────────────
scheduler: Optional[ProactiveScheduler] = None


# ==========================================================
# 1. Lifespan (startup / shutdown)
# ==========================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler

    logger.info("🚀 Starting proactive scheduler...")
    scheduler = build_scheduler(settings)
    await scheduler.start()
    logger.info(f"🟢 Scheduler running (tick every {scheduler.tick_seconds:g}s, state at {settings.state_file})")

    yield

    # Shutdown
    logger.info("🔴 Shutting down...")
    await scheduler.stop()
    await scheduler.delivery.close()
    scheduler = None


def _require_scheduler() -> ProactiveScheduler:
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


# ==========================================================
# 2. FastAPI App
# ==========================================================

app = FastAPI(
    title="Proactive Scheduler",
    description="Randomized, quota-bounded proactive notifications",
    version="0.1.0",
    lifespan=lifespan,
)


# ==========================================================
# 3. Endpoints
# ==========================================================

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "scheduler_ready": scheduler is not None and scheduler.running,
    }


@app.get("/api/v1/scheduler/status")
async def scheduler_status():
    """Per-job schedule and outcomes, plus quiet hours, cooldown and quota."""
    return _require_scheduler().get_status()


@app.post("/api/v1/scheduler/jobs/{job_id}/trigger")
async def trigger_job(job_id: str):
    """
    Force one job's execution pipeline now (diagnostics).
    Quota and cooldown gates still apply; the job's target time is unchanged.
    """
    current = _require_scheduler()
    try:
        outcome = await current.trigger_job(job_id)
    except UnknownJobError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(f"🔧 Manual trigger {job_id}: {outcome.status}")
    return {"jobId": job_id, "result": outcome.model_dump(mode="json", by_alias=True)}


# ==========================================================
# 4. Entrypoint
# ==========================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000)
