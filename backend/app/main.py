from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from app.core.config import settings
from app.core.db import init_db
from app.core.logging_config import configure_logging, get_logger
from app.api.v1 import health, jobs, ws
from app.services.job_tracker import fail_interrupted_jobs
from app.worker import media_queue
import os

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

@app.on_event("startup")
async def on_startup():
    init_db()
    interrupted = fail_interrupted_jobs(keep_ids=media_queue.active_job_ids())
    if interrupted:
        logger.warning(f"marked {interrupted} jobs from a previous run as failed")
    os.makedirs(settings.TMP_DIR, exist_ok=True)
    media_queue.start()

@app.on_event("shutdown")
async def on_shutdown():
    await media_queue.stop()

@app.get("/")
def read_root():
    return {"message": "Welcome to MediaWorker API"}

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])

# local backend serves its own artifacts under PUBLIC_BASE_URL
if settings.STORAGE_BACKEND == "local":
    app.mount("/media", StaticFiles(directory=settings.LOCAL_STORAGE_DIR, check_dir=False), name="media")
