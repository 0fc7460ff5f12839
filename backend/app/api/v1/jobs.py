from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session, select
from app.api.deps import require_user
from app.core.db import get_session
from app.core.errors import InvalidPayloadError, JobNotFoundError, UnknownJobTypeError
from app.models import Job as JobModel
from app.schemas.media import EnqueueRequest, JobStatusOut
from app.services.job_tracker import get_job_record, job_record_to_status
from app.services.log_publisher import publish_log
from app.worker import media_queue
from datetime import datetime
from typing import Optional

router = APIRouter(dependencies=[Depends(require_user)])


@router.post("/", status_code=202)
async def enqueue(request: EnqueueRequest, background_tasks: BackgroundTasks):
    """queue a media job; it starts as soon as its type has a free slot"""
    try:
        job_id = media_queue.enqueue(request.job_type, request.payload)
    except UnknownJobTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidPayloadError as e:
        raise HTTPException(status_code=422, detail=e.errors)

    background_tasks.add_task(publish_log, 'backend', 'INFO', f'📋 queued {request.job_type} job {job_id}')
    return {
        "success": True,
        "job_id": job_id,
        "status": media_queue.get_status(job_id)["status"],
    }


@router.get("/")
def get_jobs(
    session: Session = Depends(get_session),
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = Query(default=50, le=200)
):
    """recent jobs from the database, grouped by status"""
    query = select(JobModel).order_by(JobModel.created_at.desc()).limit(limit)
    if status:
        query = query.where(JobModel.status == status)
    if job_type:
        query = query.where(JobModel.job_type == job_type)

    grouped = {"running": [], "queued": [], "succeeded": [], "failed": []}
    for job in session.exec(query).all():
        job_dict = {
            **job_record_to_status(job),
            "started_at": job.started_at.isoformat() if job.started_at else None,
            "finished_at": job.finished_at.isoformat() if job.finished_at else None,
            "created_at": job.created_at.isoformat() if job.created_at else None,
        }
        grouped.setdefault(job.status, []).append(job_dict)

    # totals across all time
    summary = {}
    for state in ("running", "queued", "succeeded", "failed"):
        summary[f"{state}_count"] = len(session.exec(select(JobModel.id).where(JobModel.status == state)).all())

    return {
        "running": grouped["running"],
        "queued": grouped["queued"],
        "succeeded": grouped["succeeded"][:20],  # last 20
        "failed": grouped["failed"][:20],  # last 20
        "summary": summary
    }


@router.get("/queue")
async def get_queue_status():
    """live per-type view of the in-process queue"""
    return {
        "queue": media_queue.queue_status(),
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/{job_id}", response_model=JobStatusOut, response_model_exclude_none=True)
async def get_job(job_id: str):
    """state and progress of one job, from memory or from the database once evicted"""
    try:
        return media_queue.get_status(job_id)
    except JobNotFoundError:
        pass

    record = await run_in_threadpool(get_job_record, job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="job not found")
    return job_record_to_status(record)
