import json
from datetime import datetime
from typing import Optional

from sqlmodel import Session, col, select

from app.core.db import engine
from app.core.errors import JobInterruptedError
from app.models import Job


def _dump(value) -> Optional[str]:
    return json.dumps(value) if value is not None else None


def create_job_record(job_id: str, job_type: str, payload: dict) -> str:
    """create a job record in the database when a job is queued"""
    with Session(engine) as session:
        job = Job(
            id=job_id,
            job_type=job_type,
            status="queued",
            payload_json=json.dumps(payload)
        )
        session.add(job)
        session.commit()
        return job.id

def start_job(job_id: str, started_at: Optional[datetime] = None):
    """mark a job as started"""
    with Session(engine) as session:
        job = session.get(Job, job_id)
        if job:
            job.status = "running"
            job.started_at = started_at or datetime.utcnow()
            job.updated_at = datetime.utcnow()
            session.add(job)
            session.commit()

def update_job_progress(job_id: str, progress_percent: int):
    """update job progress"""
    with Session(engine) as session:
        job = session.get(Job, job_id)
        if job:
            job.progress_percent = progress_percent
            job.updated_at = datetime.utcnow()
            session.add(job)
            session.commit()

def complete_job(job_id: str, result: dict, finished_at: Optional[datetime] = None):
    """mark a job as succeeded and store its artifacts"""
    with Session(engine) as session:
        job = session.get(Job, job_id)
        if job:
            job.status = "succeeded"
            job.finished_at = finished_at or datetime.utcnow()
            job.progress_percent = 100
            job.result_json = _dump(result)
            job.updated_at = datetime.utcnow()
            session.add(job)
            session.commit()

def fail_job(job_id: str, error_type: str, error_message: str, finished_at: Optional[datetime] = None):
    """mark a job as failed, progress keeps its last value"""
    with Session(engine) as session:
        job = session.get(Job, job_id)
        if job:
            job.status = "failed"
            job.finished_at = finished_at or datetime.utcnow()
            job.error_type = error_type
            job.error_message = error_message
            job.updated_at = datetime.utcnow()
            session.add(job)
            session.commit()


def record_job_event(snapshot: dict):
    """queue listener: mirror a job snapshot into the jobs table"""
    status = snapshot["status"]
    if status == "queued":
        create_job_record(snapshot["id"], snapshot["job_type"], snapshot["payload"])
    elif status == "running" and snapshot["progress"] == 0:
        start_job(snapshot["id"], snapshot["started_at"])
    elif status == "running":
        update_job_progress(snapshot["id"], snapshot["progress"])
    elif status == "succeeded":
        complete_job(snapshot["id"], snapshot["result"], snapshot["finished_at"])
    elif status == "failed":
        error = snapshot["error"] or {}
        fail_job(snapshot["id"], error.get("type", "Error"), error.get("message", ""), snapshot["finished_at"])


def fail_interrupted_jobs(keep_ids=()) -> int:
    """
    fail jobs a previous process left queued or running, they will never finish

    keep_ids are jobs the current process still owns.
    """
    with Session(engine) as session:
        stale = session.exec(select(Job).where(col(Job.status).in_(["queued", "running"]))).all()
        count = 0
        for job in stale:
            if job.id in keep_ids:
                continue
            job.status = "failed"
            job.error_type = JobInterruptedError.__name__
            job.error_message = "interrupted by a shutdown before it finished"
            job.finished_at = datetime.utcnow()
            job.updated_at = datetime.utcnow()
            session.add(job)
            count += 1
        session.commit()
        return count


def get_job_record(job_id: str) -> Optional[Job]:
    with Session(engine) as session:
        return session.get(Job, job_id)


def job_record_to_status(job: Job) -> dict:
    """shape a stored job like a queue snapshot"""
    status = {
        "id": job.id,
        "job_type": job.job_type,
        "status": job.status,
        "progress": job.progress_percent,
        "result": None,
        "error": None,
    }
    if job.status == "succeeded" and job.result_json:
        status["result"] = json.loads(job.result_json)
    elif job.status == "failed":
        status["error"] = {"type": job.error_type or "Error", "message": job.error_message or ""}
    return status
