from fastapi import APIRouter, Depends
from sqlmodel import Session, select
from sqlalchemy import func
from app.core.db import get_session
from app.models import Job
from app.services.log_publisher import get_redis_client
from app.services.storage import check_storage
from app.worker import media_queue
from datetime import datetime
import redis

router = APIRouter()

@router.get("/")
def health_check():
    """basic liveness check"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "mediaworker-backend"
    }

@router.get("/ready")
def readiness_check(session: Session = Depends(get_session)):
    """comprehensive readiness check - verifies all dependencies"""
    checks = {}
    all_healthy = True

    # check database
    try:
        session.exec(select(Job.id).limit(1))
        checks["database"] = {"status": "healthy", "message": "connected"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "message": str(e)}
        all_healthy = False

    # check redis, only used for realtime fan-out so never fatal
    client = get_redis_client()
    if client is None:
        checks["redis"] = {"status": "warning", "message": "not configured"}
    else:
        try:
            client.ping()
            checks["redis"] = {"status": "healthy", "message": "connected"}
        except (redis.RedisError, OSError) as e:
            checks["redis"] = {"status": "warning", "message": str(e)}

    # check blob storage
    checks["storage"] = check_storage()
    if checks["storage"]["status"] != "healthy":
        all_healthy = False

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks
    }

@router.get("/metrics")
def get_metrics(session: Session = Depends(get_session)):
    """job counts from the database plus the live queue view"""
    rows = session.exec(
        select(Job.job_type, Job.status, func.count(Job.id)).group_by(Job.job_type, Job.status)
    ).all()

    by_status = {"queued": 0, "running": 0, "succeeded": 0, "failed": 0}
    by_type = {}
    for job_type, status, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        by_type.setdefault(job_type, {})[status] = count

    return {
        "timestamp": datetime.utcnow().isoformat(),
        "jobs": {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_type": by_type
        },
        "queue": media_queue.queue_status()
    }
