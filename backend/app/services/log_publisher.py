from app.core.config import settings
from app.core.logging_config import get_logger
import json
from datetime import datetime
from typing import Literal, Optional

import redis

logger = get_logger(__name__)

LOG_CHANNEL = 'system_logs'
JOB_CHANNEL = 'job_events'

# Lazy initialize Redis to avoid startup issues
_redis_client = None

def get_redis_client() -> Optional[redis.Redis]:
    global _redis_client
    if _redis_client is None and settings.REDIS_URL:
        _redis_client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
    return _redis_client

LogLevel = Literal['INFO', 'WARNING', 'ERROR', 'SUCCESS', 'DEBUG']
LogSource = Literal['worker', 'queue', 'backend', 'system']


def _publish(channel: str, entry: dict):
    client = get_redis_client()
    if client is None:
        return
    try:
        client.publish(channel, json.dumps(entry, default=str))
    except (redis.RedisError, OSError) as e:
        # realtime fan-out is best effort, jobs keep running
        logger.warning(f"failed to publish to {channel}: {e}")


def publish_log(
    source: LogSource,
    level: LogLevel,
    message: str,
    metadata: Optional[dict] = None
):
    """Publish a log message to Redis for real-time streaming"""
    _publish(LOG_CHANNEL, {
        "timestamp": datetime.utcnow().isoformat(),
        "source": source,
        "level": level,
        "message": message,
        "metadata": metadata or {}
    })


def publish_job_event(snapshot: dict):
    """queue listener: fan out every job state/progress change"""
    _publish(JOB_CHANNEL, {
        "type": "job_progress",
        "timestamp": datetime.utcnow().isoformat(),
        **snapshot
    })
