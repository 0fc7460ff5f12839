from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Optional
import json
from datetime import datetime

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging_config import get_logger
from app.services.log_publisher import JOB_CHANNEL, LOG_CHANNEL

router = APIRouter()
logger = get_logger(__name__)


async def _stream_channel(websocket: WebSocket, channel: str, job_id: Optional[str] = None):
    """relay a redis pub/sub channel to one websocket client"""
    await websocket.accept()

    if not settings.REDIS_URL:
        await websocket.send_json({"type": "error", "message": "realtime stream not configured"})
        await websocket.close()
        return

    client = aioredis.from_url(settings.REDIS_URL)
    pubsub = client.pubsub()
    try:
        await pubsub.subscribe(channel)

        # Send initial connection message
        await websocket.send_json({
            "type": "connected",
            "timestamp": datetime.utcnow().isoformat(),
            "channel": channel,
            "job_id": job_id
        })

        async for message in pubsub.listen():
            if message['type'] != 'message':
                continue
            try:
                data = json.loads(message['data'])
            except ValueError as e:
                logger.warning(f"dropping malformed message on {channel}: {e}")
                continue
            # per-job subscription
            if job_id and data.get("id") != job_id:
                continue
            await websocket.send_json(data)

    except WebSocketDisconnect:
        logger.info(f"client disconnected from {channel}")
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await client.aclose()


@router.websocket("/jobs")
async def websocket_jobs(websocket: WebSocket, job_id: Optional[str] = None):
    """stream job progress and terminal state, optionally for a single job"""
    await _stream_channel(websocket, JOB_CHANNEL, job_id)


@router.websocket("/logs")
async def websocket_logs(websocket: WebSocket):
    """stream worker logs from redis pub/sub"""
    await _stream_channel(websocket, LOG_CHANNEL)
