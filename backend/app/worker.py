import asyncio
import os
import time
import uuid
from typing import Optional

from app.core.config import settings
from app.schemas.media import (
    GenerateThumbnailPayload,
    JobType,
    OptimizedImage,
    OptimizeImagePayload,
    Thumbnail,
    TranscodedVideo,
    TranscodeVideoPayload,
    VideoFormat,
)
from app.services import ffmpeg, imaging, storage
from app.services.job_tracker import record_job_event
from app.services.log_publisher import LogLevel, publish_job_event, publish_log
from app.services.queue import MediaJobQueue, ProgressReporter, progress_percent


def _tmp_path(prefix: str, index: int, label: str, ext: str) -> str:
    """unique scratch path: timestamp + job-local index + random suffix"""
    os.makedirs(settings.TMP_DIR, exist_ok=True)
    filename = f"{prefix}_{int(time.time() * 1000)}_{index}_{label}_{uuid.uuid4().hex[:8]}.{ext}"
    return os.path.join(settings.TMP_DIR, filename)


def _cleanup_tmp(path: str):
    if os.path.exists(path):
        os.remove(path)


async def _log(level: LogLevel, message: str, metadata: Optional[dict] = None):
    await asyncio.to_thread(publish_log, 'worker', level, message, metadata)


# each unit runs whole on one worker thread, so its scratch file is removed
# by that thread even when the job coroutine was cancelled by a timeout

def _transcode_unit(source: str, fmt: VideoFormat, index: int) -> str:
    output_path = _tmp_path("transcoded", index, fmt.quality, "mp4")
    try:
        ffmpeg.transcode(source, output_path, fmt.resolution, fmt.ffmpeg_bitrate)
        return storage.upload(output_path, storage.build_key("transcoded", fmt.quality, "mp4"), "video/mp4")
    finally:
        _cleanup_tmp(output_path)


def _thumbnail_unit(source: str, timestamp: float, index: int) -> str:
    label = ffmpeg.format_seconds(timestamp)
    thumbnail_path = _tmp_path("thumbnail", index, label, "jpg")
    try:
        ffmpeg.extract_frame(source, timestamp, thumbnail_path)
        return storage.upload(thumbnail_path, storage.build_key("thumbnails", label, "jpg"), "image/jpeg")
    finally:
        _cleanup_tmp(thumbnail_path)


async def optimize_image(payload: OptimizeImagePayload, report_progress: ProgressReporter) -> dict:
    """resize the source to every requested size ("cover, centered") and upload each variant"""
    await _log('INFO', f'🖼️  optimizing image into {len(payload.sizes)} sizes', {
        'image_url': payload.image_url,
        'quality': payload.quality
    })
    source = await asyncio.to_thread(imaging.load_source, payload.image_url)

    optimized_images = []
    for size in payload.sizes:
        data = await asyncio.to_thread(imaging.resize_cover, source, size.width, size.height, payload.quality)
        url = await asyncio.to_thread(
            storage.upload, data, storage.build_key("optimized", size.label, "jpg"), "image/jpeg"
        )
        optimized_images.append(OptimizedImage(size=size.label, url=url).model_dump())

    await _log('SUCCESS', f'✅ image optimized: {len(optimized_images)} variants')
    return {"optimized_images": optimized_images}


async def transcode_video(payload: TranscodeVideoPayload, report_progress: ProgressReporter) -> dict:
    """
    transcode the source into every format, in input order

    progress moves after each format: 3 formats -> 33, 67, 100. the last step
    is reported by the queue when the job succeeds. a failure on any format
    aborts the job and drops the formats already uploaded.
    """
    total = len(payload.formats)
    await _log('INFO', f'🎬 transcoding video into {total} formats', {
        'video_url': payload.video_url,
        'qualities': [f.quality for f in payload.formats]
    })

    transcoded_videos = []
    for i, fmt in enumerate(payload.formats):
        url = await asyncio.to_thread(_transcode_unit, payload.video_url, fmt, i)

        transcoded_videos.append(TranscodedVideo(quality=fmt.quality, resolution=fmt.resolution, url=url).model_dump())
        await _log('INFO', f'✅ {fmt.quality} ready ({i + 1}/{total})')

        if i + 1 < total:
            report_progress(progress_percent(i + 1, total))

    return {"transcoded_videos": transcoded_videos}


async def generate_thumbnails(payload: GenerateThumbnailPayload, report_progress: ProgressReporter) -> dict:
    """one 320x240 frame per timestamp, in input order"""
    await _log('INFO', f'📸 extracting {len(payload.timestamps)} thumbnails', {
        'video_url': payload.video_url,
        'timestamps': payload.timestamps
    })

    thumbnails = []
    for i, timestamp in enumerate(payload.timestamps):
        url = await asyncio.to_thread(_thumbnail_unit, payload.video_url, timestamp, i)
        thumbnails.append(Thumbnail(timestamp=timestamp, url=url).model_dump())

    await _log('SUCCESS', f'✅ {len(thumbnails)} thumbnails ready')
    return {"thumbnails": thumbnails}


def create_media_queue(track: bool = True) -> MediaJobQueue:
    """build the queue with one processor and one concurrency ceiling per job type"""
    media_queue = MediaJobQueue(retention=settings.JOB_RETENTION)
    media_queue.register(
        JobType.OPTIMIZE_IMAGE, optimize_image, settings.IMAGE_CONCURRENCY, settings.IMAGE_TIMEOUT_SECONDS
    )
    media_queue.register(
        JobType.TRANSCODE_VIDEO, transcode_video, settings.VIDEO_CONCURRENCY, settings.VIDEO_TIMEOUT_SECONDS
    )
    media_queue.register(
        JobType.GENERATE_THUMBNAIL, generate_thumbnails, settings.THUMBNAIL_CONCURRENCY,
        settings.THUMBNAIL_TIMEOUT_SECONDS
    )

    if track:
        media_queue.subscribe(record_job_event, blocking=True)
        media_queue.subscribe(publish_job_event, blocking=True)
    return media_queue


# singleton instance
media_queue = create_media_queue()
