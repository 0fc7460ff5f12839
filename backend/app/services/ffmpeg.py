import os
import subprocess

from app.core.config import settings
from app.core.errors import CodecError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

THUMBNAIL_SIZE = "320x240"


def format_seconds(seconds: float) -> str:
    """decimal seconds at millisecond precision, never exponent notation (12345.678, 2000000, 1.5)"""
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def _run(cmd: list[str], what: str) -> None:
    logger.debug(f"running: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise CodecError(f"{what} failed: ffmpeg binary not found ({settings.FFMPEG_BINARY})") from e
    except subprocess.CalledProcessError as e:
        # ffmpeg prints the useful part at the end
        stderr = (e.stderr or "").strip()[-2000:]
        raise CodecError(f"{what} failed (exit {e.returncode}): {stderr}") from e


def _check_output(output_path: str) -> None:
    # ffmpeg exits 0 without writing a frame when seeking past the end
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise CodecError(f"ffmpeg produced no output: {output_path}")


def transcode(source: str, output_path: str, resolution: str, bitrate: str) -> str:
    """
    transcode source to an h.264/aac mp4 at the given size and video bitrate
    source can be a local path or a url ffmpeg can read
    """
    cmd = [
        settings.FFMPEG_BINARY,
        "-i", source,
        "-c:v", "libx264",
        "-c:a", "aac",
        "-s", resolution,  # WxH
        "-b:v", bitrate,
        "-pix_fmt", "yuv420p",  # browser compatibility
        "-movflags", "+faststart",  # progressive streaming
        "-y",
        output_path,
    ]
    _run(cmd, f"transcode to {resolution}@{bitrate}")
    _check_output(output_path)
    return output_path


def extract_frame(source: str, timestamp: float, output_path: str, size: str = THUMBNAIL_SIZE) -> str:
    """grab exactly one frame at timestamp seconds into a size jpeg"""
    cmd = [
        settings.FFMPEG_BINARY,
        "-ss", format_seconds(timestamp),
        "-i", source,
        "-frames:v", "1",
        "-s", size,
        "-q:v", "2",
        "-y",
        output_path,
    ]
    _run(cmd, f"frame extraction at {format_seconds(timestamp)}s")
    _check_output(output_path)
    return output_path
