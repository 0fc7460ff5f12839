import io
from pathlib import Path

import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from app.core.errors import CodecError

DOWNLOAD_TIMEOUT = 60


def load_source(source_ref: str) -> bytes:
    """read the source image from a local path or an http(s) url"""
    try:
        if source_ref.startswith(("http://", "https://")):
            response = requests.get(source_ref, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
            return response.content
        return Path(source_ref).read_bytes()
    except (OSError, requests.RequestException) as e:
        raise CodecError(f"could not read source image {source_ref}: {e}") from e


def resize_cover(source: bytes, width: int, height: int, quality: int = 80) -> bytes:
    """
    resize to exactly width x height with a "cover, centered" fit:
    scale until both sides are covered, then crop the overflow evenly.
    re-encodes as jpeg at the given quality.
    """
    try:
        with Image.open(io.BytesIO(source)) as img:
            img = ImageOps.exif_transpose(img)
            # jpeg has no alpha channel
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            fitted = ImageOps.fit(img, (width, height), method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
            buffer = io.BytesIO()
            fitted.save(buffer, format="JPEG", quality=quality)
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise CodecError(f"image resize to {width}x{height} failed: {e}") from e
