from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobType(str, Enum):
    OPTIMIZE_IMAGE = "optimize-image"
    TRANSCODE_VIDEO = "transcode-video"
    GENERATE_THUMBNAIL = "generate-thumbnail"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class _Payload(BaseModel):
    # producers may send camelCase keys (imageUrl, videoUrl)
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ImageSize(_Payload):
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"


class VideoFormat(_Payload):
    quality: str = Field(min_length=1)  # "480p", "720p", ...
    resolution: str  # "854x480"
    bitrate: Union[str, int]  # "1000k" or kbps

    @field_validator("resolution")
    @classmethod
    def check_resolution(cls, value: str) -> str:
        parts = value.lower().split("x")
        if len(parts) != 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError(f"resolution must look like WIDTHxHEIGHT, got {value!r}")
        return value.lower()

    @property
    def ffmpeg_bitrate(self) -> str:
        return f"{self.bitrate}k" if isinstance(self.bitrate, int) else self.bitrate


class OptimizeImagePayload(_Payload):
    image_url: str = Field(alias="imageUrl", min_length=1)
    sizes: list[ImageSize] = Field(min_length=1)
    quality: int = Field(default=80, ge=1, le=100)


class TranscodeVideoPayload(_Payload):
    video_url: str = Field(alias="videoUrl", min_length=1)
    formats: list[VideoFormat] = Field(min_length=1)


class GenerateThumbnailPayload(_Payload):
    video_url: str = Field(alias="videoUrl", min_length=1)
    timestamps: list[float] = Field(default_factory=lambda: [1, 5, 10], min_length=1)

    @field_validator("timestamps")
    @classmethod
    def check_timestamps(cls, value: list[float]) -> list[float]:
        if any(ts < 0 for ts in value):
            raise ValueError("timestamps must be non-negative")
        return value


PAYLOAD_MODELS = {
    JobType.OPTIMIZE_IMAGE: OptimizeImagePayload,
    JobType.TRANSCODE_VIDEO: TranscodeVideoPayload,
    JobType.GENERATE_THUMBNAIL: GenerateThumbnailPayload,
}


# artifacts, one per unit of work

class OptimizedImage(BaseModel):
    size: str
    url: str


class TranscodedVideo(BaseModel):
    quality: str
    resolution: str
    url: str


class Thumbnail(BaseModel):
    timestamp: float
    url: str


# api bodies

class EnqueueRequest(BaseModel):
    job_type: str = Field(validation_alias="jobType")
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class JobStatusOut(BaseModel):
    id: str
    job_type: str
    status: JobStatus
    progress: int
    result: Optional[dict[str, Any]] = None
    error: Optional[dict[str, str]] = None
