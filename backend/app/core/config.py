import os


def _optional_float(name: str):
    value = os.getenv(name)
    return float(value) if value else None


class Settings:
    PROJECT_NAME: str = "MediaWorker"
    DATABASE_URL: str = os.getenv("DATABASE_URL", "postgresql://postgres:postgres@db:5432/mediaworker")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "")  # empty = stdout only

    # local paths
    DATA_DIR: str = os.getenv("DATA_DIR", "/data")
    TMP_DIR: str = os.getenv("TMP_DIR", os.path.join(DATA_DIR, "tmp"))
    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")

    # blob storage
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local")  # local | s3
    LOCAL_STORAGE_DIR: str = os.getenv("LOCAL_STORAGE_DIR", os.path.join(DATA_DIR, "media"))
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/media")
    S3_BUCKET: str = os.getenv("S3_BUCKET", "")
    S3_REGION: str = os.getenv("S3_REGION", "us-east-1")
    S3_ENDPOINT_URL: str = os.getenv("S3_ENDPOINT_URL", "")  # minio etc
    AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    UPLOAD_MAX_RETRIES: int = int(os.getenv("UPLOAD_MAX_RETRIES", "1"))  # 1 = single attempt

    # queue: concurrency ceiling per job type
    IMAGE_CONCURRENCY: int = int(os.getenv("IMAGE_CONCURRENCY", "5"))
    VIDEO_CONCURRENCY: int = int(os.getenv("VIDEO_CONCURRENCY", "2"))
    THUMBNAIL_CONCURRENCY: int = int(os.getenv("THUMBNAIL_CONCURRENCY", "10"))

    # queue: per-type timeout in seconds, unset = wait forever
    IMAGE_TIMEOUT_SECONDS = _optional_float("IMAGE_TIMEOUT_SECONDS")
    VIDEO_TIMEOUT_SECONDS = _optional_float("VIDEO_TIMEOUT_SECONDS")
    THUMBNAIL_TIMEOUT_SECONDS = _optional_float("THUMBNAIL_TIMEOUT_SECONDS")

    JOB_RETENTION: int = int(os.getenv("JOB_RETENTION", "1000"))  # finished jobs kept in memory

    # auth for the job endpoints
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    AUTH_SKIP_VERIFY: bool = os.getenv("AUTH_SKIP_VERIFY", "false").lower() == "true"

settings = Settings()
