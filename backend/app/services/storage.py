import itertools
import os
import shutil
import time
from pathlib import Path
from typing import Union

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.errors import StorageError, retry_with_backoff
from app.core.logging_config import get_logger

logger = get_logger(__name__)

UploadSource = Union[bytes, str, os.PathLike]

# job-local counter so keys stay distinct within the same millisecond
_key_counter = itertools.count(1)


def build_key(prefix: str, label: str, ext: str) -> str:
    """
    unique object key: {prefix}/{label}_{epoch_ms}_{n}.{ext}
    example: transcoded/720p_1733140800123_42.mp4
    """
    return f"{prefix}/{label}_{int(time.time() * 1000)}_{next(_key_counter)}.{ext}"


def public_url(key: str) -> str:
    if settings.PUBLIC_BASE_URL:
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/{key}"
    return f"https://{settings.S3_BUCKET}.s3.{settings.S3_REGION}.amazonaws.com/{key}"


def _s3_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL or None,
        region_name=settings.S3_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
    )


def _upload_local(data: UploadSource, key: str) -> None:
    target = Path(settings.LOCAL_STORAGE_DIR) / key
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, bytes):
        target.write_bytes(data)
    else:
        shutil.copyfile(data, target)


def _upload_s3(data: UploadSource, key: str, content_type: str) -> None:
    if not settings.S3_BUCKET:
        raise StorageError("S3_BUCKET is not configured")
    client = _s3_client()
    if isinstance(data, bytes):
        client.put_object(Bucket=settings.S3_BUCKET, Key=key, Body=data, ContentType=content_type)
    else:
        client.upload_file(str(data), settings.S3_BUCKET, key, ExtraArgs={"ContentType": content_type})


def _put_object(data: UploadSource, key: str, content_type: str) -> str:
    backend = settings.STORAGE_BACKEND.lower()
    # upload_file wraps client errors in S3UploadFailedError (a Boto3Error)
    try:
        if backend == "local":
            _upload_local(data, key)
        elif backend in {"s3", "minio"}:
            _upload_s3(data, key, content_type)
        else:
            raise StorageError(f"Unsupported storage backend: {settings.STORAGE_BACKEND}")
    except (OSError, ClientError, BotoCoreError, Boto3Error) as e:
        raise StorageError(f"upload of {key} failed: {e}") from e
    return public_url(key)


def upload(data: UploadSource, destination_key: str, content_type: str) -> str:
    """
    write one object to blob storage and return its public url

    data is raw bytes or a local file path. raises StorageError on any
    failure. retries only when UPLOAD_MAX_RETRIES > 1.
    """
    put = retry_with_backoff(max_retries=settings.UPLOAD_MAX_RETRIES, retry_on=(StorageError,))(_put_object)
    url = put(data, destination_key, content_type)
    logger.info(f"uploaded {destination_key} ({content_type})")
    return url


def check_storage() -> dict:
    """readiness probe for the configured backend"""
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        path = Path(settings.LOCAL_STORAGE_DIR)
        path.mkdir(parents=True, exist_ok=True)
        return {"status": "healthy", "message": f"local: {path}"}
    if backend in {"s3", "minio"}:
        try:
            _s3_client().head_bucket(Bucket=settings.S3_BUCKET)
        except (ClientError, BotoCoreError) as e:
            return {"status": "unhealthy", "message": str(e)}
        return {"status": "healthy", "message": f"s3: {settings.S3_BUCKET}"}
    return {"status": "unhealthy", "message": f"unsupported backend: {settings.STORAGE_BACKEND}"}
