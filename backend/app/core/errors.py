import logging
from typing import Callable, Any
from functools import wraps
import time

logger = logging.getLogger(__name__)


class MediaWorkerException(Exception):
    """base exception for media pipeline errors"""
    pass


class StorageError(MediaWorkerException):
    """raised when an upload to the blob store fails (network, auth, quota)"""
    pass


class CodecError(MediaWorkerException):
    """raised when resize, transcode or frame extraction fails"""
    pass


class UnknownJobTypeError(MediaWorkerException):
    """raised when enqueue is called with an unregistered job type"""

    def __init__(self, job_type: str):
        super().__init__(f"unknown job type: {job_type}")
        self.job_type = job_type


class InvalidPayloadError(MediaWorkerException):
    """raised when a job payload does not match its job type"""
    pass


class JobNotFoundError(MediaWorkerException):
    """raised when a job id is not known to the queue or the database"""
    pass


class JobTimeoutError(MediaWorkerException):
    """raised when a job exceeds its configured timeout"""
    pass


class JobInterruptedError(MediaWorkerException):
    """recorded for jobs a previous process left queued or running"""
    pass


def retry_with_backoff(max_retries: int = 3, initial_delay: float = 1.0, backoff_factor: float = 2.0,
                       retry_on: tuple = (Exception,)):
    """
    decorator to retry a function with exponential backoff

    usage:
        @retry_with_backoff(max_retries=5, initial_delay=2.0)
        def upload_object(file_path):
            # ... code that might fail ...

    max_retries=1 means a single attempt with no retry
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            delay = initial_delay
            attempts = max(1, max_retries)

            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt == attempts - 1:
                        if attempts > 1:
                            logger.error(f"{func.__name__} failed after {attempts} attempts: {e}")
                        raise
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{attempts}): {e}. "
                        f"retrying in {delay}s..."
                    )
                    time.sleep(delay)
                    delay *= backoff_factor

        return wrapper
    return decorator


def handle_worker_error(job_id: str, job_type: str, error: BaseException):
    """
    centralized error handler for failed media jobs
    logs the error with its traceback, the queue records it on the job
    """
    logger.error(f"job {job_id} ({job_type}) failed: {type(error).__name__}: {error}", exc_info=error)
