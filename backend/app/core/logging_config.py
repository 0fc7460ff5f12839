import logging
import os
import sys
from datetime import datetime

from app.core.config import settings


def configure_logging():
    """configure structured logging for the api process"""
    handlers = [logging.StreamHandler(sys.stdout)]

    # file logs only when a log dir is configured
    if settings.LOG_DIR:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        handlers.append(
            logging.FileHandler(
                os.path.join(settings.LOG_DIR, f'mediaworker_{datetime.now().strftime("%Y%m%d")}.log'),
                mode='a'
            )
        )

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def get_logger(name: str) -> logging.Logger:
    """get a configured logger instance"""
    return logging.getLogger(name)
