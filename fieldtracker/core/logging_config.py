import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

from fieldtracker.core.config import settings

LOG_DIR = Path(settings.LOG_DIR)
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

DETAILED_FORMAT = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


def _rotating_handler(file_name: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(LOG_DIR / file_name, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    """
    Configure server logging.

    app.log and error.log take everything from the root logger, access.log
    only the request lines written by the HTTP middleware, and sync.log a
    second copy of the push/pull summaries for auditing device history.
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler("app.log", level, DETAILED_FORMAT))
    root_logger.addHandler(_rotating_handler("error.log", logging.ERROR, DETAILED_FORMAT))

    access_logger = logging.getLogger("access")
    access_logger.setLevel(logging.INFO)
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(
        "access.log", logging.INFO, logging.Formatter('%(asctime)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
    ))
    access_logger.propagate = False

    sync_logger = logging.getLogger("fieldtracker.services.sync_service")
    sync_logger.handlers.clear()
    sync_logger.addHandler(_rotating_handler("sync.log", logging.INFO, DETAILED_FORMAT))

    # Engine echo is far too chatty at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger
