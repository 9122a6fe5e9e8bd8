# app/core/logger.py
import logging
from core.config import settings

LOG_LEVEL = logging.DEBUG if settings.DEBUG else logging.INFO

logger = logging.getLogger("dockerfile-builder")
logger.setLevel(LOG_LEVEL)
logger.propagate = False

# Console only; build sessions log one structured line each (utils/log_session.py)
if not logger.handlers:
    _console = logging.StreamHandler()
    _console.setLevel(LOG_LEVEL)
    _console.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    ))
    logger.addHandler(_console)

# boto/redis request tracing drowns the session logs in DEBUG
for _noisy in ("botocore", "boto3", "urllib3", "redis"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
