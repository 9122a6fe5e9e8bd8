from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.aws_client import validate_aws_credentials
from core.config import settings
from core.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application startup/shutdown. Build sessions open and release their
    own AWS and Redis resources, so there is nothing shared to tear down.
    """
    validate_aws_credentials()
    logger.info(
        f"Lifespan startup: bucket={settings.UPLOAD_BUCKET_NAME}, "
        f"queue={settings.BROKER_QUEUE_NAME}, redis={settings.REDIS_HOST}:{settings.REDIS_PORT}"
    )
    yield
    logger.info("Lifespan shutdown.")
