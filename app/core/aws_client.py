# core/aws_client.py
"""
Centralized AWS session and client factory.

A build session gets its own boto3 session. When AWS_ROLE_ARN is set the
credentials come from STS assume_role, scoped to the build session id;
otherwise the configured static credentials (or the default chain) are used.
"""
import os
import re

import boto3
from botocore.config import Config

from core.config import settings
from core.logger import logger

# STS RoleSessionName: 2-64 chars of [\w+=,.@-]
_ROLE_SESSION_NAME_INVALID = re.compile(r"[^\w+=,.@-]")


def _static_credentials():
    # Get credentials from settings (which loads from .env) or environment
    return {
        "aws_access_key_id": settings.AWS_ACCESS_KEY_ID or os.getenv("AWS_ACCESS_KEY_ID"),
        "aws_secret_access_key": settings.AWS_SECRET_ACCESS_KEY or os.getenv("AWS_SECRET_ACCESS_KEY"),
        "aws_session_token": settings.AWS_SESSION_TOKEN or os.getenv("AWS_SESSION_TOKEN"),
    }


def _client_config() -> Config:
    return Config(
        connect_timeout=settings.AWS_CONNECT_TIMEOUT_SECS,
        read_timeout=settings.AWS_READ_TIMEOUT_SECS,
        retries={"max_attempts": settings.AWS_MAX_ATTEMPTS},
    )


def role_session_name(session_id: str) -> str:
    """Build a valid STS RoleSessionName from a build session id."""
    name = _ROLE_SESSION_NAME_INVALID.sub("-", f"dockerfile-builder-{session_id}")
    return name[:64]


def create_session(session_id: str) -> boto3.Session:
    """
    Create the AWS session for one build session.

    Args:
        session_id: Build session id, used as the STS session name

    Returns:
        boto3.Session: Session whose credentials are bounded to this build
    """
    base = boto3.Session(region_name=settings.AWS_REGION, **_static_credentials())
    if not settings.AWS_ROLE_ARN:
        logger.debug(f"Using static AWS credentials for session {session_id}")
        return base

    sts = base.client("sts", config=_client_config())
    try:
        resp = sts.assume_role(
            RoleArn=settings.AWS_ROLE_ARN,
            RoleSessionName=role_session_name(session_id),
            DurationSeconds=settings.AWS_SESSION_DURATION_SECS,
        )
    finally:
        sts.close()

    creds = resp["Credentials"]
    logger.info(
        f"Assumed role for session {session_id}",
        extra={"expiration": str(creds.get("Expiration"))}
    )
    return boto3.Session(
        region_name=settings.AWS_REGION,
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
    )


def get_s3_client(session: boto3.Session):
    """Get S3 client bound to a build session."""
    try:
        client = session.client("s3", region_name=settings.AWS_REGION, config=_client_config())
        logger.debug("S3 client initialized")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize S3 client: {str(e)}")
        raise


def get_sqs_client(session: boto3.Session):
    """Get SQS client bound to a build session."""
    try:
        client = session.client("sqs", region_name=settings.SQS_REGION, config=_client_config())
        logger.debug("SQS client initialized")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize SQS client: {str(e)}")
        raise


def validate_aws_credentials():
    """Validate that AWS credentials are properly configured."""
    creds = _static_credentials()

    if not creds["aws_access_key_id"] or not creds["aws_secret_access_key"]:
        logger.warning("Missing AWS credentials in both settings and environment variables")
        logger.info("AWS credentials not found. Falling back to the default credential chain "
                    "(instance profile, shared config, ...)")
        return False

    logger.info("AWS credentials found and validated")
    return True
