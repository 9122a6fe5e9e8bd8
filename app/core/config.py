# core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    """
    Centralized application configuration.
    Grouped logically for readability.
    """

    # ------------------------------------------------------------
    # Project / Runtime
    # ------------------------------------------------------------
    PROJECT_NAME: str = "Dockerfile Builder Gateway"
    DEBUG: bool = True
    ENABLE_CORS: bool = True

    # HTTP / API
    FRONTEND_ENDPOINT: str = ""
    BACKEND_ENDPOINT: str = ""
    RATE_LIMIT_MIN: str = "10"
    HOST: str = "0.0.0.0"
    PORT: int = 8088

    # ------------------------------------------------------------
    # AWS Core
    # ------------------------------------------------------------
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_SESSION_TOKEN: Optional[str] = None

    """
    When set, every build session assumes this role through STS so that
    the storage and queue credentials are scoped to a single session id
    """
    AWS_ROLE_ARN: Optional[str] = Field(
        default=None,
        description="IAM role assumed per build session (optional)"
    )
    AWS_SESSION_DURATION_SECS: int = Field(
        default=3600,
        description="Lifetime of the assumed-role credentials (900-43200)"
    )
    AWS_CONNECT_TIMEOUT_SECS: int = 10
    AWS_READ_TIMEOUT_SECS: int = 60
    AWS_MAX_ATTEMPTS: int = 3

    # ------------------------------------------------------------
    # S3 Storage (build context uploads)
    # ------------------------------------------------------------
    UPLOAD_BUCKET_NAME: str = "files.rai-project.com"
    UPLOAD_DESTINATION_DIRECTORY: str = "userdata"
    UPLOAD_CONTENT_TYPE: str = "application/x-gzip"
    UPLOAD_LIFETIME_SECS: int = Field(
        default=3600,
        description="Artifact lifetime applied at upload time (storage-side expiry)"
    )
    ARTIFACT_TYPE: str = "dockerfile-builder"

    # ------------------------------------------------------------
    # Messaging (SQS)
    # ------------------------------------------------------------
    BROKER_QUEUE_NAME: str = "rai_docker_build"
    SQS_REGION: str = "us-east-1"

    # ------------------------------------------------------------
    # Build specification defaults
    # ------------------------------------------------------------
    BUILD_SPEC_VERSION: str = "2.0"
    BUILD_ARCHITECTURE: str = "ppc64le"
    DOCKERFILE_PATH: str = "./Dockerfile"
    BUILD_NO_CACHE: bool = True

    # ------------------------------------------------------------
    # Redis Configuration (log channel pub/sub)
    # ------------------------------------------------------------
    REDIS_HOST: str = Field(
        default="localhost",
        description="Redis server hostname (ElastiCache endpoint in production)"
    )
    REDIS_PORT: int = Field(
        default=6379,
        description="Redis server port"
    )
    REDIS_DB: int = Field(
        default=0,
        description="Redis database number (0-15)"
    )
    REDIS_PASSWORD: Optional[str] = Field(
        default=None,
        description="Redis password (optional, not needed with security groups)"
    )
    REDIS_SSL: bool = Field(
        default=False,
        description="Use TLS/SSL for Redis connection (required for ElastiCache with encryption)"
    )
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(
        default=5,
        description="Socket connect timeout in seconds"
    )

    # ------------------------------------------------------------
    # Log relay
    # ------------------------------------------------------------

    """
    Upper bound on outbound messages buffered for one client.
    Producers wait when a slow client lets the queue fill up.
    """
    RELAY_QUEUE_MAXSIZE: int = 1024

    """
    Seconds without any message on the log channel before the session
    gives up on the worker. 0 waits forever.
    """
    LOG_IDLE_TIMEOUT_SECS: float = 3600

    """
    Payload a worker publishes on the log channel once the build is over
    """
    LOG_END_MARKER: str = "<<END>>"

    # Terminal styling of progress and log lines
    COLOR_OUTPUT: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
