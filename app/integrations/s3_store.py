# app/integrations/s3_store.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from core.errors import UploadError
from core.logger import logger


def upload_key(destination_dir: str, session_id: str) -> str:
    """Object key of the build context uploaded by a session."""
    prefix = destination_dir.strip("/")
    name = f"{session_id}.tar.gz"
    return f"{prefix}/{name}" if prefix else name


def _metadata_value(value: Any) -> str:
    # S3 user metadata is str -> str
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return str(value)


class ArtifactStore:
    """
    Durable blob store for uploaded build contexts, backed by one S3 bucket.
    """

    def __init__(self, s3_client, bucket: str):
        self.s3 = s3_client
        self.bucket = bucket

    def upload(
        self,
        data: bytes,
        key: str,
        *,
        lifetime: Optional[timedelta] = None,
        metadata: Optional[Dict[str, Any]] = None,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Store bytes under key.

        The lifetime is recorded as the object's Expires date; the bucket
        lifecycle rules take care of the actual removal.

        Returns:
            str: The key the object was stored under

        Raises:
            UploadError: On any S3 or transport failure
        """
        params: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "Metadata": {k: _metadata_value(v) for k, v in (metadata or {}).items()},
        }
        if lifetime is not None:
            params["Expires"] = datetime.now(timezone.utc) + lifetime

        try:
            self.s3.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed bucket={self.bucket} key={key}: {e}")
            raise UploadError(f"unable to upload build context to s3://{self.bucket}/{key}: {e}") from e

        logger.info(f"S3 upload ok bucket={self.bucket} key={key} size={len(data)}")
        return key

    def close(self) -> None:
        self.s3.close()
