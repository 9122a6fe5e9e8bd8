# app/integrations/sqs_client.py
import hashlib
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from core.errors import PublishError
from core.logger import logger
from schemas.sqs_models import QueueMessage


class SQSBroker:
    """
    Publish-only broker over one SQS queue, resolved by name.

    Meant to be held for a single publish and then disconnected:

        with SQSBroker(client, "rai_docker_build") as broker:
            broker.publish(message)
    """

    def __init__(self, sqs_client, queue_name: str):
        self.sqs = sqs_client
        self.queue_name = queue_name
        self._queue_url: Optional[str] = None

    @property
    def fifo(self) -> bool:
        return self.queue_name.endswith(".fifo")

    def queue_url(self) -> str:
        if self._queue_url is None:
            try:
                resp = self.sqs.get_queue_url(QueueName=self.queue_name)
            except (ClientError, BotoCoreError) as e:
                raise PublishError(f"unable to resolve queue {self.queue_name}: {e}") from e
            self._queue_url = resp["QueueUrl"]
        return self._queue_url

    def publish(self, message: QueueMessage) -> str:
        """
        Publish a QueueMessage envelope as JSON.
        Assumes body <= 256KB; the build context itself travels through S3.

        Returns:
            str: SQS message id

        Raises:
            PublishError: On any SQS or transport failure
        """
        body = message.model_dump_json()
        attributes: Dict[str, Dict[str, str]] = {
            name: {"DataType": "String", "StringValue": value}
            for name, value in message.header.items()
            if value
        }
        attributes["content_type"] = {"DataType": "String", "StringValue": "application/json"}

        params = {
            "QueueUrl": self.queue_url(),
            "MessageBody": body,
            "MessageAttributes": attributes,
        }
        if self.fifo:
            params["MessageGroupId"] = message.id
            params["MessageDeduplicationId"] = hashlib.sha256(body.encode("utf-8")).hexdigest()

        logger.debug(f"SQS publish queue={self.queue_name} size={len(body)} bytes")

        try:
            resp = self.sqs.send_message(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"SQS publish failed id={message.id}: {e}")
            raise PublishError(f"unable to publish build job to {self.queue_name}: {e}") from e

        msg_id = resp.get("MessageId", "")
        logger.info("SQS publish ok id=%s msg_id=%s", message.id, msg_id)
        return msg_id

    def disconnect(self) -> None:
        self.sqs.close()

    def __enter__(self) -> "SQSBroker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
