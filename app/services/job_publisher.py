# services/job_publisher.py
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import ValidationError

from core.config import Settings
from core.errors import PublishError
from core.logger import logger
from schemas.request_models import BuildRequest, PushOptions
from schemas.sqs_models import (
    BuildImageSpecification,
    BuildSpecification,
    CommandsSpecification,
    CPUResources,
    Credentials,
    JobRequest,
    PushParameters,
    QueueMessage,
    RAISpecification,
    Resources,
)


def build_push_parameters(push_options: Optional[PushOptions]) -> PushParameters:
    """
    Push is enabled only when image name, username and password are all set.
    Values are copied verbatim either way.
    """
    opts = push_options or PushOptions()
    return PushParameters(
        push=opts.enabled,
        image_name=opts.image_name,
        credentials=Credentials(username=opts.username, password=opts.password),
    )


def build_specification(request: BuildRequest, settings: Settings) -> BuildSpecification:
    return BuildSpecification(
        rai=RAISpecification(version=settings.BUILD_SPEC_VERSION, container_image=""),
        resources=Resources(cpu=CPUResources(architecture=settings.BUILD_ARCHITECTURE)),
        commands=CommandsSpecification(
            build_image=BuildImageSpecification(
                image_name=request.image_name,
                dockerfile=settings.DOCKERFILE_PATH,
                no_cache=settings.BUILD_NO_CACHE,
                push=build_push_parameters(request.push_options),
            )
        ),
    )


def build_job_request(upload_key: str, spec: BuildSpecification) -> JobRequest:
    return JobRequest(
        id=str(uuid4()),
        created_at=datetime.now(timezone.utc),
        upload_key=upload_key,
        build_specification=spec,
    )


class JobPublisher:
    """
    Turns a build request into a queued job.
    The broker is any object with publish(QueueMessage) -> message id.
    """

    def __init__(self, broker, queue_name: str):
        self.broker = broker
        self.queue_name = queue_name

    def publish(self, session_id: str, upload_key: str, job: JobRequest) -> str:
        """
        Publish the job under the session id.

        Raises:
            PublishError: Envelope construction or transport failure
        """
        try:
            message = QueueMessage(
                id=session_id,
                header={"id": session_id, "upload_key": upload_key},
                body=job.model_dump_json(),
            )
        except ValidationError as e:
            raise PublishError(f"unable to build job message: {e}") from e

        msg_id = self.broker.publish(message)
        logger.info(
            f"Build job queued: session={session_id}, job={job.id}, "
            f"queue={self.queue_name}, msg_id={msg_id}"
        )
        return msg_id
